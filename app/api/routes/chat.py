from __future__ import annotations

import uuid

from fastapi import APIRouter, HTTPException
from sse_starlette.sse import EventSourceResponse

from app.agents.chat_agent import ChatAgent
from app.api.deps import CurrentUser, Model, Store, Tools
from app.errors import OwnershipConflict, PersistenceFailure
from app.models.messages import derive_title
from app.models.schemas import ChatRequest
from app.services import logger as log_service
from app.services.chat_stream import ChatStreamSession

router = APIRouter(prefix="/api/chat", tags=["chat"])

NOT_FOUND_DETAIL = "Chat not found or unauthorized"


@router.post("")
async def chat(request: ChatRequest, user: CurrentUser, store: Store, model: Model, tools: Tools):
    """Run one chat turn and stream it back as Server-Sent Events."""
    messages = request.messages
    if not messages:
        raise HTTPException(status_code=400, detail="No messages provided")

    chat_id = request.chat_id
    if request.is_new_chat:
        chat_id = chat_id or str(uuid.uuid4())
        # Create the chat up front so a dropped stream still leaves the question saved.
        try:
            await store.upsert(user.id, chat_id, derive_title(messages), messages)
        except OwnershipConflict:
            raise HTTPException(status_code=404, detail=NOT_FOUND_DETAIL)
        except PersistenceFailure as exc:
            log_service.log_event(
                event_type="db_error",
                message="Failed to create chat before streaming",
                error=str(exc),
                chat_id=chat_id,
            )
    else:
        if not chat_id:
            raise HTTPException(status_code=400, detail="chatId is required for an existing chat")
        existing = await store.get(user.id, chat_id)
        if existing is None:
            raise HTTPException(status_code=404, detail=NOT_FOUND_DETAIL)

    session = ChatStreamSession(
        agent=ChatAgent(model=model, tools=tools),
        store=store,
        user_id=user.id,
        chat_id=chat_id,
        messages=messages,
        is_new_chat=request.is_new_chat,
    )
    return EventSourceResponse(session.sse())
