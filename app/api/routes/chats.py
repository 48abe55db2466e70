from __future__ import annotations

from fastapi import APIRouter, HTTPException

from app.api.deps import CurrentUser, Store
from app.api.routes.chat import NOT_FOUND_DETAIL
from app.models.schemas import ChatDetailResponse, ChatListResponse, ChatSummaryResponse

router = APIRouter(prefix="/api/chats", tags=["chats"])


@router.get("", response_model=ChatListResponse, response_model_by_alias=True)
async def list_chats(user: CurrentUser, store: Store):
    """Chats for the sidebar, most recently updated first."""
    chats = await store.list(user.id)
    return ChatListResponse(
        chats=[ChatSummaryResponse(id=c.id, title=c.title, updated_at=c.updated_at) for c in chats]
    )


@router.get("/{chat_id}", response_model=ChatDetailResponse, response_model_by_alias=True)
async def get_chat(chat_id: str, user: CurrentUser, store: Store):
    chat = await store.get(user.id, chat_id)
    if chat is None:
        raise HTTPException(status_code=404, detail=NOT_FOUND_DETAIL)
    return ChatDetailResponse(
        id=chat.id,
        title=chat.title,
        updated_at=chat.updated_at,
        messages=chat.messages,
    )


@router.delete("/{chat_id}", status_code=204)
async def delete_chat(chat_id: str, user: CurrentUser, store: Store):
    deleted = await store.delete(user.id, chat_id)
    if not deleted:
        raise HTTPException(status_code=404, detail=NOT_FOUND_DETAIL)
