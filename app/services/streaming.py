from __future__ import annotations

from typing import Any

from app.models.events import EventType, SSEEvent
from app.models.messages import Message, ToolInvocationPart

NEW_CHAT_CREATED = "NEW_CHAT_CREATED"
USER_SAFE_ERROR = "Oops, an error occurred!"


def new_chat_created(chat_id: str) -> SSEEvent:
    """Out-of-band signal that the server assigned a chat id."""
    return SSEEvent(event=EventType.DATA, data={"type": NEW_CHAT_CREATED, "chatId": chat_id})


def text_delta(text: str, step: int) -> SSEEvent:
    return SSEEvent(event=EventType.TEXT_DELTA, data={"text": text, "step": step})


def tool_invocation(part: ToolInvocationPart, step: int) -> SSEEvent:
    data: dict[str, Any] = {"step": step, **part.to_wire()}
    return SSEEvent(event=EventType.TOOL_INVOCATION, data=data)


def step_finish(step: int, finish_reason: str | None, tool_calls: int) -> SSEEvent:
    return SSEEvent(
        event=EventType.STEP_FINISH,
        data={"step": step, "finish_reason": finish_reason, "tool_calls": tool_calls},
    )


def finish(message: Message, steps: int, finish_reason: str) -> SSEEvent:
    return SSEEvent(
        event=EventType.FINISH,
        data={
            "message": message.to_wire(),
            "steps": steps,
            "finish_reason": finish_reason,
        },
    )


def error(message: str = USER_SAFE_ERROR) -> SSEEvent:
    return SSEEvent(event=EventType.ERROR, data={"message": message})
