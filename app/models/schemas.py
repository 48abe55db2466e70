from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.models.messages import Message


class _CamelSchema(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Requests ---


class ChatRequest(_CamelSchema):
    messages: list[Message] = Field(default_factory=list)
    chat_id: str | None = None
    is_new_chat: bool = False


# --- Responses ---


class ChatSummaryResponse(_CamelSchema):
    id: str
    title: str
    updated_at: datetime


class ChatListResponse(_CamelSchema):
    chats: list[ChatSummaryResponse]


class ChatDetailResponse(_CamelSchema):
    id: str
    title: str
    updated_at: datetime
    messages: list[Message]
