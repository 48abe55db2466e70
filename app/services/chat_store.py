from __future__ import annotations

from typing import Protocol

from app.config import settings
from app.models.messages import Chat, Message


class ChatStore(Protocol):
    """Full-snapshot conversation persistence, scoped by owner.

    `upsert` raises OwnershipConflict when the chat id belongs to someone
    else. `get` returns None both for missing chats and for chats owned by
    another user.
    """

    async def upsert(self, user_id: str, chat_id: str, title: str, messages: list[Message]) -> None: ...
    async def get(self, user_id: str, chat_id: str) -> Chat | None: ...
    async def list(self, user_id: str) -> list[Chat]: ...
    async def delete(self, user_id: str, chat_id: str) -> bool: ...
    async def close(self) -> None: ...


_store: ChatStore | None = None


def get_chat_store() -> ChatStore:
    global _store
    if _store is None:
        backend = settings.chat_store_backend.lower().strip()
        if backend == "memory":
            from app.services.memory_store import InMemoryChatStore

            _store = InMemoryChatStore()
        elif backend == "postgres":
            from app.services.database import PostgresChatStore

            _store = PostgresChatStore(settings.database_url)
        else:
            raise ValueError(f"Unsupported CHAT_STORE_BACKEND: {settings.chat_store_backend}")
    return _store


async def close_chat_store() -> None:
    global _store
    if _store is not None:
        await _store.close()
        _store = None
