"""In-process chat store for development and tests. Data is lost on restart."""
from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from app.errors import OwnershipConflict
from app.models.messages import Chat, Message


@dataclass
class _ChatRow:
    id: str
    user_id: str
    title: str
    updated_at: datetime
    seq: int
    # (role, parts) tuples; "order" is the list position.
    messages: list[tuple[str, list[dict[str, Any]]]] = field(default_factory=list)


class InMemoryChatStore:
    def __init__(self) -> None:
        self._chats: dict[str, _ChatRow] = {}
        self._seq = itertools.count(1)
        self._lock = asyncio.Lock()

    async def upsert(self, user_id: str, chat_id: str, title: str, messages: list[Message]) -> None:
        snapshot = [(m.role.value, [p.to_wire() for p in m.parts]) for m in messages]
        async with self._lock:
            row = self._chats.get(chat_id)
            if row is not None and row.user_id != user_id:
                raise OwnershipConflict(f"chat {chat_id} belongs to another user")
            if row is None:
                row = _ChatRow(
                    id=chat_id,
                    user_id=user_id,
                    title=title,
                    updated_at=datetime.now(timezone.utc),
                    seq=next(self._seq),
                )
                self._chats[chat_id] = row
            else:
                row.title = title
                row.updated_at = datetime.now(timezone.utc)
                row.seq = next(self._seq)
            row.messages = snapshot

    async def get(self, user_id: str, chat_id: str) -> Chat | None:
        row = self._chats.get(chat_id)
        if row is None or row.user_id != user_id:
            return None
        return self._to_chat(row, with_messages=True)

    async def list(self, user_id: str) -> list[Chat]:
        rows = [r for r in self._chats.values() if r.user_id == user_id]
        rows.sort(key=lambda r: (r.updated_at, r.seq), reverse=True)
        return [self._to_chat(r, with_messages=False) for r in rows]

    async def delete(self, user_id: str, chat_id: str) -> bool:
        async with self._lock:
            row = self._chats.get(chat_id)
            if row is None or row.user_id != user_id:
                return False
            del self._chats[chat_id]
            return True

    async def close(self) -> None:
        return None

    @staticmethod
    def _to_chat(row: _ChatRow, *, with_messages: bool) -> Chat:
        messages = []
        if with_messages:
            messages = [Message.model_validate({"role": role, "parts": parts}) for role, parts in row.messages]
        return Chat(
            id=row.id,
            user_id=row.user_id,
            title=row.title,
            updated_at=row.updated_at,
            messages=messages,
        )
