"""PostgreSQL chat store using asyncpg."""

from __future__ import annotations

import json
from typing import Any

import asyncpg

from app.errors import OwnershipConflict, PersistenceFailure
from app.models.messages import Chat, Message
from app.services import logger as log_service

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS chats (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    title TEXT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE INDEX IF NOT EXISTS chats_user_updated_idx ON chats (user_id, updated_at DESC);

CREATE TABLE IF NOT EXISTS messages (
    id BIGSERIAL PRIMARY KEY,
    chat_id TEXT NOT NULL REFERENCES chats (id) ON DELETE CASCADE,
    role TEXT NOT NULL,
    parts JSONB NOT NULL,
    "order" INTEGER NOT NULL,
    UNIQUE (chat_id, "order")
);
"""


def _coerce_json_list(value: Any) -> list[Any]:
    """asyncpg hands jsonb back as text unless a codec is registered."""
    if isinstance(value, list):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return []
        return parsed if isinstance(parsed, list) else []
    return []


class PostgresChatStore:
    def __init__(self, database_url: str, *, min_size: int = 1, max_size: int = 10):
        self.database_url = database_url
        self.min_size = min_size
        self.max_size = max_size
        self._pool: asyncpg.Pool | None = None

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise PersistenceFailure("Database not configured. Set DATABASE_URL in .env")
        if self._pool is None:
            self._pool = await asyncpg.create_pool(
                self.database_url,
                min_size=self.min_size,
                max_size=self.max_size,
            )
        return self._pool

    async def ensure_schema(self) -> None:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            await conn.execute(SCHEMA_SQL)
        log_service.log_db_operation("create_schema", "chats,messages", "success")

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def upsert(self, user_id: str, chat_id: str, title: str, messages: list[Message]) -> None:
        """Create or replace a chat snapshot in one transaction."""
        rows = [
            (chat_id, m.role.value, json.dumps([p.to_wire() for p in m.parts]), index)
            for index, m in enumerate(messages)
        ]
        try:
            pool = await self._get_pool()
            async with pool.acquire() as conn:
                async with conn.transaction():
                    await conn.execute(
                        """
                        INSERT INTO chats (id, user_id, title)
                        VALUES ($1, $2, $3)
                        ON CONFLICT (id) DO NOTHING
                        """,
                        chat_id,
                        user_id,
                        title,
                    )
                    owner = await conn.fetchval(
                        "SELECT user_id FROM chats WHERE id = $1 FOR UPDATE",
                        chat_id,
                    )
                    if owner != user_id:
                        raise OwnershipConflict(f"chat {chat_id} belongs to another user")

                    await conn.execute(
                        """
                        UPDATE chats
                        SET title = $2, updated_at = now()
                        WHERE id = $1
                        """,
                        chat_id,
                        title,
                    )
                    await conn.execute("DELETE FROM messages WHERE chat_id = $1", chat_id)
                    if rows:
                        await conn.executemany(
                            """
                            INSERT INTO messages (chat_id, role, parts, "order")
                            VALUES ($1, $2, $3::jsonb, $4)
                            """,
                            rows,
                        )
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as exc:
            log_service.log_db_operation("upsert", "chats", "error", details=chat_id, error=str(exc))
            raise PersistenceFailure(f"Failed to save chat {chat_id}") from exc

        log_service.log_db_operation("upsert", "chats", "success", details=f"{chat_id} ({len(rows)} messages)")

    async def get(self, user_id: str, chat_id: str) -> Chat | None:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            chat = await conn.fetchrow(
                """
                SELECT id, user_id, title, updated_at
                FROM chats
                WHERE id = $1 AND user_id = $2
                """,
                chat_id,
                user_id,
            )
            if chat is None:
                return None
            message_rows = await conn.fetch(
                """
                SELECT role, parts
                FROM messages
                WHERE chat_id = $1
                ORDER BY "order"
                """,
                chat_id,
            )

        messages = [
            Message.model_validate({"role": r["role"], "parts": _coerce_json_list(r["parts"])})
            for r in message_rows
        ]
        return Chat(
            id=chat["id"],
            user_id=chat["user_id"],
            title=chat["title"],
            updated_at=chat["updated_at"],
            messages=messages,
        )

    async def list(self, user_id: str) -> list[Chat]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            results = await conn.fetch(
                """
                SELECT id, user_id, title, updated_at
                FROM chats
                WHERE user_id = $1
                ORDER BY updated_at DESC
                """,
                user_id,
            )
        return [Chat(**dict(r)) for r in results]

    async def delete(self, user_id: str, chat_id: str) -> bool:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            status = await conn.execute(
                "DELETE FROM chats WHERE id = $1 AND user_id = $2",
                chat_id,
                user_id,
            )
        # asyncpg returns the command tag, e.g. "DELETE 1".
        return status.rsplit(" ", 1)[-1] != "0"
