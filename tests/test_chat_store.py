from __future__ import annotations

import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import asyncpg
import pytest

from app.errors import ChatNotFound, OwnershipConflict, PersistenceFailure
from app.models.messages import Message, Role
from app.services import chat_store
from app.services.database import PostgresChatStore
from app.services.memory_store import InMemoryChatStore


def _conversation(answer: str = "Sunny and 18C.") -> list[Message]:
    return [
        Message(role=Role.USER, content="Weather in Paris?"),
        Message.model_validate(
            {
                "role": "assistant",
                "parts": [
                    {
                        "type": "tool-invocation",
                        "toolCallId": "call_1",
                        "toolName": "searchWeb",
                        "args": {"query": "paris weather"},
                        "state": "result",
                        "result": [{"title": "Forecast"}],
                    },
                    {"type": "text", "text": answer},
                ],
            }
        ),
    ]


# --- In-memory store ---


@pytest.mark.asyncio
async def test_memory_store_round_trips_parts_in_order():
    store = InMemoryChatStore()
    await store.upsert("alice", "chat-1", "Weather in Paris?", _conversation())

    chat = await store.get("alice", "chat-1")

    assert chat is not None
    assert chat.title == "Weather in Paris?"
    assert [m.role for m in chat.messages] == [Role.USER, Role.ASSISTANT]
    assert chat.messages[1].tool_invocations[0].result == [{"title": "Forecast"}]
    assert chat.messages[1].text == "Sunny and 18C."


@pytest.mark.asyncio
async def test_memory_store_upsert_replaces_snapshot():
    store = InMemoryChatStore()
    await store.upsert("alice", "chat-1", "first", _conversation())
    await store.upsert("alice", "chat-1", "first", _conversation())
    await store.upsert("alice", "chat-1", "second", _conversation("Rainy now."))

    chat = await store.get("alice", "chat-1")

    assert len(chat.messages) == 2
    assert chat.title == "second"
    assert chat.messages[1].text == "Rainy now."


@pytest.mark.asyncio
async def test_memory_store_refuses_foreign_owner():
    store = InMemoryChatStore()
    await store.upsert("alice", "chat-1", "mine", _conversation())

    with pytest.raises(OwnershipConflict):
        await store.upsert("mallory", "chat-1", "hijacked", [])

    assert await store.get("mallory", "chat-1") is None
    chat = await store.get("alice", "chat-1")
    assert chat.title == "mine"
    assert len(chat.messages) == 2


def test_ownership_conflict_reads_as_not_found():
    assert issubclass(OwnershipConflict, ChatNotFound)


@pytest.mark.asyncio
async def test_memory_store_lists_most_recent_first():
    store = InMemoryChatStore()
    await store.upsert("alice", "older", "Older", [])
    await store.upsert("alice", "newer", "Newer", [])
    await store.upsert("bob", "bobs", "Bob's", [])
    await store.upsert("alice", "older", "Older again", [])

    chats = await store.list("alice")

    assert [c.id for c in chats] == ["older", "newer"]
    assert all(c.messages == [] for c in chats)


@pytest.mark.asyncio
async def test_memory_store_delete_is_owner_scoped():
    store = InMemoryChatStore()
    await store.upsert("alice", "chat-1", "mine", [])

    assert await store.delete("bob", "chat-1") is False
    assert await store.delete("alice", "chat-1") is True
    assert await store.get("alice", "chat-1") is None
    assert await store.delete("alice", "chat-1") is False


def test_chat_store_factory_rejects_unknown_backend(monkeypatch):
    monkeypatch.setattr(chat_store, "_store", None)
    with patch("app.services.chat_store.settings") as mock_settings:
        mock_settings.chat_store_backend = "sqlite"
        with pytest.raises(ValueError):
            chat_store.get_chat_store()


def test_chat_store_factory_defaults_to_memory(monkeypatch):
    monkeypatch.setattr(chat_store, "_store", None)
    with patch("app.services.chat_store.settings") as mock_settings:
        mock_settings.chat_store_backend = "memory"
        store = chat_store.get_chat_store()
    assert isinstance(store, InMemoryChatStore)
    assert chat_store.get_chat_store() is store
    monkeypatch.setattr(chat_store, "_store", None)


# --- Postgres store (asyncpg mocked) ---


class _FakeAcquire:
    def __init__(self, conn):
        self.conn = conn

    async def __aenter__(self):
        return self.conn

    async def __aexit__(self, *exc):
        return None


class _FakeTransaction:
    def __init__(self, conn):
        self.conn = conn

    async def __aenter__(self):
        self.conn.events.append("begin")
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.conn.events.append("rollback" if exc_type else "commit")
        return None


def _pg_store(conn) -> PostgresChatStore:
    conn.events = []
    conn.transaction = MagicMock(side_effect=lambda: _FakeTransaction(conn))
    pool = MagicMock()
    pool.acquire = MagicMock(side_effect=lambda: _FakeAcquire(conn))
    store = PostgresChatStore("postgresql://test")
    store._pool = pool
    return store


@pytest.mark.asyncio
async def test_postgres_upsert_replaces_messages_in_one_transaction():
    conn = MagicMock()
    conn.execute = AsyncMock(return_value="OK")
    conn.executemany = AsyncMock()
    conn.fetchval = AsyncMock(return_value="alice")
    store = _pg_store(conn)

    await store.upsert("alice", "chat-1", "Weather", _conversation())

    assert conn.events == ["begin", "commit"]
    statements = [call.args[0] for call in conn.execute.await_args_list]
    assert "INSERT INTO chats" in statements[0]
    assert "UPDATE chats" in statements[1]
    assert "DELETE FROM messages" in statements[2]
    rows = conn.executemany.await_args.args[1]
    assert [(r[1], r[3]) for r in rows] == [("user", 0), ("assistant", 1)]
    assert json.loads(rows[1][2])[0]["toolCallId"] == "call_1"


@pytest.mark.asyncio
async def test_postgres_upsert_rolls_back_for_foreign_owner():
    conn = MagicMock()
    conn.execute = AsyncMock(return_value="OK")
    conn.executemany = AsyncMock()
    conn.fetchval = AsyncMock(return_value="alice")
    store = _pg_store(conn)

    with pytest.raises(OwnershipConflict):
        await store.upsert("mallory", "chat-1", "hijacked", _conversation())

    assert conn.events == ["begin", "rollback"]
    assert conn.execute.await_count == 1
    conn.executemany.assert_not_awaited()


@pytest.mark.asyncio
async def test_postgres_errors_surface_as_persistence_failure():
    conn = MagicMock()
    conn.execute = AsyncMock(side_effect=asyncpg.PostgresError("boom"))
    conn.fetchval = AsyncMock()
    store = _pg_store(conn)

    with pytest.raises(PersistenceFailure):
        await store.upsert("alice", "chat-1", "t", [])


@pytest.mark.asyncio
async def test_postgres_get_decodes_jsonb_parts():
    updated = datetime(2026, 10, 18, tzinfo=timezone.utc)
    conn = MagicMock()
    conn.fetchrow = AsyncMock(
        return_value={"id": "chat-1", "user_id": "alice", "title": "Weather", "updated_at": updated}
    )
    conn.fetch = AsyncMock(
        return_value=[
            {"role": "user", "parts": json.dumps([{"type": "text", "text": "Weather in Paris?"}])},
            {"role": "assistant", "parts": [{"type": "text", "text": "Sunny."}]},
        ]
    )
    store = _pg_store(conn)

    chat = await store.get("alice", "chat-1")

    assert chat.updated_at == updated
    assert [m.text for m in chat.messages] == ["Weather in Paris?", "Sunny."]
    assert conn.fetchrow.await_args.args[1:] == ("chat-1", "alice")


@pytest.mark.asyncio
async def test_postgres_get_returns_none_for_foreign_chat():
    conn = MagicMock()
    conn.fetchrow = AsyncMock(return_value=None)
    conn.fetch = AsyncMock()
    store = _pg_store(conn)

    assert await store.get("mallory", "chat-1") is None
    conn.fetch.assert_not_awaited()


@pytest.mark.asyncio
async def test_postgres_delete_reads_command_tag():
    conn = MagicMock()
    conn.execute = AsyncMock(side_effect=["DELETE 1", "DELETE 0"])
    store = _pg_store(conn)

    assert await store.delete("alice", "chat-1") is True
    assert await store.delete("alice", "chat-1") is False


@pytest.mark.asyncio
async def test_postgres_store_requires_database_url():
    store = PostgresChatStore("")
    with pytest.raises(PersistenceFailure):
        await store.list("alice")


@pytest.mark.asyncio
async def test_postgres_unreachable_database_is_persistence_failure():
    store = PostgresChatStore("postgresql://db.invalid/chat")
    with patch("app.services.database.asyncpg.create_pool", AsyncMock(side_effect=OSError("connection refused"))):
        with pytest.raises(PersistenceFailure):
            await store.upsert("alice", "chat-1", "t", _conversation())


@pytest.mark.asyncio
async def test_postgres_dropped_connection_is_persistence_failure():
    conn = MagicMock()
    conn.execute = AsyncMock(side_effect=asyncpg.InterfaceError("connection is closed"))
    conn.fetchval = AsyncMock()
    store = _pg_store(conn)

    with pytest.raises(PersistenceFailure):
        await store.upsert("alice", "chat-1", "t", [])
