"""Tests for message stores."""

from __future__ import annotations

import json

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from api.services.message_store import InMemoryMessageStore, MessageRecord, PostgresMessageStore


def _pool_with(conn: AsyncMock) -> MagicMock:
    pool = MagicMock()
    pool.acquire.return_value.__aenter__.return_value = conn
    pool.acquire.return_value.__aexit__.return_value = None
    return pool


class TestMessageRecord:
    def test_defaults(self) -> None:
        record = MessageRecord(session_id="s1", role="user", content="hi")
        assert len(record.id) == 32
        assert record.partial is False
        assert record.created_at.tzinfo is not None

    def test_history_item(self) -> None:
        record = MessageRecord(session_id="s1", role="assistant", content="ok", tool_calls=[{"id": "c"}])
        assert record.to_history_item() == {"role": "assistant", "content": "ok"}


class TestInMemoryMessageStore:
    @pytest.mark.asyncio
    async def test_save_and_list_in_order(self) -> None:
        store = InMemoryMessageStore()
        for text in ("one", "two", "three"):
            await store.save_message(MessageRecord(session_id="s1", role="user", content=text))
        await store.save_message(MessageRecord(session_id="s2", role="user", content="other"))

        assert [m.content for m in await store.list_messages("s1")] == ["one", "two", "three"]
        assert [m.content for m in await store.list_messages("s1", limit=2)] == ["two", "three"]
        assert await store.list_messages("s1", limit=0) == []
        assert await store.list_messages("missing") == []

    @pytest.mark.asyncio
    async def test_delete_session(self) -> None:
        store = InMemoryMessageStore()
        await store.save_message(MessageRecord(session_id="s1", role="user", content="a"))
        await store.save_message(MessageRecord(session_id="s1", role="assistant", content="b"))

        assert await store.delete_session("s1") == 2
        assert await store.delete_session("s1") == 0
        assert await store.list_messages("s1") == []


class TestPostgresMessageStore:
    @pytest.mark.asyncio
    async def test_save_serializes_json_columns(self) -> None:
        conn = AsyncMock()
        store = PostgresMessageStore(_pool_with(conn))
        record = MessageRecord(session_id="s1", role="assistant", content="x", tool_calls=[{"id": "c1"}])

        assert await store.save_message(record) is record

        args = conn.execute.await_args.args
        assert "INSERT INTO messages" in args[0]
        assert args[1:5] == (record.id, "s1", "assistant", "x")
        assert json.loads(args[5]) == [{"id": "c1"}]
        assert args[6] is None
        assert args[7] is False

    @pytest.mark.asyncio
    async def test_list_converts_rows(self) -> None:
        created = datetime(2025, 1, 15, tzinfo=UTC)
        conn = AsyncMock()
        conn.fetch.return_value = [
            {
                "id": "m1",
                "session_id": "s1",
                "role": "assistant",
                "content": "hi",
                "tool_calls": '[{"id": "c1"}]',
                "tool_results": None,
                "partial": None,
                "created_at": created,
            }
        ]
        store = PostgresMessageStore(_pool_with(conn))

        records = await store.list_messages("s1", limit=20)

        assert conn.fetch.await_args.args[1:] == ("s1", 20)
        assert records[0].tool_calls == [{"id": "c1"}]
        assert records[0].partial is False
        assert records[0].created_at == created

    @pytest.mark.asyncio
    async def test_delete_parses_command_tag(self) -> None:
        conn = AsyncMock()
        conn.execute.return_value = "DELETE 3"
        store = PostgresMessageStore(_pool_with(conn))

        assert await store.delete_session("s1") == 3
