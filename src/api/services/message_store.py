"""
Message persistence used by the transports.

The streaming core never touches storage. Transports save the user message
before sending and the assembled assistant message after the turn ends.
"""

from __future__ import annotations

import json
import uuid

from collections import defaultdict
from datetime import UTC, datetime
from typing import Any, Literal, Protocol

import asyncpg

from pydantic import BaseModel, Field

from utils.logger import logger

MessageRole = Literal["user", "assistant", "system"]


class MessageRecord(BaseModel):
    """One persisted conversation message."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    session_id: str
    role: MessageRole
    content: str = ""
    tool_calls: list[dict[str, Any]] | None = None
    tool_results: list[dict[str, Any]] | None = None
    partial: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def to_history_item(self) -> dict[str, Any]:
        """Role/content pair handed to the upstream client as prior history."""
        return {"role": self.role, "content": self.content}


class MessageStore(Protocol):
    """Storage boundary for conversation messages."""

    async def save_message(self, record: MessageRecord) -> MessageRecord: ...

    async def list_messages(self, session_id: str, limit: int | None = None) -> list[MessageRecord]: ...

    async def delete_session(self, session_id: str) -> int: ...


class InMemoryMessageStore:
    """Process-local store. Messages are lost on restart."""

    def __init__(self) -> None:
        self._messages: dict[str, list[MessageRecord]] = defaultdict(list)

    async def save_message(self, record: MessageRecord) -> MessageRecord:
        self._messages[record.session_id].append(record)
        return record

    async def list_messages(self, session_id: str, limit: int | None = None) -> list[MessageRecord]:
        messages = list(self._messages.get(session_id, []))
        if limit is not None:
            messages = messages[-limit:] if limit > 0 else []
        return messages

    async def delete_session(self, session_id: str) -> int:
        return len(self._messages.pop(session_id, []))


class PostgresMessageStore:
    """Store backed by the web tier's ``messages`` table.

    Expected columns: ``id``, ``session_id``, ``role``, ``content``,
    ``tool_calls`` (jsonb), ``tool_results`` (jsonb), ``partial`` and
    ``created_at``. The schema itself is owned by the web tier.
    """

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def save_message(self, record: MessageRecord) -> MessageRecord:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO messages (
                    id, session_id, role, content, tool_calls, tool_results, partial, created_at
                )
                VALUES ($1, $2, $3, $4, $5::jsonb, $6::jsonb, $7, $8)
                """,
                record.id,
                record.session_id,
                record.role,
                record.content,
                json.dumps(record.tool_calls) if record.tool_calls is not None else None,
                json.dumps(record.tool_results) if record.tool_results is not None else None,
                record.partial,
                record.created_at,
            )
        logger.debug(f"Saved {record.role} message {record.id}", session_id=record.session_id)
        return record

    async def list_messages(self, session_id: str, limit: int | None = None) -> list[MessageRecord]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM (
                    SELECT * FROM messages
                    WHERE session_id = $1
                    ORDER BY created_at DESC
                    LIMIT $2
                ) recent
                ORDER BY created_at ASC
                """,
                session_id,
                limit,
            )
        return [self._row_to_record(row) for row in rows]

    async def delete_session(self, session_id: str) -> int:
        async with self.pool.acquire() as conn:
            result = await conn.execute("DELETE FROM messages WHERE session_id = $1", session_id)
        # asyncpg returns the command tag, e.g. "DELETE 3"
        return int(result.split()[-1]) if result else 0

    @staticmethod
    def _row_to_record(row: asyncpg.Record) -> MessageRecord:
        data = dict(row)
        for key in ("tool_calls", "tool_results"):
            if isinstance(data.get(key), str):
                data[key] = json.loads(data[key])
        data["id"] = str(data["id"])
        data["session_id"] = str(data["session_id"])
        data["partial"] = bool(data.get("partial"))
        return MessageRecord.model_validate(data)


async def create_pool(database_url: str, min_size: int = 1, max_size: int = 10) -> asyncpg.Pool:
    """Create the asyncpg pool used by PostgresMessageStore."""
    pool = await asyncpg.create_pool(database_url, min_size=min_size, max_size=max_size)
    logger.info(f"Database pool created (min: {min_size}, max: {max_size})")
    return pool


__all__ = [
    "InMemoryMessageStore",
    "MessageRecord",
    "MessageRole",
    "MessageStore",
    "PostgresMessageStore",
    "create_pool",
]
