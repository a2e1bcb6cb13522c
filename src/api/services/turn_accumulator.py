"""Assembles one assistant turn from its chunk stream for persistence."""

from __future__ import annotations

from typing import Any

from api.services.message_store import MessageRecord
from core.constants import CHUNK_TYPE_ERROR, CHUNK_TYPE_TEXT, CHUNK_TYPE_TOOL_RESULT, CHUNK_TYPE_TOOL_USE
from models.chunk_models import StreamChunk


class TurnAccumulator:
    """Collects text, tool calls and tool results of a single turn.

    ``claim_record`` hands out the assistant message at most once, so the
    terminal chunk path and the client-disconnect path cannot both save it.
    """

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        self.text_parts: list[str] = []
        self.tool_calls: list[dict[str, Any]] = []
        self.tool_results: list[dict[str, Any]] = []
        self.error: str | None = None
        self.finished = False
        self._claimed = False

    def add(self, chunk: StreamChunk) -> None:
        if chunk.type == CHUNK_TYPE_TEXT and chunk.content:
            self.text_parts.append(chunk.content)
        elif chunk.type == CHUNK_TYPE_TOOL_USE and chunk.tool_call is not None:
            self.tool_calls.append(chunk.tool_call.model_dump())
        elif chunk.type == CHUNK_TYPE_TOOL_RESULT and chunk.tool_result is not None:
            self.tool_results.append(chunk.tool_result.model_dump())
        elif chunk.type == CHUNK_TYPE_ERROR:
            self.error = chunk.error

        if chunk.is_terminal:
            self.finished = True

    @property
    def content(self) -> str:
        return "".join(self.text_parts)

    @property
    def is_empty(self) -> bool:
        return not self.text_parts and not self.tool_calls

    def claim_record(self) -> MessageRecord | None:
        """Return the assistant message once; None if already claimed or nothing to save."""
        if self._claimed or self.is_empty:
            return None
        self._claimed = True
        return MessageRecord(
            session_id=self.session_id,
            role="assistant",
            content=self.content,
            tool_calls=self.tool_calls or None,
            tool_results=self.tool_results or None,
            partial=self.error is not None or not self.finished,
        )


__all__ = ["TurnAccumulator"]
