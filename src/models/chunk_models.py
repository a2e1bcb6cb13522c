"""
Stream chunk models for Session Stream.

A StreamChunk is the unit of upstream output: one text fragment, tool call,
tool result, usage report, or terminal signal. Exactly one ``done`` or
``error`` chunk ends a generation.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from core.constants import (
    CHUNK_TYPE_DONE,
    CHUNK_TYPE_ERROR,
    CHUNK_TYPE_TEXT,
    CHUNK_TYPE_TOOL_RESULT,
    CHUNK_TYPE_TOOL_USE,
    CHUNK_TYPE_USAGE,
    TERMINAL_CHUNK_TYPES,
)

ChunkType = Literal["text", "tool_use", "tool_result", "usage", "done", "error"]


class ToolCall(BaseModel):
    """Tool invocation requested by the agent."""

    id: str
    name: str
    input: dict[str, Any] = Field(default_factory=dict)


class ToolResult(BaseModel):
    """Outcome of a tool invocation."""

    tool_call_id: str
    content: str = ""
    is_error: bool = False


class TokenUsage(BaseModel):
    """Token accounting for a generation."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    max_context_tokens: int = 0
    cache_read_tokens: int | None = None
    cache_write_tokens: int | None = None


class StreamChunk(BaseModel):
    """Tagged union of upstream output.

    Only the payload field matching ``type`` is populated. Chunks are
    immutable once created so the same instance can be handed to every
    subscriber.
    """

    model_config = ConfigDict(frozen=True)

    type: ChunkType
    content: str | None = None
    tool_call: ToolCall | None = None
    tool_result: ToolResult | None = None
    usage: TokenUsage | None = None
    error: str | None = None

    @model_validator(mode="after")
    def check_payload(self) -> StreamChunk:
        """Reject chunks missing the payload their type requires."""
        if self.type == CHUNK_TYPE_TOOL_USE and self.tool_call is None:
            raise ValueError("tool_use chunk requires tool_call")
        if self.type == CHUNK_TYPE_TOOL_RESULT and self.tool_result is None:
            raise ValueError("tool_result chunk requires tool_result")
        if self.type == CHUNK_TYPE_USAGE and self.usage is None:
            raise ValueError("usage chunk requires usage")
        if self.type == CHUNK_TYPE_ERROR and not self.error:
            raise ValueError("error chunk requires an error message")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_CHUNK_TYPES

    @classmethod
    def text(cls, content: str) -> StreamChunk:
        return cls(type=CHUNK_TYPE_TEXT, content=content)

    @classmethod
    def tool_use(cls, id: str, name: str, input: dict[str, Any] | None = None) -> StreamChunk:
        return cls(type=CHUNK_TYPE_TOOL_USE, tool_call=ToolCall(id=id, name=name, input=input or {}))

    @classmethod
    def tool_output(cls, tool_call_id: str, content: str, is_error: bool = False) -> StreamChunk:
        return cls(
            type=CHUNK_TYPE_TOOL_RESULT,
            tool_result=ToolResult(tool_call_id=tool_call_id, content=content, is_error=is_error),
        )

    @classmethod
    def usage_report(cls, usage: TokenUsage) -> StreamChunk:
        return cls(type=CHUNK_TYPE_USAGE, usage=usage)

    @classmethod
    def done(cls) -> StreamChunk:
        return cls(type=CHUNK_TYPE_DONE)

    @classmethod
    def failure(cls, message: str) -> StreamChunk:
        """Terminal error chunk. Empty messages are replaced so the chunk stays valid."""
        return cls(type=CHUNK_TYPE_ERROR, error=message or "Unknown error")


__all__ = [
    "ChunkType",
    "StreamChunk",
    "TokenUsage",
    "ToolCall",
    "ToolResult",
]
