"""
Protocol encoder shared by the SSE and WebSocket transports.

Both transports must expose the same projection of a chunk, so the mapping
lives here once. ``usage`` chunks and text chunks with no content have no wire
projection; transports skip them.
"""

from __future__ import annotations

from typing import Any

from core.constants import (
    CHUNK_TYPE_DONE,
    CHUNK_TYPE_ERROR,
    CHUNK_TYPE_TEXT,
    CHUNK_TYPE_TOOL_RESULT,
    CHUNK_TYPE_TOOL_USE,
    CHUNK_TYPE_USAGE,
    FINAL_MESSAGE_TYPES,
)
from models.chunk_models import StreamChunk
from models.event_models import (
    ErrorMessage,
    MessageCompleteMessage,
    ServerMessage,
    TextDeltaMessage,
    ToolCallMessage,
    ToolResultMessage,
)


def chunk_to_server_message(chunk: StreamChunk, message_id: str | None = None) -> ServerMessage | None:
    """Project a chunk onto the wire vocabulary.

    Args:
        chunk: Upstream chunk
        message_id: Optional id of the client message that triggered the turn

    Returns:
        The server message, or None when the chunk has no wire projection
    """
    if chunk.type == CHUNK_TYPE_TEXT:
        if not chunk.content:
            return None
        return TextDeltaMessage(content=chunk.content, message_id=message_id)

    if chunk.type == CHUNK_TYPE_TOOL_USE and chunk.tool_call is not None:
        return ToolCallMessage(
            id=chunk.tool_call.id,
            name=chunk.tool_call.name,
            input=chunk.tool_call.input,
            message_id=message_id,
        )

    if chunk.type == CHUNK_TYPE_TOOL_RESULT and chunk.tool_result is not None:
        return ToolResultMessage(
            id=chunk.tool_result.tool_call_id,
            output=chunk.tool_result.content,
            is_error=chunk.tool_result.is_error,
            message_id=message_id,
        )

    if chunk.type == CHUNK_TYPE_DONE:
        return MessageCompleteMessage(message_id=message_id)

    if chunk.type == CHUNK_TYPE_ERROR:
        return ErrorMessage(message=chunk.error or "Unknown error", message_id=message_id)

    if chunk.type == CHUNK_TYPE_USAGE:
        return None

    # Unreachable for validated chunks
    raise ValueError(f"Unhandled chunk type: {chunk.type}")


def encode_sse(message: ServerMessage) -> str:
    """Frame a server message as one SSE event."""
    return f"data: {message.to_json()}\n\n"


def encode_ws(message: ServerMessage) -> dict[str, Any]:
    """JSON-ready dict for ``WebSocket.send_json``."""
    return message.to_dict()


def is_final_message(message: ServerMessage) -> bool:
    """True for messages after which an SSE response is closed."""
    return message.type in FINAL_MESSAGE_TYPES


__all__ = ["chunk_to_server_message", "encode_sse", "encode_ws", "is_final_message"]
