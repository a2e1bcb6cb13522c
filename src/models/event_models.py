"""
Wire message models for Session Stream.

Server messages are the transport projection of stream chunks. Both the SSE
route and the WebSocket handler emit exactly these shapes; field names use the
camelCase the browser clients expect (``isError``, ``messageId``).
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from core.constants import (
    CLIENT_MSG_CANCEL,
    CLIENT_MSG_MESSAGE,
    CLIENT_MSG_SESSION,
    MSG_TYPE_ERROR,
    MSG_TYPE_MESSAGE_COMPLETE,
    MSG_TYPE_TEXT_DELTA,
    MSG_TYPE_TOOL_CALL,
    MSG_TYPE_TOOL_RESULT,
)


class _WireModel(BaseModel):
    """Base for wire messages: camelCase aliases, None fields omitted."""

    model_config = ConfigDict(populate_by_name=True)

    message_id: str | None = Field(default=None, alias="messageId")

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-ready dict for WebSocket frames."""
        return self.model_dump(by_alias=True, exclude_none=True)

    def to_json(self) -> str:
        """Convert to compact JSON for SSE frames."""
        json_str: str = self.model_dump_json(by_alias=True, exclude_none=True)
        return json_str


class TextDeltaMessage(_WireModel):
    type: Literal["text_delta"] = MSG_TYPE_TEXT_DELTA
    content: str


class ToolCallMessage(_WireModel):
    type: Literal["tool_call"] = MSG_TYPE_TOOL_CALL
    id: str
    name: str
    input: dict[str, Any] = Field(default_factory=dict)


class ToolResultMessage(_WireModel):
    type: Literal["tool_result"] = MSG_TYPE_TOOL_RESULT
    id: str
    output: str
    is_error: bool = Field(default=False, alias="isError")


class MessageCompleteMessage(_WireModel):
    type: Literal["message_complete"] = MSG_TYPE_MESSAGE_COMPLETE


class ErrorMessage(_WireModel):
    """Error frame.

    ``code`` and ``recoverable`` are only set for errors raised by the
    transport handler itself (validation, rate limits, busy session).
    Errors coming from the generation carry just ``message``.
    """

    type: Literal["error"] = MSG_TYPE_ERROR
    message: str
    code: str | None = None
    recoverable: bool | None = None


ServerMessage = TextDeltaMessage | ToolCallMessage | ToolResultMessage | MessageCompleteMessage | ErrorMessage


# ============================================================================
# Client -> server (WebSocket)
# ============================================================================


class ChatClientMessage(BaseModel):
    """Request a generation for ``sessionId`` (or the connection's current session).

    ``content`` length is checked by the handler against ``max_message_length``.
    """

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["message"] = CLIENT_MSG_MESSAGE
    content: str
    session_id: str | None = Field(default=None, alias="sessionId")
    message_id: str | None = Field(default=None, alias="messageId")


class CancelClientMessage(BaseModel):
    type: Literal["cancel"] = CLIENT_MSG_CANCEL


class SessionClientMessage(BaseModel):
    """Subscribe the connection to a session without sending anything."""

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["session"] = CLIENT_MSG_SESSION
    session_id: str = Field(alias="sessionId", min_length=1)


ClientMessage = Annotated[
    ChatClientMessage | CancelClientMessage | SessionClientMessage,
    Field(discriminator="type"),
]

client_message_adapter: TypeAdapter[ChatClientMessage | CancelClientMessage | SessionClientMessage] = TypeAdapter(
    ClientMessage
)


# ============================================================================
# Client -> server (SSE chat route)
# ============================================================================


class ChatRequest(BaseModel):
    """Body of ``POST /api/chat``. The length cap comes from settings and is checked by the route."""

    model_config = ConfigDict(populate_by_name=True)

    message: str = Field(min_length=1)
    session_id: str | None = Field(default=None, alias="sessionId")


__all__ = [
    "CancelClientMessage",
    "ChatClientMessage",
    "ChatRequest",
    "ClientMessage",
    "ErrorMessage",
    "MessageCompleteMessage",
    "ServerMessage",
    "SessionClientMessage",
    "TextDeltaMessage",
    "ToolCallMessage",
    "ToolResultMessage",
    "client_message_adapter",
]
