"""
WebSocket error handling utilities for Session Stream.

Handler-level rejections (bad frames, busy session, rate limits) are sent as
``error`` frames carrying ``code`` and ``recoverable`` so clients can tell them
apart from errors produced by a generation.
"""

from __future__ import annotations

import contextlib

from typing import Any

from fastapi import WebSocket

from core.session.errors import SessionStreamError
from models.error_models import ErrorCode, WebSocketError
from utils.logger import logger


# WebSocket close codes (RFC 6455 + application-specific)
class WSCloseCode:
    """WebSocket close codes for error scenarios."""

    # Standard codes
    NORMAL = 1000
    GOING_AWAY = 1001
    PROTOCOL_ERROR = 1002
    INVALID_PAYLOAD = 1007
    POLICY_VIOLATION = 1008
    MESSAGE_TOO_BIG = 1009
    INTERNAL_ERROR = 1011

    # Application-specific codes (4000-4999)
    SESSION_NOT_FOUND = 4404
    SESSION_CLOSED = 4410
    RATE_LIMITED = 4429
    SERVER_ERROR = 4500
    TIMEOUT = 4504


# Map error codes to WebSocket close codes
ERROR_CODE_TO_WS_CLOSE: dict[ErrorCode, int] = {
    ErrorCode.SESSION_NOT_FOUND: WSCloseCode.SESSION_NOT_FOUND,
    ErrorCode.SESSION_CLOSED: WSCloseCode.SESSION_CLOSED,
    ErrorCode.WS_RATE_LIMITED: WSCloseCode.RATE_LIMITED,
    ErrorCode.WS_TIMEOUT: WSCloseCode.TIMEOUT,
    ErrorCode.INTERNAL_ERROR: WSCloseCode.SERVER_ERROR,
}


async def send_ws_error(
    websocket: WebSocket,
    code: ErrorCode,
    message: str,
    message_id: str | None = None,
    recoverable: bool = True,
    details: dict[str, Any] | None = None,
) -> None:
    """Send a standardized error frame over WebSocket.

    Args:
        websocket: Active WebSocket connection
        code: Application error code
        message: Human-readable error message
        message_id: Client message the error refers to (if any)
        recoverable: Whether the client may retry on the same connection
        details: Additional error context
    """
    error = WebSocketError(
        code=code,
        message=message,
        recoverable=recoverable,
        message_id=message_id,
        details=details,
    )

    try:
        await websocket.send_json(error.to_dict())
    except Exception as e:
        # Connection may already be closed
        logger.warning(f"Failed to send WebSocket error: {e}")


async def send_stream_error(
    websocket: WebSocket,
    error: SessionStreamError,
    message_id: str | None = None,
) -> None:
    """Send a streaming core exception as an error frame."""
    await send_ws_error(
        websocket,
        code=error.code,
        message=error.message,
        message_id=message_id,
        recoverable=error.recoverable,
    )


async def close_with_error(
    websocket: WebSocket,
    code: ErrorCode,
    message: str,
) -> None:
    """Send a non-recoverable error frame, then close with the matching close code."""
    await send_ws_error(websocket, code=code, message=message, recoverable=False)

    ws_close_code = ERROR_CODE_TO_WS_CLOSE.get(code, WSCloseCode.SERVER_ERROR)
    with contextlib.suppress(Exception):
        await websocket.close(code=ws_close_code, reason=message.encode("utf-8")[:123].decode("utf-8", errors="ignore"))


__all__ = [
    "ERROR_CODE_TO_WS_CLOSE",
    "WSCloseCode",
    "close_with_error",
    "send_stream_error",
    "send_ws_error",
]
