"""
Standardized error response models for Session Stream.

Provides consistent error formatting across REST and WebSocket endpoints
with support for request tracking and error categorization.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from core.constants import MSG_TYPE_ERROR


class ErrorCode(str, Enum):
    """Application-specific error codes for categorization."""

    # Validation errors (2xxx)
    VALIDATION_ERROR = "VAL_2001"
    VALIDATION_MESSAGE_TOO_LONG = "VAL_2002"

    # Resource errors (3xxx)
    RESOURCE_NOT_FOUND = "RES_3001"
    METHOD_NOT_ALLOWED = "RES_3002"

    # Session errors (4xxx)
    SESSION_NOT_FOUND = "SES_4001"
    SESSION_CLOSED = "SES_4002"
    GENERATION_IN_PROGRESS = "SES_4003"

    # WebSocket / transport errors (6xxx)
    WS_MESSAGE_INVALID = "WS_6002"
    WS_SESSION_REQUIRED = "WS_6003"
    WS_TIMEOUT = "WS_6004"
    WS_RATE_LIMITED = "WS_6005"
    TRANSPORT_DISCONNECTED = "WS_6006"

    # Upstream errors (7xxx)
    UPSTREAM_FAILURE = "EXT_7001"

    # Persistence errors (8xxx)
    DATABASE_ERROR = "DB_8001"

    # Internal errors (9xxx)
    INTERNAL_ERROR = "INT_9001"


class ErrorDetail(BaseModel):
    """Detailed information about a specific validation or sub-error."""

    field: str | None = None
    message: str
    code: str | None = None


class ErrorResponse(BaseModel):
    """Standardized error response model for REST endpoints.

    Example response:
    {
        "error": {
            "code": "SES_4003",
            "message": "Session 'abc' already has a generation in progress",
            "request_id": "req_abc123",
            "timestamp": "2025-01-15T10:30:00Z",
            "path": "/api/chat"
        }
    }
    """

    code: ErrorCode
    message: str
    request_id: str | None = None
    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    details: list[ErrorDetail] | None = None
    path: str | None = None
    # Debug info - only included in debug mode
    debug: dict[str, Any] | None = Field(default=None, exclude=True)

    def to_dict(self, include_debug: bool = False) -> dict[str, Any]:
        """Convert to dictionary for JSON response."""
        data = self.model_dump(exclude_none=True)
        if include_debug and self.debug:
            data["debug"] = self.debug
        return {"error": data}


class WebSocketError(BaseModel):
    """Handler-level error frame sent over WebSocket.

    Shares ``type``/``message`` with generation errors so clients handle both
    the same way; ``code`` and ``recoverable`` tell them whether to retry.
    """

    type: str = MSG_TYPE_ERROR
    code: ErrorCode
    message: str
    recoverable: bool = True
    message_id: str | None = Field(default=None, serialization_alias="messageId")
    details: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for WebSocket JSON message."""
        return self.model_dump(exclude_none=True, by_alias=True)


ERROR_CODE_TO_STATUS: dict[ErrorCode, int] = {
    ErrorCode.VALIDATION_ERROR: 422,
    ErrorCode.VALIDATION_MESSAGE_TOO_LONG: 422,
    ErrorCode.RESOURCE_NOT_FOUND: 404,
    ErrorCode.METHOD_NOT_ALLOWED: 405,
    ErrorCode.SESSION_NOT_FOUND: 404,
    ErrorCode.SESSION_CLOSED: 410,
    ErrorCode.GENERATION_IN_PROGRESS: 409,
    ErrorCode.WS_RATE_LIMITED: 429,
    ErrorCode.UPSTREAM_FAILURE: 502,
    ErrorCode.DATABASE_ERROR: 500,
    ErrorCode.INTERNAL_ERROR: 500,
}


def get_status_code(error_code: ErrorCode) -> int:
    """Get HTTP status code for an error code."""
    return ERROR_CODE_TO_STATUS.get(error_code, 500)


__all__ = [
    "ERROR_CODE_TO_STATUS",
    "ErrorCode",
    "ErrorDetail",
    "ErrorResponse",
    "WebSocketError",
    "get_status_code",
]
