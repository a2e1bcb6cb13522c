"""
Request context middleware for Session Stream.

Provides request ID tracking and context propagation for both REST/SSE and
WebSocket endpoints. Implemented as plain ASGI middleware so long-lived SSE
responses keep their context (and disconnect detection) for their whole life.
"""

from __future__ import annotations

import secrets
import time

from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any

from starlette.datastructures import MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

# Context variable for request-scoped data
_request_context: ContextVar[RequestContext | None] = ContextVar("request_context", default=None)

# Request ID prefix for easy identification in logs
REQUEST_ID_PREFIX = "req_"
WEBSOCKET_ID_PREFIX = "ws_"

REQUEST_ID_HEADER = "X-Request-ID"

# Path segments whose following segment is a session id
_SESSION_PATH_SEGMENTS = ("sessions", "chat")


@dataclass
class RequestContext:
    """Request-scoped context for tracking and logging."""

    request_id: str
    start_time: float = field(default_factory=time.monotonic)
    path: str = ""
    method: str = ""
    client_ip: str | None = None
    session_id: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def elapsed_ms(self) -> float:
        """Get elapsed time since request start in milliseconds."""
        return (time.monotonic() - self.start_time) * 1000

    def to_log_context(self) -> dict[str, Any]:
        """Get context dict for logging."""
        ctx: dict[str, Any] = {
            "request_id": self.request_id,
            "path": self.path,
            "method": self.method,
        }
        if self.client_ip:
            ctx["client_ip"] = self.client_ip
        if self.session_id:
            ctx["session_id"] = self.session_id
        return ctx


def generate_request_id(prefix: str = REQUEST_ID_PREFIX) -> str:
    """Generate a unique request ID (prefix + 16 hex characters)."""
    return f"{prefix}{secrets.token_hex(8)}"


def get_request_context() -> RequestContext | None:
    """Get the current request context, or None outside of a request."""
    return _request_context.get()


def get_request_id() -> str | None:
    ctx = get_request_context()
    return ctx.request_id if ctx else None


def set_request_context(context: RequestContext | None) -> None:
    _request_context.set(context)


def update_request_context(**kwargs: Any) -> None:
    """Update fields in the current request context.

    Common usage:
        update_request_context(session_id="3f1c...")
    """
    ctx = get_request_context()
    if ctx:
        for key, value in kwargs.items():
            if hasattr(ctx, key):
                setattr(ctx, key, value)
            else:
                ctx.extra[key] = value


def _session_id_from_path(path: str) -> str | None:
    parts = [p for p in path.split("/") if p]
    for marker in _SESSION_PATH_SEGMENTS:
        if marker in parts:
            idx = parts.index(marker)
            if idx + 1 < len(parts):
                return parts[idx + 1]
    return None


def _client_ip(scope: Scope) -> str | None:
    for name, value in scope.get("headers", []):
        if name == b"x-forwarded-for":
            # First IP in chain is the original client
            return value.decode("latin-1").split(",")[0].strip()
    client = scope.get("client")
    return client[0] if client else None


class RequestContextMiddleware:
    """Initialize a request context for every HTTP request and WebSocket.

    HTTP responses get an ``X-Request-ID`` header; an incoming header of the
    same name is reused for distributed tracing.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] not in ("http", "websocket"):
            await self.app(scope, receive, send)
            return

        is_ws = scope["type"] == "websocket"
        incoming = dict(scope.get("headers", [])).get(REQUEST_ID_HEADER.lower().encode())
        request_id = incoming.decode("latin-1") if incoming else generate_request_id(
            WEBSOCKET_ID_PREFIX if is_ws else REQUEST_ID_PREFIX
        )

        context = RequestContext(
            request_id=request_id,
            path=scope.get("path", ""),
            method="WEBSOCKET" if is_ws else scope.get("method", ""),
            client_ip=_client_ip(scope),
            session_id=_session_id_from_path(scope.get("path", "")),
        )
        token = _request_context.set(context)

        async def send_with_request_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                headers[REQUEST_ID_HEADER] = request_id
            await send(message)

        try:
            await self.app(scope, receive, send if is_ws else send_with_request_id)
        finally:
            _request_context.reset(token)


__all__ = [
    "REQUEST_ID_HEADER",
    "REQUEST_ID_PREFIX",
    "WEBSOCKET_ID_PREFIX",
    "RequestContext",
    "RequestContextMiddleware",
    "generate_request_id",
    "get_request_context",
    "get_request_id",
    "set_request_context",
    "update_request_context",
]
