"""
Error taxonomy for the session streaming core.

Errors raised synchronously to callers (unknown session, busy session) and
errors handed to subscribers as terminal conditions (closed session, dropped
transport) share one base class so routes can map them with a single handler.
"""

from __future__ import annotations

from models.error_models import ErrorCode


class SessionStreamError(Exception):
    """Base class for streaming core errors."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    recoverable: bool = True

    def __init__(self, message: str, session_id: str | None = None):
        self.message = message
        self.session_id = session_id
        super().__init__(message)


class SessionNotFoundError(SessionStreamError):
    """Operation referenced a session id the registry does not hold."""

    code = ErrorCode.SESSION_NOT_FOUND
    recoverable = False

    def __init__(self, session_id: str):
        super().__init__(f"Session '{session_id}' not found", session_id=session_id)


class GenerationInProgressError(SessionStreamError):
    """``send`` was called while the session was not idle."""

    code = ErrorCode.GENERATION_IN_PROGRESS

    def __init__(self, session_id: str, state: str):
        self.state = state
        super().__init__(
            f"Session '{session_id}' already has a generation in progress ({state})",
            session_id=session_id,
        )


class UpstreamFailureError(SessionStreamError):
    """The agent client raised. Surfaced to subscribers as an ``error`` chunk."""

    code = ErrorCode.UPSTREAM_FAILURE

    def __init__(self, message: str, session_id: str | None = None, cause: BaseException | None = None):
        self.cause = cause
        super().__init__(message, session_id=session_id)


class TransportDisconnectedError(SessionStreamError):
    """A subscriber failed, stalled, or overflowed and was dropped from its session."""

    code = ErrorCode.TRANSPORT_DISCONNECTED


class SessionClosedError(SessionStreamError):
    """The session was closed while the subscriber was attached."""

    code = ErrorCode.SESSION_CLOSED
    recoverable = False


__all__ = [
    "GenerationInProgressError",
    "SessionClosedError",
    "SessionNotFoundError",
    "SessionStreamError",
    "TransportDisconnectedError",
    "UpstreamFailureError",
]
