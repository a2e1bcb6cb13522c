"""Session streaming core.

    from core.session import SessionRegistry

    registry = SessionRegistry(client)
    subscription = await registry.subscribe("abc")
    await registry.send("abc", "hello")
    async for chunk in subscription:
        ...
"""

from .base import Session
from .broadcast import BroadcastHub, Subscription
from .cancellation import CancellationToken
from .encoder import chunk_to_server_message, encode_sse, encode_ws, is_final_message
from .errors import (
    GenerationInProgressError,
    SessionClosedError,
    SessionNotFoundError,
    SessionStreamError,
    TransportDisconnectedError,
    UpstreamFailureError,
)
from .generation import Generation, GenerationController, SessionState
from .reaper import IdleReaper
from .registry import SessionRegistry

__all__ = [
    "BroadcastHub",
    "CancellationToken",
    "Generation",
    "GenerationController",
    "GenerationInProgressError",
    "IdleReaper",
    "Session",
    "SessionClosedError",
    "SessionNotFoundError",
    "SessionRegistry",
    "SessionState",
    "SessionStreamError",
    "Subscription",
    "TransportDisconnectedError",
    "UpstreamFailureError",
    "chunk_to_server_message",
    "encode_sse",
    "encode_ws",
    "is_final_message",
]
