"""Live session: a broadcast hub plus a generation controller."""

from __future__ import annotations

import time

from collections.abc import Callable
from typing import Any

from core.constants import (
    DEFAULT_CANCEL_GRACE_PERIOD,
    DEFAULT_SUBSCRIBER_CALLBACK_TIMEOUT,
    DEFAULT_SUBSCRIBER_QUEUE_SIZE,
    SESSION_CLOSED_MESSAGE,
)
from core.session.broadcast import BroadcastHub, ChunkCallback, ErrorCallback, Subscription
from core.session.errors import SessionClosedError
from core.session.generation import Generation, GenerationController, SessionState
from integrations.agent_client import AgentClient, AgentRequest


class Session:
    """One conversational session held by the registry.

    The session owns its hub (subscribers) and its controller (generation).
    ``last_activity_at`` is a monotonic timestamp refreshed on subscribe, send
    and every delivered chunk; the reaper compares it against the idle timeout.
    """

    def __init__(
        self,
        session_id: str,
        client: AgentClient,
        *,
        max_pending: int = DEFAULT_SUBSCRIBER_QUEUE_SIZE,
        callback_timeout: float = DEFAULT_SUBSCRIBER_CALLBACK_TIMEOUT,
        cancel_grace_period: float = DEFAULT_CANCEL_GRACE_PERIOD,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.id = session_id
        self._clock = clock
        self.created_at = clock()
        self.last_activity_at = self.created_at
        self.closed = False
        self.hub = BroadcastHub(session_id, max_pending=max_pending, callback_timeout=callback_timeout)
        self.controller = GenerationController(
            session_id,
            self.hub,
            client,
            cancel_grace_period=cancel_grace_period,
            on_activity=self.touch,
        )

    @property
    def state(self) -> SessionState:
        return self.controller.state

    @property
    def subscriber_count(self) -> int:
        return self.hub.subscriber_count

    @property
    def pending_generation(self) -> Generation | None:
        return self.controller.current

    def touch(self) -> None:
        self.last_activity_at = self._clock()

    def idle_for(self, now: float | None = None) -> float:
        return (now if now is not None else self._clock()) - self.last_activity_at

    def is_evictable(self, max_idle_seconds: float, now: float | None = None) -> bool:
        """Idle state, nobody attached, and no activity for longer than ``max_idle_seconds``."""
        return (
            self.state is SessionState.IDLE
            and self.controller.current is None
            and self.subscriber_count == 0
            and self.idle_for(now) > max_idle_seconds
        )

    def subscribe(self, on_chunk: ChunkCallback | None = None, on_error: ErrorCallback | None = None) -> Subscription:
        subscription = self.hub.subscribe(on_chunk=on_chunk, on_error=on_error)
        self.touch()
        return subscription

    async def send(
        self,
        content: str,
        *,
        message_id: str | None = None,
        history: list[dict[str, Any]] | None = None,
    ) -> Generation:
        self.touch()
        request = AgentRequest(session_id=self.id, content=content, message_id=message_id, history=history or [])
        return await self.controller.send(request)

    async def stop(self) -> bool:
        return await self.controller.stop()

    def close(self) -> None:
        """Abort any generation and close every subscriber with SessionClosedError."""
        if self.closed:
            return
        self.closed = True
        self.controller.abort("session closed")
        self.hub.close(SessionClosedError(SESSION_CLOSED_MESSAGE, self.id))

    def describe(self) -> dict[str, Any]:
        generation = self.controller.current
        return {
            "session_id": self.id,
            "state": self.state.value,
            "subscribers": self.subscriber_count,
            "idle_seconds": round(self.idle_for(), 3),
            "generation": (
                {
                    "id": generation.id,
                    "message_id": generation.message_id,
                    "chunks": generation.chunks,
                    "elapsed_ms": round(generation.duration_ms, 1),
                }
                if generation is not None
                else None
            ),
        }


__all__ = ["Session"]
