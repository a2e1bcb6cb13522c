"""
Session registry: the single owner of live sessions.

Transports never hold sessions directly. They subscribe, send and stop through
the registry by session id; the registry map lock is held only for lookups and
inserts, never across a generation.
"""

from __future__ import annotations

import asyncio
import time

from collections.abc import Callable
from typing import Any

from core.constants import DEFAULT_CANCEL_GRACE_PERIOD, DEFAULT_SUBSCRIBER_CALLBACK_TIMEOUT, DEFAULT_SUBSCRIBER_QUEUE_SIZE
from core.session.base import Session
from core.session.broadcast import ChunkCallback, ErrorCallback, Subscription
from core.session.errors import SessionNotFoundError
from core.session.generation import Generation, SessionState
from integrations.agent_client import AgentClient
from utils.logger import logger


class SessionRegistry:
    """Map of session id to live Session."""

    def __init__(
        self,
        client: AgentClient,
        *,
        max_pending: int = DEFAULT_SUBSCRIBER_QUEUE_SIZE,
        callback_timeout: float = DEFAULT_SUBSCRIBER_CALLBACK_TIMEOUT,
        cancel_grace_period: float = DEFAULT_CANCEL_GRACE_PERIOD,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            client: Upstream agent client shared by every session
            max_pending: Per-subscriber channel bound before it is dropped
            callback_timeout: Seconds a subscriber callback may take per chunk
            cancel_grace_period: Seconds the upstream gets to honor a stop
            clock: Monotonic clock, replaceable in tests
        """
        self.client = client
        self.max_pending = max_pending
        self.callback_timeout = callback_timeout
        self.cancel_grace_period = cancel_grace_period
        self._clock = clock
        self._sessions: dict[str, Session] = {}
        self._lock = asyncio.Lock()
        self._created = 0
        self._evicted = 0

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    @property
    def session_ids(self) -> list[str]:
        return list(self._sessions)

    async def get_or_create(self, session_id: str) -> Session:
        """Return the live session, creating an idle one if needed."""
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                session = Session(
                    session_id,
                    self.client,
                    max_pending=self.max_pending,
                    callback_timeout=self.callback_timeout,
                    cancel_grace_period=self.cancel_grace_period,
                    clock=self._clock,
                )
                self._sessions[session_id] = session
                self._created += 1
                logger.info(f"Session created ({len(self._sessions)} live)", session_id=session_id)
            return session

    def get(self, session_id: str) -> Session:
        """
        Raises:
            SessionNotFoundError: If no live session has this id
        """
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    async def subscribe(
        self,
        session_id: str,
        on_chunk: ChunkCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> Subscription:
        """Attach a subscriber, creating the session if it does not exist yet."""
        session = await self.get_or_create(session_id)
        return session.subscribe(on_chunk=on_chunk, on_error=on_error)

    async def send(
        self,
        session_id: str,
        content: str,
        *,
        message_id: str | None = None,
        history: list[dict[str, Any]] | None = None,
        create: bool = False,
    ) -> Generation:
        """Start a generation on the session.

        Raises:
            SessionNotFoundError: If the session is unknown and ``create`` is False
            GenerationInProgressError: If the session is not idle
        """
        session = await self.get_or_create(session_id) if create else self.get(session_id)
        return await session.send(content, message_id=message_id, history=history)

    async def stop(self, session_id: str) -> bool:
        """Cancel the session's generation. False when there was nothing to stop.

        Raises:
            SessionNotFoundError: If the session is unknown
        """
        return await self.get(session_id).stop()

    def close(self, session_id: str) -> bool:
        """Tear down a session. Returns whether it existed."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        session.close()
        logger.info(f"Session closed ({len(self._sessions)} live)", session_id=session_id)
        return True

    def evict_idle(self, max_idle_seconds: float, now: float | None = None) -> list[str]:
        """Remove sessions idle, unsubscribed and inactive for longer than ``max_idle_seconds``."""
        now = now if now is not None else self._clock()
        evicted = [
            session_id
            for session_id, session in list(self._sessions.items())
            if session.is_evictable(max_idle_seconds, now)
        ]
        for session_id in evicted:
            session = self._sessions.pop(session_id)
            session.close()
        if evicted:
            self._evicted += len(evicted)
            logger.info(f"Evicted {len(evicted)} idle sessions ({len(self._sessions)} live)")
        return evicted

    async def shutdown(self) -> int:
        """Close every session. Used at process shutdown."""
        sessions = list(self._sessions.values())
        self._sessions.clear()
        for session in sessions:
            await session.controller.aclose()
            session.close()
        if sessions:
            logger.info(f"Registry shut down, closed {len(sessions)} sessions")
        return len(sessions)

    def describe(self, session_id: str) -> dict[str, Any]:
        """
        Raises:
            SessionNotFoundError: If the session is unknown
        """
        return self.get(session_id).describe()

    def stats(self) -> dict[str, Any]:
        sessions = list(self._sessions.values())
        return {
            "live_sessions": len(sessions),
            "generating": sum(1 for s in sessions if s.state is SessionState.GENERATING),
            "cancelling": sum(1 for s in sessions if s.state is SessionState.CANCELLING),
            "subscribers": sum(s.subscriber_count for s in sessions),
            "created_total": self._created,
            "evicted_total": self._evicted,
        }


__all__ = ["SessionRegistry"]
