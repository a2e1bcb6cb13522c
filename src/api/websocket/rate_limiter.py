"""Sliding window limit on chat messages per session."""

from __future__ import annotations

import time

from collections import deque
from collections.abc import Callable


class SessionRateLimiter:
    """In-memory sliding window rate limiter keyed by session id.

    Every WebSocket connection of the process shares one limiter, so a session
    cannot dodge the limit by opening more sockets.
    """

    def __init__(
        self,
        max_messages: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_messages = max_messages
        self.window_seconds = window_seconds
        self._clock = clock
        self._timestamps: dict[str, deque[float]] = {}

    def is_allowed(self, session_id: str) -> bool:
        """Record a message for ``session_id`` if it is under the limit."""
        now = self._clock()
        timestamps = self._timestamps.setdefault(session_id, deque())

        # Remove timestamps outside the sliding window
        cutoff = now - self.window_seconds
        while timestamps and timestamps[0] <= cutoff:
            timestamps.popleft()

        if len(timestamps) >= self.max_messages:
            return False
        timestamps.append(now)
        return True

    def retry_after(self, session_id: str) -> float:
        """Seconds until the oldest message in the window expires."""
        timestamps = self._timestamps.get(session_id)
        if not timestamps:
            return 0.0
        return max(0.0, timestamps[0] + self.window_seconds - self._clock())

    def cleanup(self) -> int:
        """Drop sessions with no messages inside the window."""
        cutoff = self._clock() - self.window_seconds
        expired = [key for key, stamps in self._timestamps.items() if not stamps or stamps[-1] <= cutoff]
        for key in expired:
            del self._timestamps[key]
        return len(expired)


__all__ = ["SessionRateLimiter"]
