"""Background sweep that evicts idle sessions from the registry."""

from __future__ import annotations

import asyncio
import contextlib

from core.constants import DEFAULT_REAPER_INTERVAL, DEFAULT_SESSION_IDLE_TIMEOUT
from core.session.registry import SessionRegistry
from utils.logger import logger


class IdleReaper:
    """One process-wide task calling ``registry.evict_idle`` on an interval."""

    def __init__(
        self,
        registry: SessionRegistry,
        max_idle_seconds: float = DEFAULT_SESSION_IDLE_TIMEOUT,
        interval_seconds: float = DEFAULT_REAPER_INTERVAL,
    ):
        self.registry = registry
        self.max_idle_seconds = max_idle_seconds
        self.interval_seconds = interval_seconds
        self.sweeps = 0
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the sweep task. No-op if already running."""
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name="idle-reaper")
            logger.info(
                f"Idle reaper started (max idle: {self.max_idle_seconds}s, interval: {self.interval_seconds}s)"
            )

    async def stop(self) -> None:
        """Stop the sweep task. No-op if not running."""
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
            logger.info("Idle reaper stopped")

    def sweep(self) -> list[str]:
        """Run one eviction pass."""
        self.sweeps += 1
        return self.registry.evict_idle(self.max_idle_seconds)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                self.sweep()
            except Exception as e:
                logger.error(f"Idle sweep failed: {e}", exc_info=True)


__all__ = ["IdleReaper"]
