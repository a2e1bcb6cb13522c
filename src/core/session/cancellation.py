"""
Cancellation token for cooperative generation cancellation.

The generation controller owns one token per generation and hands it to the
upstream agent client. ``cancel`` is synchronous so it can be called from
``stop`` and from the synchronous registry ``close`` path.
"""

from __future__ import annotations

import asyncio
import contextlib

from collections.abc import Callable

from utils.logger import logger


class CancellationToken:
    """Cooperative cancellation signal for one generation.

    Usage:
        token = CancellationToken()

        # In the controller:
        token.cancel("stop requested")

        # In the upstream client:
        async for event in stream:
            if token.is_cancelled:
                break
            ...
    """

    __slots__ = ("_callbacks", "_cancel_reason", "_cancelled")

    def __init__(self) -> None:
        self._cancelled = asyncio.Event()
        self._callbacks: list[Callable[[], None]] = []
        self._cancel_reason: str | None = None

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def cancel_reason(self) -> str | None:
        return self._cancel_reason

    def cancel(self, reason: str | None = None) -> bool:
        """Request cancellation and notify callbacks.

        Returns:
            True if this call cancelled the token, False if it already was
        """
        if self._cancelled.is_set():
            return False

        self._cancel_reason = reason
        self._cancelled.set()

        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            self._invoke_callback(callback)
        return True

    def _invoke_callback(self, callback: Callable[[], None]) -> None:
        try:
            callback()
        except Exception as e:
            logger.warning(f"Cancellation callback error: {e}")

    async def wait(self, timeout: float | None = None) -> bool:
        """Wait for cancellation.

        Returns:
            True if cancelled, False if the timeout expired first
        """
        try:
            await asyncio.wait_for(self._cancelled.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    def on_cancel(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register a callback run on cancellation (immediately if already cancelled)."""
        if self._cancelled.is_set():
            self._invoke_callback(callback)
        else:
            self._callbacks.append(callback)
        return callback

    def remove_callback(self, callback: Callable[[], None]) -> None:
        with contextlib.suppress(ValueError):
            self._callbacks.remove(callback)

    def check(self) -> None:
        """Raise CancelledError if cancellation was requested.

        Raises:
            asyncio.CancelledError: If the token is cancelled
        """
        if self.is_cancelled:
            raise asyncio.CancelledError(self._cancel_reason or "Cancellation requested")


__all__ = ["CancellationToken"]
