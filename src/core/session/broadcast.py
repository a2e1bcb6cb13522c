"""
Broadcast hub: fan-out of one session's chunk stream to its subscribers.

Every subscriber owns a channel. ``publish`` only enqueues, so it never blocks
on a consumer; a consumer that cannot keep up overflows its own channel and is
dropped without affecting anyone else. Subscribers registered with callbacks
get a dispatch task that drains their channel into the callback, one chunk at
a time and bounded by a timeout.
"""

from __future__ import annotations

import asyncio
import inspect
import time
import uuid

from collections.abc import Awaitable, Callable
from typing import Any, NoReturn

from core.constants import DEFAULT_SUBSCRIBER_CALLBACK_TIMEOUT, DEFAULT_SUBSCRIBER_QUEUE_SIZE, SESSION_CLOSED_MESSAGE
from core.session.errors import SessionClosedError, SessionStreamError, TransportDisconnectedError
from models.chunk_models import StreamChunk
from utils.logger import logger

ChunkCallback = Callable[[StreamChunk], Awaitable[None] | None]
ErrorCallback = Callable[[SessionStreamError], Awaitable[None] | None]


class Subscription:
    """A subscriber's registration against one session.

    Consume it either with callbacks (see ``BroadcastHub.subscribe``) or as an
    async iterator:

        subscription = hub.subscribe()
        async for chunk in subscription:
            ...

    Iteration ends when the subscription is unsubscribed, and raises the
    terminal error when it was closed by the session (closed, overflowed).
    """

    def __init__(
        self,
        hub: BroadcastHub,
        max_pending: int,
        callback_timeout: float,
        on_chunk: ChunkCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> None:
        self.id = uuid.uuid4().hex
        self.created_at = time.monotonic()
        self.delivered = 0
        self._hub = hub
        self._queue: asyncio.Queue[StreamChunk | None] = asyncio.Queue()
        self._max_pending = max_pending
        self._callback_timeout = callback_timeout
        self._on_chunk = on_chunk
        self._on_error = on_error
        self._closed = False
        self._error: SessionStreamError | None = None
        self._error_notified = False
        self._dispatch_task: asyncio.Task[None] | None = None
        self._background_tasks: set[asyncio.Task[Any]] = set()

    @property
    def session_id(self) -> str:
        return self._hub.session_id

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def error(self) -> SessionStreamError | None:
        return self._error

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def unsubscribe(self) -> None:
        """Stop receiving chunks. Idempotent."""
        self._hub.unsubscribe(self.id)

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> StreamChunk:
        if self._closed and self._queue.empty():
            self._raise_closed()
        chunk = await self._queue.get()
        if chunk is None:
            self._raise_closed()
        self.delivered += 1
        return chunk

    def _raise_closed(self) -> NoReturn:
        if self._error is not None:
            raise self._error
        raise StopAsyncIteration

    def _offer(self, chunk: StreamChunk) -> bool:
        """Enqueue without blocking. False means the subscriber must be dropped."""
        if self._closed:
            return False
        if self._queue.qsize() >= self._max_pending:
            return False
        self._queue.put_nowait(chunk)
        return True

    def _close(self, error: SessionStreamError | None = None) -> None:
        """Close the channel, discarding undelivered chunks."""
        if self._closed:
            return
        self._closed = True
        self._error = error
        while not self._queue.empty():
            self._queue.get_nowait()
        # Wake a reader blocked on an empty channel
        self._queue.put_nowait(None)
        if error is not None:
            self._notify_error(error)

    def _notify_error(self, error: SessionStreamError) -> None:
        if self._error_notified or self._on_error is None:
            return
        self._error_notified = True
        try:
            result = self._on_error(error)
        except Exception as e:
            logger.warning(f"Subscriber {self.id} error callback failed: {e}", session_id=self.session_id)
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._background_tasks.add(task)
            task.add_done_callback(self._background_tasks.discard)

    def _start_dispatch(self) -> None:
        self._dispatch_task = asyncio.create_task(self._dispatch(), name=f"subscriber-{self.id}")

    async def _dispatch(self) -> None:
        """Drain the channel into ``on_chunk`` in order."""
        assert self._on_chunk is not None
        try:
            async for chunk in self:
                try:
                    result = self._on_chunk(chunk)
                    if inspect.isawaitable(result):
                        await asyncio.wait_for(result, timeout=self._callback_timeout)
                except asyncio.TimeoutError:
                    logger.warning(
                        f"Subscriber {self.id} callback exceeded {self._callback_timeout}s, dropping",
                        session_id=self.session_id,
                    )
                    self._hub.drop(self, TransportDisconnectedError("Subscriber callback timed out", self.session_id))
                    return
                except Exception as e:
                    logger.warning(f"Subscriber {self.id} callback failed, dropping: {e}", session_id=self.session_id)
                    self._hub.drop(
                        self, TransportDisconnectedError(f"Subscriber callback failed: {e}", self.session_id)
                    )
                    return
        except SessionStreamError:
            # Terminal error already handed to on_error by _close
            return


class BroadcastHub:
    """Subscriber set of one session.

    ``publish`` is synchronous: when it returns, the chunk sits in the channel
    of every subscriber that was registered at the time of the call.
    """

    def __init__(
        self,
        session_id: str,
        max_pending: int = DEFAULT_SUBSCRIBER_QUEUE_SIZE,
        callback_timeout: float = DEFAULT_SUBSCRIBER_CALLBACK_TIMEOUT,
    ) -> None:
        self.session_id = session_id
        self.max_pending = max_pending
        self.callback_timeout = callback_timeout
        self._subscribers: dict[str, Subscription] = {}
        self._closed = False

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @property
    def subscriber_ids(self) -> list[str]:
        """Subscription ids in registration (delivery) order."""
        return list(self._subscribers)

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(
        self,
        on_chunk: ChunkCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> Subscription:
        """Register a subscriber. It receives chunks published from now on only.

        Args:
            on_chunk: Optional callback (sync or async) invoked for every chunk.
                Must be called from a running event loop when given.
            on_error: Optional callback invoked at most once with the terminal error

        Raises:
            SessionClosedError: If the hub was already closed
        """
        if self._closed:
            raise SessionClosedError(SESSION_CLOSED_MESSAGE, self.session_id)

        subscription = Subscription(
            self,
            max_pending=self.max_pending,
            callback_timeout=self.callback_timeout,
            on_chunk=on_chunk,
            on_error=on_error,
        )
        self._subscribers[subscription.id] = subscription
        if on_chunk is not None:
            subscription._start_dispatch()

        logger.debug(
            f"Subscriber {subscription.id} attached (session: {self.subscriber_count})",
            session_id=self.session_id,
        )
        return subscription

    def unsubscribe(self, subscription_id: str) -> bool:
        """Remove a subscriber. Returns False if it was not registered."""
        subscription = self._subscribers.pop(subscription_id, None)
        if subscription is None:
            return False
        subscription._close()
        logger.debug(
            f"Subscriber {subscription_id} detached (session: {self.subscriber_count})",
            session_id=self.session_id,
        )
        return True

    def publish(self, chunk: StreamChunk) -> int:
        """Enqueue ``chunk`` for every current subscriber.

        Returns:
            Number of subscribers the chunk was delivered to
        """
        delivered = 0
        for subscription in list(self._subscribers.values()):
            if subscription._offer(chunk):
                delivered += 1
            else:
                logger.warning(
                    f"Subscriber {subscription.id} overflowed {self.max_pending} pending chunks, dropping",
                    session_id=self.session_id,
                )
                self.drop(
                    subscription,
                    TransportDisconnectedError("Subscriber fell too far behind", self.session_id),
                )
        return delivered

    def drop(self, subscription: Subscription, error: SessionStreamError) -> None:
        """Remove a failed subscriber and hand it its terminal error."""
        if self._subscribers.get(subscription.id) is subscription:
            del self._subscribers[subscription.id]
        subscription._close(error)

    def close(self, error: SessionStreamError | None = None) -> None:
        """Close every subscription with ``error`` and refuse new ones."""
        self._closed = True
        subscriptions = list(self._subscribers.values())
        self._subscribers.clear()
        for subscription in subscriptions:
            subscription._close(error)


__all__ = ["BroadcastHub", "ChunkCallback", "ErrorCallback", "Subscription"]
