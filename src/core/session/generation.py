"""
Generation controller: the per-session state machine.

    idle --send--> generating --stop--> cancelling
      ^                |                    |
      +--- terminal ---+----- terminal -----+

One generation runs at a time. The upstream client is iterated by a producer
task that writes into a per-generation channel; a pump task reads that channel,
publishes every chunk to the hub and only then decides whether the chunk ended
the generation. The pump is the only place state returns to idle.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
import uuid

from collections.abc import Callable
from enum import Enum

from core.constants import CANCELLED_ERROR_MESSAGE, CHUNK_TYPE_ERROR, DEFAULT_CANCEL_GRACE_PERIOD
from core.session.broadcast import BroadcastHub
from core.session.cancellation import CancellationToken
from core.session.errors import GenerationInProgressError, UpstreamFailureError
from integrations.agent_client import AgentClient, AgentRequest
from models.chunk_models import StreamChunk
from utils.logger import logger

# Producer end-of-stream marker
_END = object()


class SessionState(str, Enum):
    IDLE = "idle"
    GENERATING = "generating"
    CANCELLING = "cancelling"


class Generation:
    """Handle for one in-flight generation.

    Returned by ``GenerationController.send`` before any chunk is produced.
    ``wait()`` resolves once the terminal chunk has been published.
    """

    def __init__(self, session_id: str, message_id: str | None = None):
        self.id = uuid.uuid4().hex[:12]
        self.session_id = session_id
        self.message_id = message_id
        self.token = CancellationToken()
        self.started_at = time.monotonic()
        self.finished_at: float | None = None
        self.chunks = 0
        self.outcome: str | None = None
        self._finished = asyncio.Event()
        self._producer: asyncio.Task[None] | None = None
        self._pump: asyncio.Task[None] | None = None
        self._watchdog: asyncio.Task[None] | None = None

    @property
    def done(self) -> bool:
        return self._finished.is_set()

    @property
    def duration_ms(self) -> float:
        end = self.finished_at if self.finished_at is not None else time.monotonic()
        return (end - self.started_at) * 1000

    async def wait(self, timeout: float | None = None) -> str | None:
        """Wait until the generation has finished and return its outcome."""
        await asyncio.wait_for(self._finished.wait(), timeout=timeout)
        return self.outcome


class GenerationController:
    """Runs generations for one session against an upstream agent client."""

    def __init__(
        self,
        session_id: str,
        hub: BroadcastHub,
        client: AgentClient,
        cancel_grace_period: float = DEFAULT_CANCEL_GRACE_PERIOD,
        on_activity: Callable[[], None] | None = None,
    ):
        self.session_id = session_id
        self.cancel_grace_period = cancel_grace_period
        self._hub = hub
        self._client = client
        self._on_activity = on_activity
        self._state = SessionState.IDLE
        self._current: Generation | None = None
        self._lock = asyncio.Lock()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def current(self) -> Generation | None:
        return self._current

    async def send(self, request: AgentRequest) -> Generation:
        """Start a generation and return its handle without waiting for output.

        Raises:
            GenerationInProgressError: If the session is not idle
        """
        async with self._lock:
            if self._state is not SessionState.IDLE:
                raise GenerationInProgressError(self.session_id, self._state.value)

            generation = Generation(self.session_id, request.message_id)
            channel: asyncio.Queue[object] = asyncio.Queue()
            self._current = generation
            self._state = SessionState.GENERATING

            generation._producer = asyncio.create_task(
                self._produce(generation, request, channel), name=f"producer-{generation.id}"
            )
            generation._pump = asyncio.create_task(self._run_pump(generation, channel), name=f"pump-{generation.id}")

        logger.info(f"Generation {generation.id} started", session_id=self.session_id, generation_id=generation.id)
        return generation

    async def stop(self) -> bool:
        """Request cancellation of the active generation.

        Returns:
            True if a generating session moved to cancelling. False when there
            was nothing to stop (idle, or already cancelling).
        """
        async with self._lock:
            generation = self._current
            if self._state is not SessionState.GENERATING or generation is None:
                logger.debug(f"Stop ignored in state {self._state.value}", session_id=self.session_id)
                return False

            self._state = SessionState.CANCELLING
            generation.token.cancel("stop requested")
            generation._watchdog = asyncio.create_task(
                self._enforce_grace_period(generation), name=f"cancel-grace-{generation.id}"
            )

        logger.info(f"Generation {generation.id} cancelling", session_id=self.session_id, generation_id=generation.id)
        return True

    def abort(self, reason: str = "session closed") -> bool:
        """Tear down the active generation immediately without publishing anything.

        Returns:
            True if a generation was aborted
        """
        generation = self._current
        if generation is None:
            return False

        generation.token.cancel(reason)
        for task in (generation._watchdog, generation._producer, generation._pump):
            if task is not None and not task.done():
                task.cancel()
        self._finish(generation, "aborted")
        return True

    async def _produce(self, generation: Generation, request: AgentRequest, channel: asyncio.Queue[object]) -> None:
        try:
            async for chunk in self._client.stream(request, generation.token):
                await channel.put(chunk)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(
                f"Upstream failed during generation {generation.id}: {e}",
                exc_info=True,
                session_id=self.session_id,
                generation_id=generation.id,
            )
            await channel.put(UpstreamFailureError(str(e) or type(e).__name__, self.session_id, cause=e))
        finally:
            channel.put_nowait(_END)

    async def _run_pump(self, generation: Generation, channel: asyncio.Queue[object]) -> None:
        terminal: StreamChunk | None = None
        try:
            while terminal is None:
                item = await channel.get()
                if item is _END:
                    break
                if isinstance(item, UpstreamFailureError):
                    terminal = StreamChunk.failure(item.message)
                    self._deliver(generation, terminal)
                    break
                assert isinstance(item, StreamChunk)
                # Deliver first, then decide
                self._deliver(generation, item)
                if item.is_terminal:
                    terminal = item

            if terminal is None:
                if self._state is SessionState.CANCELLING:
                    terminal = StreamChunk.failure(CANCELLED_ERROR_MESSAGE)
                else:
                    terminal = StreamChunk.done()
                self._deliver(generation, terminal)
        finally:
            if self._current is generation:
                self._finish(generation, self._outcome(terminal, generation))

    def _deliver(self, generation: Generation, chunk: StreamChunk) -> None:
        generation.chunks += 1
        self._hub.publish(chunk)
        if self._on_activity is not None:
            self._on_activity()

    def _outcome(self, terminal: StreamChunk | None, generation: Generation) -> str:
        if terminal is None:
            return "aborted"
        if self._state is SessionState.CANCELLING or generation.token.is_cancelled:
            return "cancelled"
        return "error" if terminal.type == CHUNK_TYPE_ERROR else "done"

    async def _enforce_grace_period(self, generation: Generation) -> None:
        producer = generation._producer
        if producer is None:
            return
        done, _ = await asyncio.wait({producer}, timeout=self.cancel_grace_period)
        if not done:
            logger.warning(
                f"Upstream ignored cancellation for {self.cancel_grace_period}s, cancelling producer",
                session_id=self.session_id,
                generation_id=generation.id,
            )
            producer.cancel()

    def _finish(self, generation: Generation, outcome: str) -> None:
        """Release the generation and return to idle. Runs without suspension."""
        if self._current is generation:
            self._current = None
            self._state = SessionState.IDLE

        if generation.done:
            return
        generation.outcome = outcome
        generation.finished_at = time.monotonic()
        generation._finished.set()

        producer = generation._producer
        if producer is not None and not producer.done():
            generation.token.cancel("generation finished")
            producer.cancel()
        watchdog = generation._watchdog
        if watchdog is not None and not watchdog.done() and watchdog is not asyncio.current_task():
            watchdog.cancel()

        logger.log_generation(
            session_id=self.session_id,
            generation_id=generation.id,
            outcome=outcome,
            chunks=generation.chunks,
            duration_ms=generation.duration_ms,
            subscribers=self._hub.subscriber_count,
        )

    async def aclose(self) -> None:
        """Abort and wait for the generation's tasks to unwind."""
        generation = self._current
        if generation is None:
            return
        self.abort()
        for task in (generation._producer, generation._pump, generation._watchdog):
            if task is not None:
                with contextlib.suppress(asyncio.CancelledError, Exception):
                    await task


__all__ = ["Generation", "GenerationController", "SessionState"]
