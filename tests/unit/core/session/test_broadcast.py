"""Tests for the broadcast hub: ordering, isolation and teardown."""

from __future__ import annotations

import asyncio

from unittest.mock import Mock

import pytest

from conftest import wait_for_condition
from core.session.broadcast import BroadcastHub
from core.session.errors import SessionClosedError, TransportDisconnectedError
from models.chunk_models import StreamChunk


def _texts(n: int) -> list[StreamChunk]:
    return [StreamChunk.text(str(i)) for i in range(n)]


async def _drain(subscription, count: int) -> list[StreamChunk]:  # type: ignore[no-untyped-def]
    received = []
    async for chunk in subscription:
        received.append(chunk)
        if len(received) == count:
            break
    return received


class TestFanOut:
    @pytest.mark.asyncio
    async def test_every_subscriber_sees_identical_order(self) -> None:
        hub = BroadcastHub("s1")
        subs = [hub.subscribe() for _ in range(3)]
        chunks = _texts(20)

        for chunk in chunks:
            assert hub.publish(chunk) == 3

        for sub in subs:
            assert await _drain(sub, 20) == chunks

    @pytest.mark.asyncio
    async def test_late_subscriber_gets_no_replay(self) -> None:
        hub = BroadcastHub("s1")
        early = hub.subscribe()
        hub.publish(StreamChunk.text("before"))
        late = hub.subscribe()
        hub.publish(StreamChunk.text("after"))

        assert [c.content for c in await _drain(early, 2)] == ["before", "after"]
        assert [c.content for c in await _drain(late, 1)] == ["after"]
        assert late.pending == 0

    @pytest.mark.asyncio
    async def test_publish_without_subscribers(self) -> None:
        hub = BroadcastHub("s1")
        assert hub.publish(StreamChunk.text("x")) == 0

    @pytest.mark.asyncio
    async def test_subscriber_ids_keep_registration_order(self) -> None:
        hub = BroadcastHub("s1")
        ids = [hub.subscribe().id for _ in range(4)]
        assert hub.subscriber_ids == ids

    @pytest.mark.asyncio
    async def test_async_callback_receives_chunks_in_order(self) -> None:
        hub = BroadcastHub("s1")
        received: list[str | None] = []

        async def on_chunk(chunk: StreamChunk) -> None:
            await asyncio.sleep(0)
            received.append(chunk.content)

        hub.subscribe(on_chunk=on_chunk)
        for chunk in _texts(5):
            hub.publish(chunk)

        await wait_for_condition(lambda: len(received) == 5)
        assert received == ["0", "1", "2", "3", "4"]

    @pytest.mark.asyncio
    async def test_sync_callback_is_supported(self) -> None:
        hub = BroadcastHub("s1")
        received: list[StreamChunk] = []
        hub.subscribe(on_chunk=received.append)

        hub.publish(StreamChunk.done())

        await wait_for_condition(lambda: len(received) == 1)
        assert received[0].type == "done"


class TestUnsubscribe:
    @pytest.mark.asyncio
    async def test_unsubscribe_is_idempotent(self) -> None:
        hub = BroadcastHub("s1")
        sub = hub.subscribe()

        assert hub.unsubscribe(sub.id) is True
        assert hub.unsubscribe(sub.id) is False
        sub.unsubscribe()
        assert hub.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_unsubscribe_discards_pending_and_ends_iteration(self) -> None:
        hub = BroadcastHub("s1")
        sub = hub.subscribe()
        hub.publish(StreamChunk.text("pending"))

        sub.unsubscribe()

        received = [chunk async for chunk in sub]
        assert received == []
        assert sub.closed
        assert sub.error is None

    @pytest.mark.asyncio
    async def test_unsubscribe_wakes_blocked_reader(self) -> None:
        hub = BroadcastHub("s1")
        sub = hub.subscribe()

        reader = asyncio.create_task(_drain(sub, 1))
        await asyncio.sleep(0.01)
        sub.unsubscribe()

        assert await asyncio.wait_for(reader, timeout=1.0) == []

    @pytest.mark.asyncio
    async def test_unsubscribe_mid_stream_leaves_others_untouched(self) -> None:
        hub = BroadcastHub("s1")
        leaving = hub.subscribe()
        staying = hub.subscribe()

        hub.publish(StreamChunk.text("1"))
        leaving.unsubscribe()
        hub.publish(StreamChunk.text("2"))

        assert [c.content for c in await _drain(staying, 2)] == ["1", "2"]


class TestFailureIsolation:
    @pytest.mark.asyncio
    async def test_raising_callback_only_drops_its_subscriber(self) -> None:
        hub = BroadcastHub("s1")
        on_error = Mock()
        good: list[StreamChunk] = []

        def bad(chunk: StreamChunk) -> None:
            raise RuntimeError("socket gone")

        hub.subscribe(on_chunk=bad, on_error=on_error)
        hub.subscribe(on_chunk=good.append)

        for chunk in _texts(3):
            hub.publish(chunk)

        await wait_for_condition(lambda: len(good) == 3)
        assert hub.subscriber_count == 1
        on_error.assert_called_once()
        assert isinstance(on_error.call_args.args[0], TransportDisconnectedError)

    @pytest.mark.asyncio
    async def test_slow_callback_times_out_and_is_dropped(self) -> None:
        hub = BroadcastHub("s1", callback_timeout=0.05)
        errors: list[Exception] = []
        fast: list[StreamChunk] = []

        async def slow(chunk: StreamChunk) -> None:
            await asyncio.sleep(5)

        hub.subscribe(on_chunk=slow, on_error=errors.append)
        hub.subscribe(on_chunk=fast.append)

        hub.publish(StreamChunk.text("a"))
        hub.publish(StreamChunk.text("b"))

        await wait_for_condition(lambda: len(errors) == 1 and len(fast) == 2)
        assert isinstance(errors[0], TransportDisconnectedError)
        assert hub.subscriber_count == 1

    @pytest.mark.asyncio
    async def test_overflow_drops_lagging_subscriber(self) -> None:
        hub = BroadcastHub("s1", max_pending=2)
        errors: list[Exception] = []
        lagging = hub.subscribe(on_error=errors.append)
        reader = hub.subscribe()

        hub.publish(StreamChunk.text("1"))
        assert [c.content for c in await _drain(reader, 1)] == ["1"]
        hub.publish(StreamChunk.text("2"))
        delivered = hub.publish(StreamChunk.text("3"))

        assert delivered == 1
        assert lagging.closed
        assert len(errors) == 1
        with pytest.raises(TransportDisconnectedError):
            await lagging.__anext__()
        assert [c.content for c in await _drain(reader, 2)] == ["2", "3"]

    @pytest.mark.asyncio
    async def test_on_error_called_at_most_once(self) -> None:
        hub = BroadcastHub("s1", max_pending=1)
        on_error = Mock()
        sub = hub.subscribe(on_error=on_error)

        hub.publish(StreamChunk.text("1"))
        hub.publish(StreamChunk.text("2"))
        hub.drop(sub, TransportDisconnectedError("again", "s1"))

        on_error.assert_called_once()


class TestClose:
    @pytest.mark.asyncio
    async def test_close_hands_terminal_error_to_every_subscriber(self) -> None:
        hub = BroadcastHub("s1")
        first = hub.subscribe()
        second_errors: list[Exception] = []
        hub.subscribe(on_chunk=lambda chunk: None, on_error=second_errors.append)

        hub.close(SessionClosedError("Session closed", "s1"))

        with pytest.raises(SessionClosedError):
            await first.__anext__()
        await wait_for_condition(lambda: len(second_errors) == 1)
        assert hub.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_subscribe_after_close_is_rejected(self) -> None:
        hub = BroadcastHub("s1")
        hub.close()

        with pytest.raises(SessionClosedError):
            hub.subscribe()
