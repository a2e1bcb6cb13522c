"""Tests for the session registry and idle eviction."""

from __future__ import annotations

import asyncio

from collections.abc import Callable

import pytest

from conftest import FakeClock, ScriptedAgentClient, collect_until_terminal, text_script, wait_for_condition
from core.session.errors import GenerationInProgressError, SessionClosedError, SessionNotFoundError
from core.session.generation import SessionState
from core.session.registry import SessionRegistry
from models.chunk_models import StreamChunk


class TestLookup:
    @pytest.mark.asyncio
    async def test_get_or_create_never_duplicates(self, make_registry: Callable[..., SessionRegistry]) -> None:
        registry = make_registry()

        sessions = await asyncio.gather(*(registry.get_or_create("s1") for _ in range(10)))

        assert len({id(s) for s in sessions}) == 1
        assert len(registry) == 1
        assert sessions[0].state is SessionState.IDLE

    @pytest.mark.asyncio
    async def test_get_unknown_raises(self, make_registry: Callable[..., SessionRegistry]) -> None:
        registry = make_registry()
        with pytest.raises(SessionNotFoundError) as exc_info:
            registry.get("missing")
        assert exc_info.value.session_id == "missing"

    @pytest.mark.asyncio
    async def test_send_to_unknown_session_without_create(self, make_registry: Callable[..., SessionRegistry]) -> None:
        registry = make_registry()
        with pytest.raises(SessionNotFoundError):
            await registry.send("missing", "hi")
        assert "missing" not in registry

    @pytest.mark.asyncio
    async def test_stop_unknown_session(self, make_registry: Callable[..., SessionRegistry]) -> None:
        registry = make_registry()
        with pytest.raises(SessionNotFoundError):
            await registry.stop("missing")


class TestTransportOperations:
    @pytest.mark.asyncio
    async def test_subscribe_creates_session_and_receives_generation(self) -> None:
        client = ScriptedAgentClient(text_script("Hello", " there"))
        registry = SessionRegistry(client)

        subscription = await registry.subscribe("s1")
        await registry.send("s1", "hi", message_id="m1", history=[{"role": "user", "content": "before"}])
        chunks = await collect_until_terminal(subscription)

        assert [c.content for c in chunks if c.type == "text"] == ["Hello", " there"]
        request = client.requests[0]
        assert request.session_id == "s1"
        assert request.message_id == "m1"
        assert request.history == [{"role": "user", "content": "before"}]

    @pytest.mark.asyncio
    async def test_send_with_create(self, make_registry: Callable[..., SessionRegistry]) -> None:
        registry = make_registry()
        generation = await registry.send("new", "hi", create=True)
        assert await generation.wait(timeout=1) == "done"
        assert "new" in registry

    @pytest.mark.asyncio
    async def test_busy_session_rejects_send(self) -> None:
        registry = SessionRegistry(ScriptedAgentClient([StreamChunk.text("a"), 10]))
        await registry.get_or_create("s1")
        await registry.send("s1", "first")

        with pytest.raises(GenerationInProgressError):
            await registry.send("s1", "second")

        assert await registry.stop("s1") is True

    @pytest.mark.asyncio
    async def test_stop_can_come_from_any_caller(self) -> None:
        registry = SessionRegistry(ScriptedAgentClient([StreamChunk.text("a"), 10]))
        watcher = await registry.subscribe("s1")
        await registry.send("s1", "hi")

        assert await registry.stop("s1") is True
        chunks = await collect_until_terminal(watcher)
        assert chunks[-1].type == "error"

    @pytest.mark.asyncio
    async def test_send_after_stop_runs_next_turn(self) -> None:
        client = ScriptedAgentClient([StreamChunk.text("partial"), 10])
        registry = SessionRegistry(client)
        watcher = await registry.subscribe("s1")
        await registry.send("s1", "first")
        assert (await watcher.__anext__()).content == "partial"

        assert await registry.stop("s1") is True
        assert [c.type for c in await collect_until_terminal(watcher)] == ["error"]
        await wait_for_condition(lambda: registry.get("s1").state is SessionState.IDLE)

        client.script = text_script("again")
        generation = await registry.send("s1", "second")
        chunks = await collect_until_terminal(watcher)

        assert [c.type for c in chunks] == ["text", "done"]
        assert chunks[0].content == "again"
        assert await generation.wait(timeout=1) == "done"
        assert len(client.requests) == 2
        await registry.shutdown()

    @pytest.mark.asyncio
    async def test_subscriber_leaving_mid_turn_does_not_affect_others(self) -> None:
        script: list[object] = []
        for part in "12345":
            script += [StreamChunk.text(part), 0.05]
        script.append(StreamChunk.done())
        registry = SessionRegistry(ScriptedAgentClient(script))
        first = await registry.subscribe("s1")
        second = await registry.subscribe("s1")
        leaving = await registry.subscribe("s1")

        async def _leave_after(count: int) -> list[str]:
            received: list[str] = []
            async for chunk in leaving:
                received.append(chunk.content)
                if len(received) == count:
                    leaving.unsubscribe()
                    break
            return received

        await registry.send("s1", "hi")
        first_chunks, second_chunks, left = await asyncio.gather(
            collect_until_terminal(first), collect_until_terminal(second), _leave_after(2)
        )

        assert left == ["1", "2"]
        for chunks in (first_chunks, second_chunks):
            assert [c.content for c in chunks if c.type == "text"] == ["1", "2", "3", "4", "5"]
            assert chunks[-1].type == "done"
        assert registry.get("s1").subscriber_count == 2
        await registry.shutdown()

    @pytest.mark.asyncio
    async def test_sessions_are_independent(self) -> None:
        registry = SessionRegistry(ScriptedAgentClient([StreamChunk.text("a"), 10]))
        await registry.send("s1", "hi", create=True)
        await registry.send("s2", "hi", create=True)

        assert await registry.stop("s1") is True
        assert registry.get("s2").state is SessionState.GENERATING
        registry.close("s2")


class TestClose:
    @pytest.mark.asyncio
    async def test_close_tears_down_subscribers_and_generation(self) -> None:
        registry = SessionRegistry(ScriptedAgentClient([StreamChunk.text("a"), 10]))
        subscription = await registry.subscribe("s1")
        generation = await registry.send("s1", "hi")
        await subscription.__anext__()

        assert registry.close("s1") is True

        assert "s1" not in registry
        assert await generation.wait(timeout=1) == "aborted"
        with pytest.raises(SessionClosedError):
            await subscription.__anext__()

    @pytest.mark.asyncio
    async def test_close_unknown_returns_false(self, make_registry: Callable[..., SessionRegistry]) -> None:
        assert make_registry().close("missing") is False

    @pytest.mark.asyncio
    async def test_shutdown_closes_everything(self) -> None:
        registry = SessionRegistry(ScriptedAgentClient([10]))
        subscription = await registry.subscribe("s1")
        await registry.send("s2", "hi", create=True)

        assert await registry.shutdown() == 2
        assert len(registry) == 0
        with pytest.raises(SessionClosedError):
            await subscription.__anext__()


class TestEviction:
    @pytest.mark.asyncio
    async def test_idle_unsubscribed_stale_session_is_evicted(self, fake_clock: FakeClock) -> None:
        registry = SessionRegistry(ScriptedAgentClient(), clock=fake_clock)
        await registry.get_or_create("stale")
        fake_clock.advance(601)

        assert registry.evict_idle(600) == ["stale"]
        assert "stale" not in registry
        assert registry.stats()["evicted_total"] == 1

    @pytest.mark.asyncio
    async def test_recent_session_is_kept(self, fake_clock: FakeClock) -> None:
        registry = SessionRegistry(ScriptedAgentClient(), clock=fake_clock)
        await registry.get_or_create("fresh")
        fake_clock.advance(10)

        assert registry.evict_idle(600) == []

    @pytest.mark.asyncio
    async def test_session_with_subscriber_is_never_evicted(self, fake_clock: FakeClock) -> None:
        registry = SessionRegistry(ScriptedAgentClient(), clock=fake_clock)
        await registry.subscribe("watched")
        fake_clock.advance(10_000)

        assert registry.evict_idle(600) == []

    @pytest.mark.asyncio
    async def test_generating_session_is_never_evicted(self, fake_clock: FakeClock) -> None:
        registry = SessionRegistry(ScriptedAgentClient([10]), clock=fake_clock)
        await registry.send("busy", "hi", create=True)
        fake_clock.advance(10_000)

        assert registry.evict_idle(600) == []
        registry.close("busy")

    @pytest.mark.asyncio
    async def test_explicit_now(self, fake_clock: FakeClock) -> None:
        registry = SessionRegistry(ScriptedAgentClient(), clock=fake_clock)
        await registry.get_or_create("s1")

        assert registry.evict_idle(600, now=fake_clock.now + 599) == []
        assert registry.evict_idle(600, now=fake_clock.now + 601) == ["s1"]

    @pytest.mark.asyncio
    async def test_activity_resets_idle_timer(self, fake_clock: FakeClock) -> None:
        registry = SessionRegistry(ScriptedAgentClient(text_script("a")), clock=fake_clock)
        await registry.get_or_create("s1")
        fake_clock.advance(500)
        generation = await registry.send("s1", "hi")
        await generation.wait(timeout=1)
        fake_clock.advance(500)

        assert registry.evict_idle(600) == []


class TestIntrospection:
    @pytest.mark.asyncio
    async def test_describe_and_stats(self, make_registry: Callable[..., SessionRegistry]) -> None:
        registry = make_registry()
        await registry.subscribe("s1")
        await registry.get_or_create("s2")

        described = registry.describe("s1")
        assert described["session_id"] == "s1"
        assert described["state"] == "idle"
        assert described["subscribers"] == 1
        assert described["generation"] is None

        stats = registry.stats()
        assert stats["live_sessions"] == 2
        assert stats["subscribers"] == 1
        assert stats["created_total"] == 2

    @pytest.mark.asyncio
    async def test_describe_unknown(self, make_registry: Callable[..., SessionRegistry]) -> None:
        with pytest.raises(SessionNotFoundError):
            make_registry().describe("missing")
