"""Tests for the idle reaper background task."""

from __future__ import annotations

import asyncio

from unittest.mock import Mock

import pytest

from conftest import FakeClock, ScriptedAgentClient, wait_for_condition
from core.session.reaper import IdleReaper
from core.session.registry import SessionRegistry


class TestIdleReaper:
    @pytest.mark.asyncio
    async def test_start_and_stop_are_idempotent(self) -> None:
        reaper = IdleReaper(SessionRegistry(ScriptedAgentClient()), interval_seconds=10)

        await reaper.start()
        task = reaper._task
        await reaper.start()
        assert reaper._task is task
        assert reaper.running

        await reaper.stop()
        await reaper.stop()
        assert not reaper.running

    @pytest.mark.asyncio
    async def test_periodic_sweep_evicts_idle_sessions(self, fake_clock: FakeClock) -> None:
        registry = SessionRegistry(ScriptedAgentClient(), clock=fake_clock)
        await registry.get_or_create("s1")
        fake_clock.advance(100)
        reaper = IdleReaper(registry, max_idle_seconds=60, interval_seconds=0.01)

        await reaper.start()
        try:
            await wait_for_condition(lambda: "s1" not in registry)
        finally:
            await reaper.stop()

    @pytest.mark.asyncio
    async def test_failing_sweep_does_not_stop_the_loop(self) -> None:
        registry = Mock()
        registry.evict_idle = Mock(side_effect=[RuntimeError("boom"), [], []])
        reaper = IdleReaper(registry, max_idle_seconds=60, interval_seconds=0.01)

        await reaper.start()
        try:
            await wait_for_condition(lambda: registry.evict_idle.call_count >= 2)
        finally:
            await reaper.stop()

        registry.evict_idle.assert_called_with(60)

    @pytest.mark.asyncio
    async def test_manual_sweep(self, fake_clock: FakeClock) -> None:
        registry = SessionRegistry(ScriptedAgentClient(), clock=fake_clock)
        await registry.get_or_create("s1")
        fake_clock.advance(601)

        assert IdleReaper(registry).sweep() == ["s1"]
        await asyncio.sleep(0)
