"""Tests for the cancellation token."""

from __future__ import annotations

import asyncio

from unittest.mock import Mock

import pytest

from core.session.cancellation import CancellationToken


class TestCancellationToken:
    @pytest.mark.asyncio
    async def test_cancel_once(self) -> None:
        token = CancellationToken()
        assert not token.is_cancelled

        assert token.cancel("stop requested") is True
        assert token.cancel("again") is False
        assert token.is_cancelled
        assert token.cancel_reason == "stop requested"

    @pytest.mark.asyncio
    async def test_callbacks_run_once(self) -> None:
        token = CancellationToken()
        callback = Mock()
        token.on_cancel(callback)

        token.cancel()
        token.cancel()

        callback.assert_called_once()

    @pytest.mark.asyncio
    async def test_callback_registered_after_cancel_runs_immediately(self) -> None:
        token = CancellationToken()
        token.cancel()
        callback = Mock()

        token.on_cancel(callback)

        callback.assert_called_once()

    @pytest.mark.asyncio
    async def test_removed_callback_is_not_run(self) -> None:
        token = CancellationToken()
        callback = token.on_cancel(Mock())
        token.remove_callback(callback)
        token.remove_callback(callback)

        token.cancel()

        callback.assert_not_called()

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_block_others(self) -> None:
        token = CancellationToken()
        token.on_cancel(Mock(side_effect=RuntimeError("bad")))
        good = token.on_cancel(Mock())

        token.cancel()

        good.assert_called_once()

    @pytest.mark.asyncio
    async def test_wait(self) -> None:
        token = CancellationToken()
        assert await token.wait(timeout=0.01) is False

        asyncio.get_running_loop().call_later(0.01, token.cancel)
        assert await token.wait(timeout=1) is True

    @pytest.mark.asyncio
    async def test_check(self) -> None:
        token = CancellationToken()
        token.check()
        token.cancel("bye")
        with pytest.raises(asyncio.CancelledError):
            token.check()
