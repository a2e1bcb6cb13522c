"""Shared test fixtures for the Session Stream test suite.

Provides a scripted upstream agent client, registry factories and settings
isolation used across all test modules.
"""

from __future__ import annotations

import asyncio

from collections.abc import AsyncIterator, Callable, Generator
from typing import Any

import pytest

from core.constants import get_settings
from core.session.cancellation import CancellationToken
from core.session.registry import SessionRegistry
from integrations.agent_client import AgentRequest
from models.chunk_models import StreamChunk

# ============================================================================
# Test Isolation: Settings cache
# ============================================================================


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Generator[None, None, None]:
    """Clear cached settings so env overrides made by a test take effect."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# ============================================================================
# Scripted upstream
# ============================================================================


class ScriptedAgentClient:
    """Upstream client that replays a script for every request.

    Script steps:
        StreamChunk: yielded as is
        float/int: pause for that many seconds (ends early when cancelled,
            unless ``ignore_cancel`` is set)
        BaseException: raised
    """

    def __init__(self, script: list[Any] | None = None, ignore_cancel: bool = False) -> None:
        self.script = list(script or [])
        self.ignore_cancel = ignore_cancel
        self.requests: list[AgentRequest] = []
        self.cancelled_requests: list[AgentRequest] = []

    async def stream(self, request: AgentRequest, token: CancellationToken) -> AsyncIterator[StreamChunk]:
        self.requests.append(request)
        for step in self.script:
            if isinstance(step, BaseException):
                raise step
            if isinstance(step, (int, float)):
                if self.ignore_cancel:
                    await asyncio.sleep(step)
                elif await token.wait(timeout=step):
                    self.cancelled_requests.append(request)
                    return
                continue
            if token.is_cancelled and not self.ignore_cancel:
                self.cancelled_requests.append(request)
                return
            yield step


def text_script(*parts: str, done: bool = True) -> list[Any]:
    """Text chunks followed by a done chunk."""
    script: list[Any] = [StreamChunk.text(p) for p in parts]
    if done:
        script.append(StreamChunk.done())
    return script


async def collect_until_terminal(subscription: Any, timeout: float = 2.0) -> list[StreamChunk]:
    """Read a subscription until (and including) its terminal chunk."""

    async def _read() -> list[StreamChunk]:
        chunks: list[StreamChunk] = []
        async for chunk in subscription:
            chunks.append(chunk)
            if chunk.is_terminal:
                break
        return chunks

    return await asyncio.wait_for(_read(), timeout=timeout)


async def wait_for_condition(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll ``predicate`` on the event loop until it holds."""

    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout=timeout)


@pytest.fixture
def scripted_client() -> ScriptedAgentClient:
    return ScriptedAgentClient(text_script("Hello", " world"))


@pytest.fixture
def make_registry() -> Callable[..., SessionRegistry]:
    """Factory for registries around a scripted client."""

    def _make(client: Any = None, **kwargs: Any) -> SessionRegistry:
        return SessionRegistry(client or ScriptedAgentClient(text_script("Hello")), **kwargs)

    return _make


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()
