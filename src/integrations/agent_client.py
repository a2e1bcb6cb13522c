"""
Upstream agent clients.

The streaming core treats the language model as an opaque producer of
StreamChunk values. Anything implementing ``AgentClient`` can be plugged into
the session registry; two implementations ship here:

- ``OpenAIAgentClient``: streams chat completions through the OpenAI SDK
- ``EchoAgentClient``: deterministic local client for development and tests
"""

from __future__ import annotations

import json

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

from openai import AsyncOpenAI

from models.chunk_models import StreamChunk, TokenUsage
from utils.logger import logger

if TYPE_CHECKING:
    from core.session.cancellation import CancellationToken


@dataclass
class AgentRequest:
    """One turn requested from the upstream agent."""

    session_id: str
    content: str
    message_id: str | None = None
    history: list[dict[str, Any]] = field(default_factory=list)


class AgentClient(Protocol):
    """Producer of an ordered chunk stream for one turn.

    Implementations must stop promptly once ``token`` is cancelled. They may
    end with a ``done``/``error`` chunk; if they simply stop iterating the
    controller supplies the terminal chunk.
    """

    def stream(self, request: AgentRequest, token: CancellationToken) -> AsyncIterator[StreamChunk]: ...


class OpenAIAgentClient:
    """Chat-completions streaming adapter.

    Text deltas are forwarded as they arrive; tool calls are assembled from
    their argument fragments and emitted as one ``tool_use`` chunk each when
    the model finishes the call list. Usage is reported when the API sends it.
    """

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str,
        system_prompt: str | None = None,
        tools: list[dict[str, Any]] | None = None,
        max_context_tokens: int = 0,
    ) -> None:
        self._client = client
        self._model = model
        self._system_prompt = system_prompt
        self._tools = tools
        self._max_context_tokens = max_context_tokens

    def _build_messages(self, request: AgentRequest) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = []
        if self._system_prompt:
            messages.append({"role": "system", "content": self._system_prompt})
        for item in request.history:
            role = item.get("role")
            if role in ("user", "assistant", "system") and item.get("content"):
                messages.append({"role": role, "content": item["content"]})
        messages.append({"role": "user", "content": request.content})
        return messages

    async def stream(self, request: AgentRequest, token: CancellationToken) -> AsyncIterator[StreamChunk]:
        kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": self._build_messages(request),
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if self._tools:
            kwargs["tools"] = self._tools

        stream = await self._client.chat.completions.create(**kwargs)
        pending_tools: dict[int, dict[str, str]] = {}

        try:
            async for event in stream:
                if token.is_cancelled:
                    logger.info("Upstream stream cancelled", session_id=request.session_id)
                    return

                if event.usage is not None:
                    yield StreamChunk.usage_report(
                        TokenUsage(
                            input_tokens=event.usage.prompt_tokens,
                            output_tokens=event.usage.completion_tokens,
                            total_tokens=event.usage.total_tokens,
                            max_context_tokens=self._max_context_tokens,
                        )
                    )

                for choice in event.choices:
                    delta = choice.delta
                    if delta is not None and delta.content:
                        yield StreamChunk.text(delta.content)

                    for fragment in (delta.tool_calls if delta is not None else None) or []:
                        entry = pending_tools.setdefault(fragment.index, {"id": "", "name": "", "arguments": ""})
                        if fragment.id:
                            entry["id"] = fragment.id
                        if fragment.function is not None:
                            entry["name"] += fragment.function.name or ""
                            entry["arguments"] += fragment.function.arguments or ""

                    if choice.finish_reason == "tool_calls":
                        for index in sorted(pending_tools):
                            yield self._tool_chunk(pending_tools[index])
                        pending_tools.clear()
        finally:
            await stream.close()

        yield StreamChunk.done()

    @staticmethod
    def _tool_chunk(entry: dict[str, str]) -> StreamChunk:
        try:
            arguments = json.loads(entry["arguments"]) if entry["arguments"] else {}
        except json.JSONDecodeError:
            arguments = {"raw": entry["arguments"]}
        if not isinstance(arguments, dict):
            arguments = {"value": arguments}
        return StreamChunk.tool_use(entry["id"], entry["name"], arguments)


class EchoAgentClient:
    """Replies with the user's message, one word per chunk.

    Used when no API key is configured so the transports can be exercised
    end to end without a model.
    """

    def __init__(self, delay: float = 0.05, prefix: str = "You said:") -> None:
        self._delay = delay
        self._prefix = prefix

    async def stream(self, request: AgentRequest, token: CancellationToken) -> AsyncIterator[StreamChunk]:
        words = f"{self._prefix} {request.content}".split()
        for index, word in enumerate(words):
            if await token.wait(timeout=self._delay):
                return
            yield StreamChunk.text(word if index == 0 else f" {word}")

        output_tokens = len(words)
        input_tokens = len(request.content.split())
        yield StreamChunk.usage_report(
            TokenUsage(
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                total_tokens=input_tokens + output_tokens,
            )
        )
        yield StreamChunk.done()


__all__ = ["AgentClient", "AgentRequest", "EchoAgentClient", "OpenAIAgentClient"]
