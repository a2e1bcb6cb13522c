"""Tests for the protocol encoder shared by SSE and WebSocket."""

from __future__ import annotations

import json

import pytest

from core.session.encoder import chunk_to_server_message, encode_sse, encode_ws, is_final_message
from models.chunk_models import StreamChunk, TokenUsage
from models.event_models import ErrorMessage, MessageCompleteMessage, TextDeltaMessage


class TestChunkToServerMessage:
    def test_text(self) -> None:
        message = chunk_to_server_message(StreamChunk.text("Hi"))
        assert encode_ws(message) == {"type": "text_delta", "content": "Hi"}

    def test_empty_text_is_dropped(self) -> None:
        assert chunk_to_server_message(StreamChunk.text("")) is None

    def test_tool_use(self) -> None:
        message = chunk_to_server_message(StreamChunk.tool_use("call_1", "search", {"q": "x"}))
        assert encode_ws(message) == {"type": "tool_call", "id": "call_1", "name": "search", "input": {"q": "x"}}

    def test_tool_result_uses_camel_case(self) -> None:
        message = chunk_to_server_message(StreamChunk.tool_output("call_1", "found", is_error=True))
        assert encode_ws(message) == {"type": "tool_result", "id": "call_1", "output": "found", "isError": True}

    def test_done(self) -> None:
        message = chunk_to_server_message(StreamChunk.done())
        assert isinstance(message, MessageCompleteMessage)
        assert encode_ws(message) == {"type": "message_complete"}

    def test_error(self) -> None:
        message = chunk_to_server_message(StreamChunk.failure("boom"))
        assert encode_ws(message) == {"type": "error", "message": "boom"}

    def test_usage_is_not_forwarded(self) -> None:
        chunk = StreamChunk.usage_report(TokenUsage(input_tokens=3, output_tokens=4, total_tokens=7))
        assert chunk_to_server_message(chunk) is None

    @pytest.mark.parametrize(
        "chunk",
        [
            StreamChunk.text("a"),
            StreamChunk.tool_use("c", "n"),
            StreamChunk.tool_output("c", "out"),
            StreamChunk.done(),
            StreamChunk.failure("x"),
        ],
    )
    def test_message_id_tag(self, chunk: StreamChunk) -> None:
        message = chunk_to_server_message(chunk, message_id="m-1")
        assert encode_ws(message)["messageId"] == "m-1"


class TestEncoding:
    def test_encode_sse_frame(self) -> None:
        frame = encode_sse(TextDeltaMessage(content="Hi"))
        assert frame.startswith("data: ")
        assert frame.endswith("\n\n")
        assert json.loads(frame[len("data: ") :]) == {"type": "text_delta", "content": "Hi"}

    def test_sse_and_ws_carry_the_same_payload(self) -> None:
        message = chunk_to_server_message(StreamChunk.tool_output("c1", "ok"), message_id="m")
        assert json.loads(encode_sse(message)[6:]) == encode_ws(message)

    def test_is_final_message(self) -> None:
        assert is_final_message(MessageCompleteMessage())
        assert is_final_message(ErrorMessage(message="x"))
        assert not is_final_message(TextDeltaMessage(content="x"))
