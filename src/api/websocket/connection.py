"""
Per-connection state of the ``/ws/chat`` handler.

A connection is subscribed to at most one session at a time. Chunks arrive
through the subscription callback and are written to the socket tagged with
the ``messageId`` of the request that started the turn.
"""

from __future__ import annotations

import asyncio
import json

from typing import Any

from fastapi import WebSocket
from pydantic import ValidationError

from api.middleware.request_context import update_request_context
from api.services.message_store import MessageRecord, MessageStore
from api.services.turn_accumulator import TurnAccumulator
from api.websocket.errors import WSCloseCode, close_with_error, send_stream_error, send_ws_error
from api.websocket.rate_limiter import SessionRateLimiter
from core.constants import MAX_WS_PAYLOAD_SIZE
from core.session.broadcast import Subscription
from core.session.encoder import chunk_to_server_message, encode_ws, is_final_message
from core.session.errors import SessionNotFoundError, SessionStreamError
from core.session.generation import SessionState
from core.session.registry import SessionRegistry
from models.chunk_models import StreamChunk
from models.error_models import ErrorCode
from models.event_models import (
    CancelClientMessage,
    ChatClientMessage,
    SessionClientMessage,
    client_message_adapter,
)
from utils.logger import logger


class ChatConnection:
    """Handles client frames for one WebSocket and relays its session's chunks."""

    def __init__(
        self,
        websocket: WebSocket,
        registry: SessionRegistry,
        store: MessageStore,
        rate_limiter: SessionRateLimiter,
        max_message_length: int,
    ):
        self.websocket = websocket
        self.registry = registry
        self.store = store
        self.rate_limiter = rate_limiter
        self.max_message_length = max_message_length
        self.session_id: str | None = None
        self.subscription: Subscription | None = None
        self.active_message_id: str | None = None
        self.streaming = False
        self._accumulator: TurnAccumulator | None = None
        self._send_lock = asyncio.Lock()

    async def send_json(self, payload: dict[str, Any]) -> None:
        """Serialize writes from the receive loop, the relay and the keepalive."""
        async with self._send_lock:
            await self.websocket.send_json(payload)

    async def handle_raw(self, raw: str) -> bool:
        """Process one text frame. Returns False when the connection was closed."""
        if len(raw) > MAX_WS_PAYLOAD_SIZE:
            await close_with_error(self.websocket, ErrorCode.WS_MESSAGE_INVALID, "Payload too large")
            return False

        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            await send_ws_error(self.websocket, ErrorCode.WS_MESSAGE_INVALID, "Invalid JSON", recoverable=False)
            await self.websocket.close(code=WSCloseCode.INVALID_PAYLOAD, reason="Invalid JSON")
            return False

        try:
            message = client_message_adapter.validate_python(data)
        except ValidationError as e:
            await self._reject_invalid(e)
            return True

        if isinstance(message, ChatClientMessage):
            await self.handle_message(message)
        elif isinstance(message, CancelClientMessage):
            await self.handle_cancel()
        elif isinstance(message, SessionClientMessage):
            await self.ensure_subscribed(message.session_id)
        return True

    async def _reject_invalid(self, error: ValidationError) -> None:
        await send_ws_error(
            self.websocket,
            ErrorCode.WS_MESSAGE_INVALID,
            "Invalid message",
            details={"errors": [{"loc": list(e["loc"]), "msg": e["msg"]} for e in error.errors()]},
        )

    async def ensure_subscribed(self, session_id: str) -> None:
        """Attach this connection to ``session_id``, leaving any previous session."""
        if self.session_id == session_id and self.subscription is not None and not self.subscription.closed:
            return

        if self.subscription is not None:
            self.subscription.unsubscribe()
        self.session_id = session_id
        self._accumulator = TurnAccumulator(session_id)
        self.subscription = await self.registry.subscribe(
            session_id,
            on_chunk=self._relay_chunk,
            on_error=self._relay_error,
        )
        update_request_context(session_id=session_id)
        logger.info("WebSocket subscribed", session_id=session_id)

    async def handle_message(self, message: ChatClientMessage) -> None:
        if self.streaming:
            await send_ws_error(
                self.websocket,
                ErrorCode.GENERATION_IN_PROGRESS,
                "Please wait for the current response to complete",
                message_id=message.message_id,
            )
            return

        session_id = message.session_id or self.session_id
        if not session_id:
            await send_ws_error(
                self.websocket, ErrorCode.WS_SESSION_REQUIRED, "Missing sessionId", message_id=message.message_id
            )
            return

        if len(message.content) > self.max_message_length:
            await send_ws_error(
                self.websocket,
                ErrorCode.VALIDATION_MESSAGE_TOO_LONG,
                f"Message must be at most {self.max_message_length} characters",
                message_id=message.message_id,
            )
            return

        if not self.rate_limiter.is_allowed(session_id):
            await send_ws_error(
                self.websocket,
                ErrorCode.WS_RATE_LIMITED,
                "Rate limit exceeded. Please slow down.",
                message_id=message.message_id,
                details={"retry_after": round(self.rate_limiter.retry_after(session_id), 1)},
            )
            return

        self.streaming = True
        self.active_message_id = message.message_id
        await self.ensure_subscribed(session_id)

        history = await self._load_history(session_id)
        user_message = MessageRecord(session_id=session_id, role="user", content=message.content)
        try:
            await self.registry.send(
                session_id,
                message.content,
                message_id=message.message_id,
                history=history,
                create=True,
            )
        except SessionStreamError as e:
            self._reset_turn()
            await send_stream_error(self.websocket, e, message_id=message.message_id)
            return

        await self._save(user_message)

    async def handle_cancel(self) -> None:
        """Stop the session's generation. The turn stays tagged until its terminal chunk arrives."""
        stopped = False
        if self.session_id:
            try:
                stopped = await self.registry.stop(self.session_id)
            except SessionNotFoundError:
                logger.debug("Cancel for a session that no longer exists", session_id=self.session_id)
        if not stopped and not self._turn_pending():
            self._reset_turn()

    def _turn_pending(self) -> bool:
        """True while the subscribed session still owes this connection a terminal chunk."""
        if self.session_id is None or self.subscription is None or self.subscription.closed:
            return False
        try:
            return self.registry.get(self.session_id).state is not SessionState.IDLE
        except SessionNotFoundError:
            return False

    async def close(self) -> None:
        """Socket went away: stop the session's generation and leave it."""
        if self.session_id:
            try:
                await self.registry.stop(self.session_id)
            except SessionNotFoundError:
                logger.debug("Session already closed when socket went away", session_id=self.session_id)
        if self.subscription is not None:
            self.subscription.unsubscribe()
            self.subscription = None
        self.rate_limiter.cleanup()

    async def _relay_chunk(self, chunk: StreamChunk) -> None:
        if self._accumulator is not None:
            self._accumulator.add(chunk)

        message = chunk_to_server_message(chunk, message_id=self.active_message_id)
        if message is None:
            return
        await self.send_json(encode_ws(message))

        if is_final_message(message):
            await self._save_assistant_message()
            self._reset_turn()

    async def _relay_error(self, error: SessionStreamError) -> None:
        self.subscription = None
        await self._save_assistant_message()
        await send_stream_error(self.websocket, error, message_id=self.active_message_id)
        self._reset_turn()

    async def _save_assistant_message(self) -> None:
        if self._accumulator is None:
            return
        record = self._accumulator.claim_record()
        self._accumulator = TurnAccumulator(self._accumulator.session_id)
        if record is not None:
            await self._save(record)

    async def _load_history(self, session_id: str) -> list[dict[str, Any]]:
        try:
            messages = await self.store.list_messages(session_id)
        except Exception as e:
            # Persistence problems never break the stream; the turn runs without history
            logger.error(f"Failed to load history: {e}", exc_info=True, session_id=session_id)
            return []
        return [m.to_history_item() for m in messages]

    async def _save(self, record: MessageRecord) -> None:
        try:
            await self.store.save_message(record)
        except Exception as e:
            # Persistence problems never break the stream
            logger.error(f"Failed to save {record.role} message: {e}", exc_info=True, session_id=record.session_id)

    def _reset_turn(self) -> None:
        self.streaming = False
        self.active_message_id = None


__all__ = ["ChatConnection"]
