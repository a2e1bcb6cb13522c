"""
SSE chat route.

``POST /api/chat`` subscribes to the session, starts a generation, persists
the user message and streams every chunk as ``data: <JSON>\\n\\n`` until the
terminal message. ``POST /api/chat/{session_id}/stop`` cancels from anywhere.
"""

from __future__ import annotations

import asyncio
import uuid

from collections.abc import AsyncIterator, Coroutine
from typing import Any

from fastapi import APIRouter
from fastapi.exceptions import RequestValidationError
from fastapi.responses import StreamingResponse

from api.dependencies import AppSettings, Registry, Store
from api.middleware.request_context import update_request_context
from api.services.message_store import MessageRecord, MessageStore
from api.services.turn_accumulator import TurnAccumulator
from core.constants import SESSION_ID_HEADER, SSE_HEADERS
from core.session.broadcast import Subscription
from core.session.encoder import chunk_to_server_message, encode_sse, is_final_message
from core.session.errors import GenerationInProgressError, SessionNotFoundError, SessionStreamError
from core.session.generation import SessionState
from core.session.registry import SessionRegistry
from models.event_models import ChatRequest, ErrorMessage
from utils.logger import logger

router = APIRouter()

# Cleanup that must outlive a cancelled response
_background_tasks: set[asyncio.Task[Any]] = set()


def _spawn(coro: Coroutine[Any, Any, None]) -> None:
    task = asyncio.create_task(coro)
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)


async def _save_assistant_message(store: MessageStore, accumulator: TurnAccumulator) -> None:
    record = accumulator.claim_record()
    if record is None:
        return
    try:
        await store.save_message(record)
    except Exception as e:
        logger.error(f"Failed to save assistant message: {e}", exc_info=True, session_id=accumulator.session_id)


async def _finish_interrupted_turn(
    registry: SessionRegistry,
    store: MessageStore,
    accumulator: TurnAccumulator,
) -> None:
    """Client went away mid-stream: keep what was produced and stop the generation."""
    await _save_assistant_message(store, accumulator)
    try:
        await registry.stop(accumulator.session_id)
    except SessionNotFoundError:
        logger.debug("Session already gone after client disconnect", session_id=accumulator.session_id)


async def _resolve_session_id(body: ChatRequest, registry: SessionRegistry, store: MessageStore) -> str:
    """Use the requested session if it is live or has history; mint a new id only when none was given.

    Raises:
        SessionNotFoundError: If ``sessionId`` names a session that is neither live nor stored
    """
    if not body.session_id:
        return str(uuid.uuid4())
    if body.session_id in registry or await store.list_messages(body.session_id, limit=1):
        return body.session_id
    raise SessionNotFoundError(body.session_id)


def _check_message_length(message: str, max_length: int) -> None:
    if len(message) > max_length:
        raise RequestValidationError(
            [
                {
                    "type": "string_too_long",
                    "loc": ("body", "message"),
                    "msg": f"String should have at most {max_length} characters",
                    "input": None,
                    "ctx": {"max_length": max_length},
                }
            ]
        )


async def _event_stream(
    subscription: Subscription,
    registry: SessionRegistry,
    store: MessageStore,
) -> AsyncIterator[str]:
    accumulator = TurnAccumulator(subscription.session_id)
    completed = False
    try:
        async for chunk in subscription:
            accumulator.add(chunk)
            message = chunk_to_server_message(chunk)
            if message is None:
                continue
            yield encode_sse(message)
            if is_final_message(message):
                completed = True
                await _save_assistant_message(store, accumulator)
                break
    except SessionStreamError as e:
        # Subscription closed underneath us (session closed or subscriber dropped)
        completed = True
        yield encode_sse(ErrorMessage(message=e.message, code=e.code.value, recoverable=e.recoverable))
        await _save_assistant_message(store, accumulator)
    finally:
        subscription.unsubscribe()
        if not completed:
            _spawn(_finish_interrupted_turn(registry, store, accumulator))


@router.post("/chat")
async def chat(body: ChatRequest, registry: Registry, store: Store, settings: AppSettings) -> StreamingResponse:
    """Start a generation and stream it as Server-Sent Events.

    Raises:
        RequestValidationError: Message longer than ``max_message_length`` (422)
        SessionNotFoundError: ``sessionId`` is neither live nor stored (404)
        GenerationInProgressError: Session busy (409, before any byte is streamed)
    """
    _check_message_length(body.message, settings.max_message_length)
    session_id = await _resolve_session_id(body, registry, store)
    update_request_context(session_id=session_id)

    session = await registry.get_or_create(session_id)
    if session.state is not SessionState.IDLE:
        raise GenerationInProgressError(session_id, session.state.value)

    # Attached before any await so an idle sweep cannot evict the session underneath us
    subscription = session.subscribe()
    user_message = MessageRecord(session_id=session_id, role="user", content=body.message)
    try:
        history = [m.to_history_item() for m in await store.list_messages(session_id)]
        await registry.send(session_id, body.message, history=history)
    except Exception:
        subscription.unsubscribe()
        raise

    await store.save_message(user_message)

    return StreamingResponse(
        _event_stream(subscription, registry, store),
        media_type="text/event-stream",
        headers={**SSE_HEADERS, SESSION_ID_HEADER: session_id},
    )


@router.post("/chat/{session_id}/stop")
async def stop_chat(session_id: str, registry: Registry) -> dict[str, Any]:
    """Cancel the session's generation. ``stopped`` is False when nothing was running."""
    stopped = await registry.stop(session_id)
    return {"session_id": session_id, "stopped": stopped}
