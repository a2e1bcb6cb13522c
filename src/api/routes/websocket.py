from __future__ import annotations

import asyncio
import contextlib

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from api.dependencies import AppSettings, WSRateLimiter, WSRegistry, WSStore
from api.websocket.connection import ChatConnection
from core.constants import MSG_TYPE_PING
from utils.logger import logger

router = APIRouter()


@router.websocket("/chat")
async def chat_websocket(
    websocket: WebSocket,
    registry: WSRegistry,
    store: WSStore,
    rate_limiter: WSRateLimiter,
    settings: AppSettings,
) -> None:
    """WebSocket endpoint for chat streaming.

    Client frames: ``message``, ``cancel``, ``session``. Server frames carry the
    same vocabulary as the SSE route plus ``ping`` keepalives.
    """
    await websocket.accept()

    connection = ChatConnection(
        websocket,
        registry,
        store,
        rate_limiter,
        max_message_length=settings.max_message_length,
    )
    keepalive_task = asyncio.create_task(_keepalive(connection, settings.ws_heartbeat_interval))

    try:
        while True:
            raw = await websocket.receive_text()
            if not await connection.handle_raw(raw):
                break
    except WebSocketDisconnect as e:
        logger.debug(f"WebSocket disconnected: code={e.code}", session_id=connection.session_id)
    except RuntimeError as e:
        # Handle "WebSocket is not connected" errors gracefully
        if "not connected" not in str(e).lower():
            raise
    finally:
        keepalive_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await keepalive_task
        await connection.close()


async def _keepalive(connection: ChatConnection, interval: float) -> None:
    """Send periodic ping frames."""
    while True:
        await asyncio.sleep(interval)
        try:
            await connection.send_json({"type": MSG_TYPE_PING})
        except Exception:
            break
