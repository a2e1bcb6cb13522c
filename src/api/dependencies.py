from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request, WebSocket

from api.services.message_store import MessageStore
from api.websocket.rate_limiter import SessionRateLimiter
from core.constants import Settings, get_settings
from core.session.reaper import IdleReaper
from core.session.registry import SessionRegistry


def get_registry(request: Request) -> SessionRegistry:
    """Get the session registry from application state."""
    registry: SessionRegistry = request.app.state.registry
    return registry


def get_message_store(request: Request) -> MessageStore:
    """Get the message store from application state."""
    store: MessageStore = request.app.state.message_store
    return store


def get_reaper(request: Request) -> IdleReaper:
    reaper: IdleReaper = request.app.state.reaper
    return reaper


def get_ws_registry(websocket: WebSocket) -> SessionRegistry:
    registry: SessionRegistry = websocket.app.state.registry
    return registry


def get_ws_message_store(websocket: WebSocket) -> MessageStore:
    store: MessageStore = websocket.app.state.message_store
    return store


def get_ws_rate_limiter(websocket: WebSocket) -> SessionRateLimiter:
    limiter: SessionRateLimiter = websocket.app.state.rate_limiter
    return limiter


# Type aliases for cleaner route signatures
Registry = Annotated[SessionRegistry, Depends(get_registry)]
Store = Annotated[MessageStore, Depends(get_message_store)]
Reaper = Annotated[IdleReaper, Depends(get_reaper)]
AppSettings = Annotated[Settings, Depends(get_settings)]
WSRegistry = Annotated[SessionRegistry, Depends(get_ws_registry)]
WSStore = Annotated[MessageStore, Depends(get_ws_message_store)]
WSRateLimiter = Annotated[SessionRateLimiter, Depends(get_ws_rate_limiter)]
