"""Route modules for the Session Stream API.

HTTP routes are mounted under ``/api``; the WebSocket route under ``/ws``.
"""

from __future__ import annotations

from . import chat, health, sessions, websocket

__all__ = ["chat", "health", "sessions", "websocket"]
