from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query

from api.dependencies import Registry, Store
from core.session.errors import SessionNotFoundError

router = APIRouter()


@router.get("")
async def list_sessions(registry: Registry) -> dict[str, Any]:
    """Live sessions held by this process."""
    return {"sessions": [registry.describe(session_id) for session_id in registry.session_ids]}


@router.get("/{session_id}")
async def get_session(session_id: str, registry: Registry) -> dict[str, Any]:
    """Live state snapshot of one session."""
    return registry.describe(session_id)


@router.get("/{session_id}/messages")
async def get_messages(
    session_id: str,
    store: Store,
    limit: int | None = Query(default=None, ge=1, le=1000),
) -> dict[str, Any]:
    """Persisted messages of a session, oldest first."""
    messages = await store.list_messages(session_id, limit=limit)
    return {
        "session_id": session_id,
        "messages": [m.model_dump(mode="json") for m in messages],
    }


@router.delete("/{session_id}")
async def delete_session(session_id: str, registry: Registry, store: Store) -> dict[str, Any]:
    """Close the live session and delete its stored messages."""
    closed = registry.close(session_id)
    deleted = await store.delete_session(session_id)
    if not closed and not deleted:
        raise SessionNotFoundError(session_id)
    return {"session_id": session_id, "closed": closed, "deleted_messages": deleted}
