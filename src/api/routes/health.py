from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from api.dependencies import Reaper, Registry

router = APIRouter()


@router.get("/health")
async def health_check(registry: Registry, reaper: Reaper) -> dict[str, Any]:
    """Health check endpoint with live session statistics."""
    return {
        "status": "healthy" if reaper.running else "degraded",
        "version": "1.0.0",
        "sessions": registry.stats(),
        "reaper": {
            "running": reaper.running,
            "sweeps": reaper.sweeps,
            "max_idle_seconds": reaper.max_idle_seconds,
            "interval_seconds": reaper.interval_seconds,
        },
    }


@router.get("/health/live")
async def liveness_check() -> dict[str, Any]:
    """Kubernetes-style liveness check (just confirms process is running)."""
    return {"alive": True}
