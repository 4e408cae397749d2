"""GET /health: liveness check with notification worker status."""
from __future__ import annotations

from fastapi import APIRouter, Request

from feedback360.core.settings import get_settings

router = APIRouter(tags=["health"])


@router.get("/health", summary="Basic health check")
def health_check(request: Request) -> dict[str, object]:
    settings = get_settings()
    dispatcher = getattr(request.app.state, "dispatcher", None)
    return {
        "status": "ok",
        "service": settings.app_name,
        "version": settings.app_version,
        "environment": settings.app_env,
        "notifications": "enabled" if dispatcher is not None else "disabled",
        "pending_notifications": dispatcher.pending() if dispatcher is not None else 0,
    }
