"""Configuration API endpoint for client discovery."""

from typing import Any

from fastapi import APIRouter, Request

router = APIRouter(tags=["config"])


@router.get("/api/config")
async def get_config(request: Request) -> dict[str, Any]:
    """Return what UI clients need to talk to autopilot over NATS."""
    settings = request.app.state.settings
    return {
        "nats_enabled": settings.nats_enabled,
        "nats_ws_url": settings.nats_ws_url,
        "poll_interval": settings.poll_interval,
    }
