"""Health check endpoint."""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter

router = APIRouter()


@router.get("/health")
async def health() -> dict:
    """Service health plus the state of the location cache."""
    from cubemap.main import APP_NAME, VERSION, get_config, get_gateway

    config = get_config()
    cache_status = await get_gateway().cache_status()
    return {
        "status": "ok",
        "app": APP_NAME,
        "version": VERSION,
        "upstream_url": config.upstream.base_url,
        "update_interval": config.poller.update_interval_seconds,
        "cache_duration": config.cache.duration_seconds,
        "cache_status": cache_status,
        "timestamp": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
    }
