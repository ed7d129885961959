"""Build-time location data for static mode."""

from __future__ import annotations

import json
import time
from pathlib import Path

import structlog

from cubemap.core.models import is_valid_location
from cubemap.core.staleness import iso_utc

log = structlog.get_logger()


def fallback_location(now: float | None = None) -> dict:
    """Demo record at Center Camp, used when no real data was captured."""
    return {
        "lat": 40.7864,
        "lng": -119.2065,
        "timestamp": iso_utc(time.time() if now is None else now),
        "source": "fallback",
        "zone": "center_camp",
        "address": "Center Camp (Demo Mode)",
        "intersection": {
            "radial": "6:00",
            "arc": "Esplanade",
            "radial_distance": 0,
            "arc_distance": 0,
        },
        "landmarks": [
            {"name": "Center Camp", "type": "center_camp", "distance_meters": 0.0},
        ],
        "within_fence": True,
        "distance_from_man": "2400 feet",
        "error": "Using fallback data - API unavailable at build time",
    }


def load_static_location(path: str | Path, now: float | None = None) -> dict:
    """Read a captured location JSON file, or fall back to the demo record."""
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        log.warning("static_location_unreadable", path=str(path), error=str(exc))
        return fallback_location(now)

    if not is_valid_location(data):
        log.warning("static_location_invalid", path=str(path))
        return fallback_location(now)

    log.info("static_location_loaded", path=str(path),
             lat=data["lat"], lng=data["lng"], source=data.get("source"))
    return data
