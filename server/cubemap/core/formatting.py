"""Human-readable formatting for location records."""

from __future__ import annotations

from typing import Any, Mapping

from cubemap.core.staleness import age_seconds, parse_timestamp


def format_distance(meters: float) -> str:
    if meters < 1000:
        return f"{round(meters)}m"
    return f"{meters / 1000:.1f}km"


def format_timestamp(timestamp: str | None, now: float) -> str:
    """Relative age such as ``"5m ago"``; ``"Unknown"`` if unparseable."""
    age = age_seconds(timestamp, now)
    if age is None:
        return "Unknown"
    minutes = int(age // 60)
    if minutes < 1:
        return "Just now"
    if minutes < 60:
        return f"{minutes}m ago"
    return f"{minutes // 60}h ago"


def _freshness_line(record: Mapping[str, Any]) -> str | None:
    source = record.get("_source", "unknown")
    if source == "static":
        return "Static data (built-in snapshot)"
    if source == "storage":
        return "Cached data (offline mode)"
    if source == "api":
        if not record.get("cached"):
            return "Fresh data"
        if record.get("stale"):
            return "Stale cached data (API unavailable)"
        return f"Cached data ({round(record.get('cache_age') or 0)}s old)"
    return None


def format_location_display(record: Mapping[str, Any] | None, now: float) -> str:
    """Multi-line summary of an enriched record for a status panel."""
    if not record:
        return "No location data"

    if record.get("address"):
        head = str(record["address"])
    else:
        head = f"{float(record['lat']):.6f}, {float(record['lng']):.6f}"
    if record.get("closest_landmark"):
        head += f" ({record['closest_landmark']})"

    lines = [head]
    if record.get("context"):
        lines.append(str(record["context"]))

    freshness = _freshness_line(record)
    if freshness:
        lines.append(freshness)

    received = parse_timestamp(record.get("_received_at"))
    if received is not None:
        minutes = round((now - received.timestamp()) / 60)
        if minutes > 0:
            lines.append(f"Received {minutes}m ago")

    return "\n".join(lines)
