"""Data-age policy shared by the gateway and the poller.

A record is *fresh* up to STALE_AFTER_SECONDS old, *stale* (still shown,
kept out of history) up to EXPIRED_AFTER_SECONDS, and *expired* beyond that
(not restored from a snapshot). The gateway's cache duration is a refresh
TTL and is independent of these thresholds.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone

STALE_AFTER_SECONDS = 10 * 60
EXPIRED_AFTER_SECONDS = 24 * 60 * 60


class Freshness(str, enum.Enum):
    FRESH = "fresh"
    STALE = "stale"
    EXPIRED = "expired"


def classify_age(
    age_seconds: float | None,
    stale_after: float = STALE_AFTER_SECONDS,
    expired_after: float = EXPIRED_AFTER_SECONDS,
) -> Freshness:
    """Unknown age counts as fresh; there is nothing to judge it by."""
    if age_seconds is None:
        return Freshness.FRESH
    if age_seconds > expired_after:
        return Freshness.EXPIRED
    if age_seconds > stale_after:
        return Freshness.STALE
    return Freshness.FRESH


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO-8601 string; naive values are taken as UTC."""
    if not value or not isinstance(value, str):
        return None
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def age_seconds(timestamp: str | None, now: float) -> float | None:
    """Seconds between an ISO-8601 timestamp and ``now`` (epoch seconds)."""
    dt = parse_timestamp(timestamp)
    if dt is None:
        return None
    return now - dt.timestamp()


def iso_utc(epoch_seconds: float) -> str:
    """Epoch seconds to an ISO-8601 UTC string with a trailing Z."""
    dt = datetime.fromtimestamp(epoch_seconds, tz=timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%SZ")
