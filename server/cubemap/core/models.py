"""Cube Map core data models.

These are plain dataclasses with no framework dependencies.
JSON payloads are converted to/from these at the boundary.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Mapping

from cubemap.core.errors import InvalidRecord

# Fields with a known meaning. Anything else from upstream is passed through.
_KNOWN_FIELDS = (
    "lat",
    "lng",
    "timestamp",
    "address",
    "context",
    "closest_landmark",
    "distance_from_man",
    "nearby_landmarks",
    "source",
)


def _coordinate(data: Mapping[str, Any], key: str, limit: float) -> float:
    value = data.get(key)
    # bool is an int subclass; reject it explicitly.
    if value is None or isinstance(value, bool):
        raise InvalidRecord(f"Invalid location data: missing coordinate '{key}'")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidRecord(f"Invalid location data: coordinate '{key}' is not a number",
                            details=repr(value)) from None
    if not math.isfinite(number) or abs(number) > limit:
        raise InvalidRecord(f"Invalid location data: coordinate '{key}' out of range",
                            details=repr(value))
    return number


@dataclass(frozen=True)
class LocationRecord:
    """The tracked object's position plus whatever context upstream attached."""

    lat: float
    lng: float
    timestamp: str | None = None
    address: str | None = None
    context: str | None = None
    closest_landmark: str | None = None
    distance_from_man: str | None = None
    nearby_landmarks: tuple = ()
    source: str | None = None
    extra: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> LocationRecord:
        """Validate a JSON object and build a record from it.

        Raises InvalidRecord when the payload is not an object or lacks
        usable ``lat``/``lng`` values.
        """
        if not isinstance(data, Mapping):
            raise InvalidRecord("Invalid location data: expected a JSON object",
                                details=type(data).__name__)
        if data.get("error") and data.get("lat") is None:
            raise InvalidRecord(str(data.get("message") or data.get("error")))

        landmarks = data.get("nearby_landmarks") or ()
        return cls(
            lat=_coordinate(data, "lat", 90.0),
            lng=_coordinate(data, "lng", 180.0),
            timestamp=data.get("timestamp"),
            address=data.get("address"),
            context=data.get("context"),
            closest_landmark=data.get("closest_landmark"),
            distance_from_man=data.get("distance_from_man"),
            nearby_landmarks=tuple(landmarks) if isinstance(landmarks, (list, tuple)) else (),
            source=data.get("source"),
            extra={k: v for k, v in data.items() if k not in _KNOWN_FIELDS},
        )

    def to_dict(self) -> dict:
        """Plain JSON-serializable dict; unset optional fields are omitted."""
        out: dict[str, Any] = {"lat": self.lat, "lng": self.lng}
        for key in ("timestamp", "address", "context", "closest_landmark",
                    "distance_from_man", "source"):
            value = getattr(self, key)
            if value is not None:
                out[key] = value
        if self.nearby_landmarks:
            out["nearby_landmarks"] = list(self.nearby_landmarks)
        out.update(self.extra)
        return out


@dataclass(frozen=True)
class CacheEntry:
    """The gateway's single cached record. Replaced whole, never mutated."""

    data: LocationRecord | None = None
    fetched_at: float | None = None  # time.time() epoch seconds

    @property
    def is_empty(self) -> bool:
        return self.data is None or self.fetched_at is None

    def age(self, now: float) -> float | None:
        if self.fetched_at is None:
            return None
        return now - self.fetched_at


def is_valid_location(data: Any) -> bool:
    """True if ``data`` would parse into a LocationRecord."""
    try:
        LocationRecord.from_dict(data)
    except InvalidRecord:
        return False
    return True
