"""Persisted client state: the last good location plus recent history."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from typing import Any, Mapping, TYPE_CHECKING

import structlog

from cubemap.core.errors import PersistenceError
from cubemap.core.models import is_valid_location
from cubemap.core.staleness import EXPIRED_AFTER_SECONDS, iso_utc, parse_timestamp

if TYPE_CHECKING:
    from cubemap.storage.base import SnapshotStore

log = structlog.get_logger()

SNAPSHOT_VERSION = "1.0"


@dataclass
class ClientCacheSnapshot:
    last_location: dict
    location_history: list[dict] = field(default_factory=list)
    last_update: str | None = None
    saved_at: str = ""
    version: str = SNAPSHOT_VERSION

    def to_json(self) -> str:
        return json.dumps(asdict(self), separators=(",", ":"))

    @classmethod
    def from_json(cls, raw: str) -> ClientCacheSnapshot:
        """Parse a stored blob. Raises ValueError if it is not a usable snapshot."""
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("snapshot is not a JSON object")
        if data.get("version") != SNAPSHOT_VERSION:
            raise ValueError(f"unsupported snapshot version {data.get('version')!r}")
        if not is_valid_location(data.get("last_location")):
            raise ValueError("snapshot has no valid last_location")
        if parse_timestamp(data.get("saved_at")) is None:
            raise ValueError("snapshot has no valid saved_at")

        history = data.get("location_history") or []
        if not isinstance(history, list):
            history = []
        return cls(
            last_location=data["last_location"],
            location_history=[h for h in history if is_valid_location(h)],
            last_update=data.get("last_update"),
            saved_at=data["saved_at"],
            version=data["version"],
        )

    def age(self, now: float) -> float:
        return now - parse_timestamp(self.saved_at).timestamp()


def history_entry(record: Mapping[str, Any], now: float) -> dict:
    """The subset of an enriched record kept in the location history."""
    return {
        "lat": record["lat"],
        "lng": record["lng"],
        "timestamp": record.get("timestamp") or iso_utc(now),
        "address": record.get("address"),
        "context": record.get("context"),
        "source": record.get("_source", "unknown"),
    }


def append_history(history: list[dict], entry: dict, max_items: int) -> list[dict]:
    """Append and drop the oldest entries beyond ``max_items``."""
    history = history + [entry]
    if len(history) > max_items:
        history = history[-max_items:]
    return history


def load_snapshot(
    store: SnapshotStore,
    key: str,
    now: float,
    expired_after: float = EXPIRED_AFTER_SECONDS,
) -> ClientCacheSnapshot | None:
    """Return the stored snapshot, or None if absent, unreadable or too old.

    An expired snapshot is left in the store; the next save overwrites it.
    """
    try:
        raw = store.get(key)
    except PersistenceError as exc:
        log.warning("snapshot_load_failed", key=key, error=str(exc))
        return None
    if raw is None:
        log.debug("snapshot_absent", key=key)
        return None

    try:
        snapshot = ClientCacheSnapshot.from_json(raw)
    except ValueError as exc:
        # json.JSONDecodeError is a ValueError.
        log.warning("snapshot_invalid", key=key, error=str(exc))
        return None

    age = snapshot.age(now)
    if age > expired_after:
        log.info("snapshot_expired", key=key, age_hours=round(age / 3600, 1))
        return None

    log.info("snapshot_loaded", key=key, age_minutes=round(age / 60),
             history=len(snapshot.location_history))
    return snapshot


def save_snapshot(store: SnapshotStore, key: str, snapshot: ClientCacheSnapshot) -> bool:
    try:
        store.set(key, snapshot.to_json())
    except PersistenceError as exc:
        log.warning("snapshot_save_failed", key=key, error=str(exc))
        return False
    log.debug("snapshot_saved", key=key, history=len(snapshot.location_history))
    return True
