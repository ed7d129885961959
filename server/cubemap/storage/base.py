"""Storage interface (port) for the poller's persisted snapshot."""

from __future__ import annotations

from typing import Protocol


class SnapshotStore(Protocol):
    """Port: a small synchronous key/value store for serialized snapshots.

    Implementations raise PersistenceError when the backend is unusable.
    """

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...
