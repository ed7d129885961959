"""File-based implementation of SnapshotStore.

Each key is stored as ``base_dir/<key>.json``. Writes go to a temporary file
first and are renamed into place, so a reader never sees a half-written
snapshot.
"""

from __future__ import annotations

import os
import re
from pathlib import Path

import structlog

from cubemap.core.errors import PersistenceError

log = structlog.get_logger()

_KEY_RE = re.compile(r"\A[A-Za-z0-9_.-]+\Z")


class FileSnapshotStore:
    """SnapshotStore backed by one JSON file per key on disk."""

    def __init__(self, base_dir: str | Path) -> None:
        self._base_dir = Path(base_dir)

    def _path(self, key: str) -> Path:
        if not _KEY_RE.match(key) or key.startswith("."):
            raise PersistenceError(f"invalid storage key: {key!r}")
        return self._base_dir / f"{key}.json"

    def get(self, key: str) -> str | None:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as exc:
            raise PersistenceError(f"cannot read {path}: {exc}") from exc

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        tmp = path.with_suffix(".json.tmp")
        try:
            self._base_dir.mkdir(parents=True, exist_ok=True)
            tmp.write_text(value, encoding="utf-8")
            os.replace(tmp, path)
        except OSError as exc:
            raise PersistenceError(f"cannot write {path}: {exc}") from exc
        log.debug("snapshot_written", path=str(path), size=len(value))

    def remove(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise PersistenceError(f"cannot remove {path}: {exc}") from exc
