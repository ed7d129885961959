"""Location cache gateway: one shared record, refreshed at most once per TTL.

This is the core server logic. It depends on the LocationSource protocol,
not on a concrete HTTP client.
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Callable

import structlog

from cubemap.core.errors import UpstreamError
from cubemap.core.models import CacheEntry
from cubemap.core.staleness import iso_utc

if TYPE_CHECKING:
    from cubemap.upstream.base import LocationSource

log = structlog.get_logger()


class LocationCacheGateway:
    """Serves the freshest affordable location to any number of callers.

    The lock covers the whole check-fetch-write sequence, so callers arriving
    while a refresh is in flight wait for it and then take the fast path
    instead of issuing their own upstream request. The lock is held across
    upstream I/O.
    """

    def __init__(
        self,
        source: LocationSource,
        cache_duration: float = 300.0,
        lock: asyncio.Lock | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._source = source
        self._cache_duration = cache_duration
        self._lock = lock if lock is not None else asyncio.Lock()
        self._clock = clock
        self._entry = CacheEntry()

    @property
    def cache_duration(self) -> float:
        return self._cache_duration

    async def get_location(self) -> dict:
        """Return the location annotated with cache metadata.

        The result is an error record (``error``/``message``/``http_status``,
        no coordinates) only when upstream fails before any record was ever
        cached.
        """
        async with self._lock:
            now = self._clock()
            entry = self._entry
            age = entry.age(now)

            if not entry.is_empty and age < self._cache_duration:
                log.debug("cache_hit", cache_age=round(age, 1))
                return {
                    **entry.data.to_dict(),
                    "cached": True,
                    "cache_age": round(age, 1),
                    "cache_expires_in": round(self._cache_duration - age, 1),
                }

            try:
                record = await self._source.fetch()
            except UpstreamError as exc:
                if entry.is_empty:
                    log.error("upstream_fetch_failed", kind=type(exc).__name__,
                              message=exc.message, has_fallback=False)
                    return {**exc.to_dict(), "http_status": exc.http_status}

                log.warning("upstream_fetch_failed", kind=type(exc).__name__,
                            message=exc.message, has_fallback=True,
                            cache_age=round(age, 1))
                return {
                    **entry.data.to_dict(),
                    "cached": True,
                    "stale": True,
                    "cache_age": round(age, 1),
                    "api_error": exc.message,
                }

            self._entry = CacheEntry(data=record, fetched_at=now)
            log.info("cache_refreshed", lat=record.lat, lng=record.lng,
                     timestamp=record.timestamp)
            return {
                **record.to_dict(),
                "cached": False,
                "fetched_at": iso_utc(now),
            }

    async def cache_status(self) -> dict:
        async with self._lock:
            now = self._clock()
            entry = self._entry
            age = entry.age(now)
            return {
                "has_data": entry.data is not None,
                "last_fetch": iso_utc(entry.fetched_at) if entry.fetched_at is not None else None,
                "cache_age": round(age, 1) if age is not None else None,
                "is_fresh": age is not None and age < self._cache_duration,
            }
