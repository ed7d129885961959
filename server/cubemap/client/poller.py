"""Adaptive location poller.

Polls the gateway on a timer whose interval follows the API's observed
health, retries each poll with exponential backoff, and keeps the last good
record in a SnapshotStore so something is displayable across restarts and
outages.

Everything runs on one event loop: the timer task, the backoff sleeps and the
callback fan-out interleave cooperatively, so no locking is needed.
"""

from __future__ import annotations

import asyncio
import enum
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, TYPE_CHECKING

import structlog

from cubemap.client.callbacks import CallbackRegistry, Subscription
from cubemap.client.snapshot import (
    ClientCacheSnapshot,
    append_history,
    history_entry,
    load_snapshot,
    save_snapshot,
)
from cubemap.config import PollerConfig
from cubemap.core.errors import InvalidRecord, PersistenceError, UpstreamError
from cubemap.core.models import LocationRecord
from cubemap.core.staleness import (
    EXPIRED_AFTER_SECONDS,
    STALE_AFTER_SECONDS,
    Freshness,
    age_seconds,
    classify_age,
    iso_utc,
)

if TYPE_CHECKING:
    from cubemap.client.gateway_client import GatewayClient
    from cubemap.storage.base import SnapshotStore

log = structlog.get_logger()

# Failure cycles before the poller slows down / gives up to hourly polling.
DEGRADED_AFTER_FAILURES = 2
OFFLINE_AFTER_FAILURES = 5


class ApiStatus(str, enum.Enum):
    CONNECTING = "connecting"
    LOADING = "loading"
    ONLINE = "online"
    RETRYING = "retrying"
    DEGRADED = "degraded"
    OFFLINE = "offline"
    STATIC = "static"


_STATUS_CLASSES = {
    ApiStatus.ONLINE: "status-online",
    ApiStatus.OFFLINE: "status-offline",
    ApiStatus.STATIC: "status-static",
    ApiStatus.DEGRADED: "status-degraded",
    ApiStatus.RETRYING: "status-loading",
    ApiStatus.LOADING: "status-loading",
}


@dataclass(frozen=True)
class Cadence:
    interval: float
    status: ApiStatus


def cadence_for(consecutive_failures: int, config: PollerConfig) -> Cadence:
    """Polling interval and status label for a given failure count."""
    if consecutive_failures >= OFFLINE_AFTER_FAILURES:
        return Cadence(config.offline_interval_seconds, ApiStatus.OFFLINE)
    if consecutive_failures >= DEGRADED_AFTER_FAILURES:
        return Cadence(config.slow_interval_seconds, ApiStatus.DEGRADED)
    if consecutive_failures == 1:
        return Cadence(config.update_interval_seconds, ApiStatus.RETRYING)
    return Cadence(config.update_interval_seconds, ApiStatus.ONLINE)


@dataclass
class PollerState:
    current_interval: float
    retry_count: int = 0
    consecutive_failures: int = 0
    last_successful_fetch: float | None = None
    is_static_mode: bool = False


class AdaptivePoller:
    """Keeps a local view of the cube location fresh.

    Pass ``static_location`` to run in static mode: the record is published
    once and the timer and fetch path stay disabled for good.
    """

    def __init__(
        self,
        gateway: GatewayClient | None,
        store: SnapshotStore,
        config: PollerConfig | None = None,
        *,
        static_location: Mapping[str, Any] | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        stale_after: float = STALE_AFTER_SECONDS,
        expired_after: float = EXPIRED_AFTER_SECONDS,
    ) -> None:
        if gateway is None and static_location is None:
            raise ValueError("either a gateway or a static location is required")

        self.config = config or PollerConfig()
        self._gateway = gateway
        self._store = store
        self._static_location = dict(static_location) if static_location is not None else None
        self._clock = clock
        self._sleep = sleep
        self._stale_after = stale_after
        self._expired_after = expired_after

        self.state = PollerState(
            current_interval=self.config.update_interval_seconds,
            is_static_mode=static_location is not None,
        )
        self._api_status = ApiStatus.CONNECTING
        self._last_location: dict | None = None
        self._history: list[dict] = []
        self._last_update: float | None = None

        self._timer: asyncio.Task | None = None
        # Generation of the fetch cycle currently running, if any.
        self._in_flight: int | None = None
        # Bumped by stop(); fetches started under an older generation are dropped.
        self._generation = 0

        self._location_updates = CallbackRegistry("location_update")
        self._status_changes = CallbackRegistry("status_change")
        self._errors = CallbackRegistry("error")

    # -- observers -----------------------------------------------------------

    def on_location_update(self, callback: Callable[[dict], Any]) -> Subscription:
        return self._location_updates.add(callback)

    def on_status_change(self, callback: Callable[[ApiStatus, ApiStatus], Any]) -> Subscription:
        return self._status_changes.add(callback)

    def on_error(self, callback: Callable[[Exception], Any]) -> Subscription:
        return self._errors.add(callback)

    # -- lifecycle -----------------------------------------------------------

    def initialize(self) -> None:
        """Publish any persisted snapshot, then start polling or inject static data.

        Must be called from a running event loop in dynamic mode.
        """
        snapshot = load_snapshot(self._store, self.config.storage_key,
                                 self._clock(), self._expired_after)
        if snapshot is not None:
            self._publish(snapshot.last_location, "storage")
            self._history = snapshot.location_history[-self.config.max_history_items:]

        if self.state.is_static_mode:
            self._initialize_static()
        else:
            self.start()

        log.info("poller_initialized",
                 mode="static" if self.state.is_static_mode else "dynamic",
                 restored=snapshot is not None)

    def _initialize_static(self) -> None:
        self._publish(self._static_location, "static")
        self._set_status(ApiStatus.STATIC)
        self._save()

    @property
    def is_running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def start(self) -> None:
        """Start (or restart) the recurring timer with an immediate fetch."""
        if self.state.is_static_mode:
            log.info("poller_start_ignored", reason="static_mode")
            return
        self._cancel_timer()
        self._timer = asyncio.get_running_loop().create_task(self._run(initial_delay=False))
        log.info("poller_started", interval=self.state.current_interval)

    def stop(self) -> None:
        """Cancel the timer. PollerState is kept so start() resumes where it left off."""
        self._generation += 1
        self.state.retry_count = 0
        if self._cancel_timer():
            log.info("poller_stopped")

    def _cancel_timer(self) -> bool:
        if self._timer is None:
            return False
        self._timer.cancel()
        self._timer = None
        return True

    def _reschedule(self) -> None:
        """Restart the timer at the current interval, without an immediate fetch."""
        if not self.is_running:
            return
        # The timer loop picks up the new interval on its own.
        if asyncio.current_task() is self._timer:
            return
        self._cancel_timer()
        self._timer = asyncio.get_running_loop().create_task(self._run(initial_delay=True))
        log.info("poller_rescheduled", interval=self.state.current_interval)

    async def _run(self, initial_delay: bool) -> None:
        if initial_delay:
            await self._sleep(self.state.current_interval)
        while True:
            try:
                await self.fetch()
            except Exception:
                log.error("poll_cycle_crashed", exc_info=True)
            await self._sleep(self.state.current_interval)

    # -- fetching ------------------------------------------------------------

    async def refresh(self) -> bool:
        """Manual fetch. A no-op in static mode."""
        if self.state.is_static_mode:
            log.info("refresh_ignored", reason="static_mode")
            return False
        log.info("refresh_requested")
        return await self.fetch()

    async def fetch(self) -> bool:
        """Run one fetch cycle (with retries). Returns True on success.

        A cycle still running from before the last stop() does not block a
        new one; its result is discarded when it completes.
        """
        if self.state.is_static_mode:
            log.debug("fetch_ignored", reason="static_mode")
            return False
        generation = self._generation
        if self._in_flight == generation:
            log.debug("fetch_ignored", reason="in_flight")
            return False

        self._in_flight = generation
        try:
            return await self._fetch_cycle(generation)
        finally:
            if self._in_flight == generation:
                self._in_flight = None

    async def _fetch_cycle(self, generation: int) -> bool:
        if self._api_status is ApiStatus.CONNECTING:
            self._set_status(ApiStatus.LOADING)

        attempt = 0
        while True:
            attempt += 1
            log.debug("fetch_attempt", attempt=attempt, max_retries=self.config.max_retries)
            try:
                data = await self._gateway.fetch_location()
            except UpstreamError as exc:
                if generation != self._generation:
                    return self._discard()

                if attempt < self.config.max_retries:
                    self.state.retry_count = attempt
                    delay = self.config.retry_backoff_seconds * 2 ** (attempt - 1)
                    log.warning("fetch_failed_retrying", error=exc.message,
                                kind=type(exc).__name__, retry_in=delay)
                    if self.state.consecutive_failures == 0:
                        self._set_status(ApiStatus.RETRYING)
                    await self._sleep(delay)
                    if generation != self._generation:
                        return self._discard()
                    continue

                self._handle_failed_cycle(exc)
                return False

            if generation != self._generation:
                return self._discard()
            self._handle_success(data)
            return True

    def _discard(self) -> bool:
        log.debug("fetch_discarded", reason="stopped")
        return False

    def _handle_success(self, data: dict) -> None:
        self.state.retry_count = 0
        self.state.last_successful_fetch = self._clock()

        if self.state.consecutive_failures > 0:
            log.info("api_recovered", after_failures=self.state.consecutive_failures)
            self.state.consecutive_failures = 0
            self._apply_cadence()

        if self._publish(data, "api"):
            self._save()

    def _handle_failed_cycle(self, exc: UpstreamError) -> None:
        self.state.retry_count = 0
        self.state.consecutive_failures += 1
        log.error("fetch_cycle_failed", error=exc.message, kind=type(exc).__name__,
                  consecutive_failures=self.state.consecutive_failures)
        self._apply_cadence()
        self._errors.emit(exc)

    def _apply_cadence(self) -> None:
        cadence = cadence_for(self.state.consecutive_failures, self.config)
        changed = cadence.interval != self.state.current_interval
        self.state.current_interval = cadence.interval
        self._set_status(cadence.status)
        if changed:
            self._reschedule()

    # -- state ---------------------------------------------------------------

    def _publish(self, data: Mapping[str, Any] | None, source: str) -> bool:
        """Validate, tag and fan out a record. Invalid data is reported, never shown."""
        try:
            LocationRecord.from_dict(data)
        except InvalidRecord as exc:
            log.warning("location_rejected", source=source, error=exc.message)
            self._errors.emit(exc)
            return False

        now = self._clock()
        freshness = classify_age(age_seconds(data.get("timestamp"), now),
                                 self._stale_after, self._expired_after)
        enriched = {
            **data,
            "_source": source,
            "_received_at": iso_utc(now),
            "_is_stale": freshness is not Freshness.FRESH,
            "_is_expired": freshness is Freshness.EXPIRED,
        }
        self._last_location = enriched
        self._last_update = now

        if source == "api":
            self._set_status(ApiStatus.ONLINE)
            if not enriched["_is_stale"] and not data.get("stale"):
                self._history = append_history(self._history, history_entry(enriched, now),
                                               self.config.max_history_items)

        log.info("location_updated", source=source, lat=enriched["lat"], lng=enriched["lng"],
                 stale=enriched["_is_stale"])
        self._location_updates.emit(enriched)
        return True

    def _set_status(self, status: ApiStatus) -> None:
        old = self._api_status
        if old is status:
            return
        self._api_status = status
        log.info("api_status_changed", old=old.value, new=status.value)
        self._status_changes.emit(status, old)

    def _save(self) -> None:
        if self._last_location is None:
            return
        now = self._clock()
        snapshot = ClientCacheSnapshot(
            last_location=self._last_location,
            location_history=self._history[-self.config.persisted_history_items:],
            last_update=iso_utc(self._last_update) if self._last_update is not None else None,
            saved_at=iso_utc(now),
        )
        save_snapshot(self._store, self.config.storage_key, snapshot)

    def clear_cache(self) -> None:
        """Forget the current location and history, in memory and in the store."""
        self._last_location = None
        self._history = []
        self._last_update = None
        self._set_status(ApiStatus.CONNECTING)
        try:
            self._store.remove(self.config.storage_key)
        except PersistenceError as exc:
            log.warning("snapshot_clear_failed", error=str(exc))
        log.info("cache_cleared")

    # -- queries -------------------------------------------------------------

    @property
    def current_location(self) -> dict | None:
        return self._last_location

    @property
    def api_status(self) -> ApiStatus:
        return self._api_status

    @property
    def last_update(self) -> float | None:
        return self._last_update

    def location_history(self) -> list[tuple[float, float]]:
        return [(entry["lat"], entry["lng"]) for entry in self._history]

    def location_history_full(self) -> list[dict]:
        return [dict(entry) for entry in self._history]

    def status_class(self) -> str:
        return _STATUS_CLASSES.get(self._api_status, "status-loading")

    def diagnostics(self) -> dict:
        try:
            has_stored = self._store.get(self.config.storage_key) is not None
        except PersistenceError:
            has_stored = False
        return {
            "mode": "static" if self.state.is_static_mode else "dynamic",
            "api_status": self._api_status.value,
            "current_interval": self.state.current_interval,
            "consecutive_failures": self.state.consecutive_failures,
            "last_successful_fetch": self.state.last_successful_fetch,
            "has_stored_data": has_stored,
            "cache_size": len(self._history),
            "last_update": self._last_update,
            "running": self.is_running,
        }
