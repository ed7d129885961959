"""Tests for the adaptive poller."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from cubemap.client.gateway_client import GatewayClient
from cubemap.client.poller import AdaptivePoller, ApiStatus, cadence_for
from cubemap.client.snapshot import ClientCacheSnapshot
from cubemap.client.static import fallback_location
from cubemap.config import PollerConfig
from cubemap.core.errors import InvalidRecord, UpstreamBadStatus, UpstreamUnreachable
from cubemap.core.staleness import iso_utc
from cubemap.storage.memory_store import MemorySnapshotStore

from conftest import NOW, SAMPLE_LOCATION, FakeClock

KEY = "glitchcube_cache"


class FakeGateway:
    """Returns queued payloads or raises queued errors; the last item repeats."""

    def __init__(self, *items) -> None:
        self.items = list(items)
        self.calls = 0

    async def fetch_location(self) -> dict:
        self.calls += 1
        item = self.items.pop(0) if len(self.items) > 1 else self.items[0]
        if isinstance(item, Exception):
            raise item
        return dict(item)


class FakeSleep:
    """Records delays; backoff delays return at once, poll intervals block."""

    def __init__(self, block_at: float = 60.0) -> None:
        self.delays: list[float] = []
        self.block_at = block_at

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if delay >= self.block_at:
            await asyncio.Event().wait()
        await asyncio.sleep(0)


async def _drain() -> None:
    for _ in range(10):
        await asyncio.sleep(0)


def _poller(gateway=None, store=None, **kwargs) -> AdaptivePoller:
    kwargs.setdefault("clock", FakeClock())
    kwargs.setdefault("sleep", FakeSleep())
    return AdaptivePoller(gateway, store if store is not None else MemorySnapshotStore(), **kwargs)


def _stored_snapshot(saved_at: float) -> str:
    return ClientCacheSnapshot(
        last_location={"lat": 40.77, "lng": -119.21, "timestamp": "2025-08-24T23:00:00Z"},
        location_history=[{"lat": 40.77, "lng": -119.21}],
        saved_at=iso_utc(saved_at),
    ).to_json()


@pytest.mark.parametrize("failures, interval, status", [
    (0, 300.0, ApiStatus.ONLINE),
    (1, 300.0, ApiStatus.RETRYING),
    (2, 1800.0, ApiStatus.DEGRADED),
    (3, 1800.0, ApiStatus.DEGRADED),
    (4, 1800.0, ApiStatus.DEGRADED),
    (5, 3600.0, ApiStatus.OFFLINE),
    (12, 3600.0, ApiStatus.OFFLINE),
])
def test_cadence_table(failures, interval, status):
    cadence = cadence_for(failures, PollerConfig())
    assert cadence.interval == interval
    assert cadence.status is status


def test_requires_gateway_or_static_location():
    with pytest.raises(ValueError):
        AdaptivePoller(None, MemorySnapshotStore())


@pytest.mark.asyncio
async def test_successful_fetch_publishes_and_persists():
    store = MemorySnapshotStore()
    poller = _poller(FakeGateway(SAMPLE_LOCATION), store)
    updates = []
    poller.on_location_update(updates.append)

    assert await poller.fetch() is True

    assert len(updates) == 1
    record = updates[0]
    assert record["lat"] == 40.78
    assert record["_source"] == "api"
    assert record["_received_at"] == "2025-08-25T00:05:00Z"
    assert record["_is_stale"] is False
    assert record["_is_expired"] is False
    assert poller.api_status is ApiStatus.ONLINE
    assert poller.current_location == record
    assert poller.location_history() == [(40.78, -119.20)]
    assert poller.state.last_successful_fetch == NOW

    stored = ClientCacheSnapshot.from_json(store.get(KEY))
    assert stored.last_location == record
    assert stored.saved_at == "2025-08-25T00:05:00Z"


@pytest.mark.asyncio
async def test_retries_with_exponential_backoff():
    sleep = FakeSleep()
    gateway = FakeGateway(UpstreamUnreachable("down"), UpstreamBadStatus(502), SAMPLE_LOCATION)
    poller = _poller(gateway, sleep=sleep)

    assert await poller.fetch() is True
    assert gateway.calls == 3
    assert sleep.delays == [5.0, 10.0]
    assert poller.state.consecutive_failures == 0
    assert poller.state.retry_count == 0


@pytest.mark.asyncio
async def test_exhausted_retries_count_one_failure():
    sleep = FakeSleep()
    gateway = FakeGateway(UpstreamUnreachable("down"))
    poller = _poller(gateway, sleep=sleep)
    errors = []
    poller.on_error(errors.append)

    assert await poller.fetch() is False
    assert gateway.calls == 3
    assert sleep.delays == [5.0, 10.0]
    assert poller.state.consecutive_failures == 1
    assert poller.state.retry_count == 0
    assert len(errors) == 1
    assert isinstance(errors[0], UpstreamUnreachable)


@pytest.mark.asyncio
async def test_failure_sequence_drives_cadence_and_recovery():
    gateway = FakeGateway(UpstreamBadStatus(500))
    poller = _poller(gateway)

    observed = []
    for _ in range(6):
        await poller.fetch()
        observed.append((poller.state.consecutive_failures,
                         poller.state.current_interval,
                         poller.api_status))

    assert observed == [
        (1, 300.0, ApiStatus.RETRYING),
        (2, 1800.0, ApiStatus.DEGRADED),
        (3, 1800.0, ApiStatus.DEGRADED),
        (4, 1800.0, ApiStatus.DEGRADED),
        (5, 3600.0, ApiStatus.OFFLINE),
        (6, 3600.0, ApiStatus.OFFLINE),
    ]

    gateway.items = [SAMPLE_LOCATION]
    assert await poller.fetch() is True
    assert poller.state.consecutive_failures == 0
    assert poller.state.current_interval == 300.0
    assert poller.api_status is ApiStatus.ONLINE


@pytest.mark.asyncio
async def test_missing_lng_is_a_failure_end_to_end():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"lat": 40.78})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        store = MemorySnapshotStore()
        poller = _poller(GatewayClient(client, "http://map.local"), store)
        updates, errors = [], []
        poller.on_location_update(updates.append)
        poller.on_error(errors.append)

        assert await poller.fetch() is False

    assert updates == []
    assert poller.current_location is None
    assert poller.location_history() == []
    assert poller.state.consecutive_failures == 1
    assert isinstance(errors[0], InvalidRecord)
    assert store.get(KEY) is None


@pytest.mark.asyncio
async def test_stale_records_shown_but_not_added_to_history():
    old = {"lat": 40.78, "lng": -119.2, "timestamp": "2025-08-24T23:00:00Z"}
    server_stale = {**SAMPLE_LOCATION, "cached": True, "stale": True, "api_error": "down"}
    poller = _poller(FakeGateway(old, server_stale))

    await poller.fetch()
    assert poller.current_location["_is_stale"] is True
    assert poller.current_location["_is_expired"] is False

    await poller.fetch()
    assert poller.current_location["stale"] is True
    assert poller.current_location["_is_stale"] is False

    assert poller.location_history() == []


@pytest.mark.asyncio
async def test_expired_record_tagged():
    ancient = {"lat": 40.78, "lng": -119.2, "timestamp": "2025-08-20T00:00:00Z"}
    poller = _poller(FakeGateway(ancient))

    await poller.fetch()
    assert poller.current_location["_is_stale"] is True
    assert poller.current_location["_is_expired"] is True


@pytest.mark.asyncio
async def test_history_capped_in_memory_and_on_save():
    clock = FakeClock()
    payloads = [{"lat": 40.78 + i / 1000, "lng": -119.2,
                 "timestamp": iso_utc(NOW + i)} for i in range(5)]
    store = MemorySnapshotStore()
    config = PollerConfig(max_history_items=3, persisted_history_items=2)
    poller = _poller(FakeGateway(*payloads), store, config=config, clock=clock)

    for _ in range(5):
        await poller.fetch()
        clock.advance(1)

    assert [round(lat, 3) for lat, _ in poller.location_history()] == [40.782, 40.783, 40.784]
    stored = ClientCacheSnapshot.from_json(store.get(KEY))
    assert [round(h["lat"], 3) for h in stored.location_history] == [40.783, 40.784]


@pytest.mark.asyncio
async def test_failing_callbacks_are_isolated():
    poller = _poller(FakeGateway(SAMPLE_LOCATION))
    seen = []

    def broken(*args):
        raise RuntimeError("display exploded")

    poller.on_location_update(broken)
    poller.on_location_update(lambda record: seen.append(("location", record["lat"])))
    poller.on_status_change(broken)
    poller.on_status_change(lambda new, old: seen.append(("status", new)))

    assert await poller.fetch() is True
    assert ("location", 40.78) in seen
    assert ("status", ApiStatus.ONLINE) in seen
    assert poller.state.consecutive_failures == 0
    assert poller.current_location["lat"] == 40.78


@pytest.mark.asyncio
async def test_subscription_cancel():
    poller = _poller(FakeGateway(SAMPLE_LOCATION))
    updates = []
    sub = poller.on_location_update(updates.append)
    assert sub.active

    sub.cancel()
    assert not sub.active
    await poller.fetch()
    assert updates == []


@pytest.mark.asyncio
async def test_status_changes_reported_once_per_transition():
    poller = _poller(FakeGateway(SAMPLE_LOCATION))
    changes = []
    poller.on_status_change(lambda new, old: changes.append((old, new)))

    await poller.fetch()
    await poller.fetch()

    assert changes == [
        (ApiStatus.CONNECTING, ApiStatus.LOADING),
        (ApiStatus.LOADING, ApiStatus.ONLINE),
    ]


@pytest.mark.asyncio
async def test_initialize_publishes_snapshot_before_live_fetch():
    store = MemorySnapshotStore({KEY: _stored_snapshot(NOW - 3600)})
    poller = _poller(FakeGateway(SAMPLE_LOCATION), store)
    sources = []
    poller.on_location_update(lambda record: sources.append(record["_source"]))

    poller.initialize()
    assert sources == ["storage"]
    assert poller.location_history() == [(40.77, -119.21)]

    await _drain()
    assert sources == ["storage", "api"]
    assert poller.location_history() == [(40.77, -119.21), (40.78, -119.20)]
    assert poller.is_running
    poller.stop()


@pytest.mark.asyncio
async def test_expired_snapshot_ignored_and_left_in_store():
    raw = _stored_snapshot(NOW - 25 * 3600)
    store = MemorySnapshotStore({KEY: raw})
    poller = _poller(FakeGateway(SAMPLE_LOCATION), store)
    sources = []
    poller.on_location_update(lambda record: sources.append(record["_source"]))

    poller.initialize()
    assert sources == []
    assert store.get(KEY) == raw
    poller.stop()


@pytest.mark.asyncio
async def test_static_mode_single_update_and_no_polling():
    store = MemorySnapshotStore()
    gateway = FakeGateway(SAMPLE_LOCATION)
    poller = _poller(gateway, store, static_location=fallback_location(NOW))
    updates = []
    poller.on_location_update(updates.append)

    poller.initialize()
    await _drain()

    assert [u["_source"] for u in updates] == ["static"]
    assert updates[0]["address"] == "Center Camp (Demo Mode)"
    assert poller.api_status is ApiStatus.STATIC
    assert poller.status_class() == "status-static"
    assert not poller.is_running
    assert store.get(KEY) is not None

    assert await poller.refresh() is False
    assert await poller.fetch() is False
    poller.start()
    assert not poller.is_running
    assert gateway.calls == 0
    assert len(updates) == 1


@pytest.mark.asyncio
async def test_stop_and_start_keep_state():
    gateway = FakeGateway(SAMPLE_LOCATION)
    poller = _poller(gateway)

    poller.initialize()
    await _drain()
    assert gateway.calls == 1

    poller.stop()
    assert not poller.is_running
    assert poller.state.last_successful_fetch == NOW
    assert poller.current_location["lat"] == 40.78

    poller.start()
    await _drain()
    assert poller.is_running
    assert gateway.calls == 2
    poller.stop()


@pytest.mark.asyncio
async def test_fetch_completing_after_stop_is_discarded():
    release = asyncio.Event()

    class SlowGateway:
        async def fetch_location(self):
            await release.wait()
            return dict(SAMPLE_LOCATION)

    poller = _poller(SlowGateway())
    updates = []
    poller.on_location_update(updates.append)

    task = asyncio.create_task(poller.refresh())
    await _drain()
    poller.stop()
    release.set()

    assert await task is False
    assert updates == []
    assert poller.current_location is None
    assert poller.state.last_successful_fetch is None


@pytest.mark.asyncio
async def test_interval_change_reschedules_timer():
    sleep = FakeSleep()
    poller = _poller(FakeGateway(UpstreamUnreachable("down")), sleep=sleep)

    poller.initialize()
    await _drain()
    assert poller.state.consecutive_failures == 1
    assert sleep.delays[-1] == 300.0

    await poller.refresh()
    await _drain()
    assert poller.state.consecutive_failures == 2
    assert sleep.delays[-1] == 1800.0
    assert poller.is_running
    poller.stop()


@pytest.mark.asyncio
async def test_clear_cache_and_diagnostics():
    store = MemorySnapshotStore()
    poller = _poller(FakeGateway(SAMPLE_LOCATION), store)
    await poller.fetch()
    changes = []
    poller.on_status_change(lambda new, old: changes.append((old, new)))

    diag = poller.diagnostics()
    assert diag["mode"] == "dynamic"
    assert diag["api_status"] == "online"
    assert diag["has_stored_data"] is True
    assert diag["cache_size"] == 1
    assert diag["running"] is False

    poller.clear_cache()
    assert poller.current_location is None
    assert poller.location_history_full() == []
    assert poller.api_status is ApiStatus.CONNECTING
    assert changes == [(ApiStatus.ONLINE, ApiStatus.CONNECTING)]
    assert store.get(KEY) is None
    assert poller.diagnostics()["has_stored_data"] is False


@pytest.mark.asyncio
async def test_restart_during_refresh_fetches_again():
    release = asyncio.Event()

    class FirstCallBlocks:
        calls = 0

        async def fetch_location(self):
            self.calls += 1
            if self.calls == 1:
                await release.wait()
            return dict(SAMPLE_LOCATION)

    gateway = FirstCallBlocks()
    poller = _poller(gateway)
    updates = []
    poller.on_location_update(updates.append)

    task = asyncio.create_task(poller.refresh())
    await _drain()
    poller.stop()
    poller.start()
    await _drain()

    assert gateway.calls == 2
    assert len(updates) == 1
    assert poller.current_location["lat"] == 40.78

    release.set()
    assert await task is False
    assert len(updates) == 1
    assert poller.is_running
    poller.stop()


@pytest.mark.asyncio
async def test_each_cycle_gets_full_retry_budget():
    gateway = FakeGateway(UpstreamUnreachable("down"))
    sleep = FakeSleep(block_at=5.0)
    poller = _poller(gateway, sleep=sleep)

    task = asyncio.create_task(poller.fetch())
    await _drain()
    assert gateway.calls == 1
    assert poller.state.retry_count == 1

    # A refresh while the cycle waits out its backoff changes nothing.
    assert await poller.refresh() is False
    assert gateway.calls == 1
    assert poller.state.retry_count == 1

    poller.stop()
    assert poller.state.retry_count == 0
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    sleep.block_at = 60.0
    sleep.delays.clear()
    assert await poller.fetch() is False
    assert gateway.calls == 4
    assert sleep.delays == [5.0, 10.0]
    assert poller.state.consecutive_failures == 1
    assert poller.state.retry_count == 0
