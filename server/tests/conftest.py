"""Shared test fixtures."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest
from httpx import ASGITransport, AsyncClient

import cubemap.main as main_module
from cubemap.config import AppConfig
from cubemap.core.gateway import LocationCacheGateway
from cubemap.core.models import LocationRecord

# 5 minutes after the sample record's timestamp.
NOW = datetime(2025, 8, 25, 0, 5, tzinfo=timezone.utc).timestamp()

SAMPLE_LOCATION = {"lat": 40.78, "lng": -119.20, "timestamp": "2025-08-25T00:00:00Z"}


class FakeClock:
    def __init__(self, now: float = NOW) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSource:
    """LocationSource returning queued payloads or raising queued errors.

    The last queued item repeats once the queue is down to one.
    """

    url = "http://upstream.test/api/v1/gps/location.json"

    def __init__(self, *items, delay: float = 0.0) -> None:
        self.items = list(items)
        self.delay = delay
        self.calls = 0

    async def fetch(self) -> LocationRecord:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        item = self.items.pop(0) if len(self.items) > 1 else self.items[0]
        if isinstance(item, Exception):
            raise item
        return LocationRecord.from_dict(item)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def source():
    return FakeSource(SAMPLE_LOCATION)


@pytest.fixture
def gateway(source, clock):
    return LocationCacheGateway(source, cache_duration=300.0, clock=clock)


@pytest.fixture(autouse=True)
def _init_server(tmp_path, gateway):
    """Initialize server singletons for every test, using a temp directory."""
    config = AppConfig()
    config.geojson.data_dir = str(tmp_path / "geojson")
    config.logging.level = "warning"

    # Patch module-level singletons
    main_module._config = config
    main_module._gateway = gateway

    yield

    # Cleanup
    main_module._config = None
    main_module._gateway = None


@pytest.fixture
async def client():
    from cubemap.main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
