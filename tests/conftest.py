from __future__ import annotations

from collections.abc import AsyncIterator

import pytest
import pytest_asyncio
from fakeredis.aioredis import FakeRedis

from endpoint_usage.config import PerformanceTrackingSettings, Settings
from endpoint_usage.notifications import NotificationDispatcher
from endpoint_usage.store import UsageStore
from endpoint_usage.tracker import EndpointUsageTracker
from tests._fixtures.keyspace import PREFIX
from tests._fixtures.time import FrozenClock, utc_dt


@pytest_asyncio.fixture
async def fake_redis() -> AsyncIterator[FakeRedis]:
    client = FakeRedis(decode_responses=True)
    try:
        yield client
    finally:
        await client.aclose()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(utc_dt(2026, 3, 1, 12, 0, 0))


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        key_prefix=PREFIX,
        exclude_paths=["/health"],
        performance_tracking=PerformanceTrackingSettings(
            enabled=True, slow_threshold_ms=1000.0
        ),
    )


@pytest.fixture
def store(fake_redis: FakeRedis) -> UsageStore:
    return UsageStore(fake_redis, PREFIX)


@pytest.fixture
def tracker(
    settings: Settings, store: UsageStore, clock: FrozenClock
) -> EndpointUsageTracker:
    return EndpointUsageTracker(
        settings, store, dispatcher=NotificationDispatcher([]), clock=clock
    )
