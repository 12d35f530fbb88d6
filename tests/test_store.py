from __future__ import annotations

import pytest
from fakeredis.aioredis import FakeRedis

from endpoint_usage import keys
from endpoint_usage.clock import from_epoch_ms, minute_bucket, to_epoch_ms, utc_date
from endpoint_usage.config import Settings
from endpoint_usage.errors import StoreUnavailableError
from endpoint_usage.normalize import EndpointKey
from endpoint_usage.store import UsageStore
from endpoint_usage.tracker import EndpointUsageTracker
from tests._fixtures.broken import BrokenRedis
from tests._fixtures.keyspace import PREFIX
from tests._fixtures.time import utc_dt


def test_key_layout_round_trips_endpoints_with_colons() -> None:
    endpoint = EndpointKey("GET", "/users/:id/posts/:id")

    global_key = keys.global_key(PREFIX, endpoint)
    daily_key = keys.daily_key(PREFIX, "2026-03-01", endpoint)

    assert global_key == "test_usage:global:GET:/users/:id/posts/:id"
    assert keys.endpoint_from_key(PREFIX, keys.GLOBAL, global_key) == endpoint
    assert keys.endpoint_from_key(PREFIX, keys.RAW, global_key) is None
    assert keys.day_from_daily_key(PREFIX, daily_key) == "2026-03-01"
    assert keys.family_key(PREFIX, keys.ROUTES, endpoint) == keys.route_key(
        PREFIX, endpoint
    )


def test_epoch_millisecond_helpers_are_exact() -> None:
    moment = utc_dt(2026, 3, 1, 23, 59, 59, 999_000)
    ms = to_epoch_ms(moment)

    assert from_epoch_ms(ms) == moment
    assert utc_date(ms) == "2026-03-01"
    assert utc_date(ms + 1) == "2026-03-02"
    assert minute_bucket(ms) == to_epoch_ms(utc_dt(2026, 3, 1, 23, 59))
    assert to_epoch_ms(moment.replace(tzinfo=None)) == ms


@pytest.mark.asyncio
async def test_atomic_pipeline_applies_all_commands(store: UsageStore) -> None:
    async with store.atomic() as pipe:
        pipe.hincrby("test_usage:global:GET:/a", "count", 2)
        pipe.hset("test_usage:global:GET:/a", "last_accessed", "1")
        pipe.hincrby("test_usage:global:GET:/b", "count", 1)

    assert await store.hgetall("test_usage:global:GET:/a") == {
        "count": "2",
        "last_accessed": "1",
    }
    assert await store.scan_keys("test_usage:global:*") == [
        "test_usage:global:GET:/a",
        "test_usage:global:GET:/b",
    ]
    assert await store.hgetall_many(["test_usage:global:GET:/b", "missing"]) == [
        {"count": "1"},
        {},
    ]
    assert await store.ping()


@pytest.mark.asyncio
async def test_broken_store_raises_store_unavailable() -> None:
    store = UsageStore(BrokenRedis(), PREFIX)

    with pytest.raises(StoreUnavailableError) as exc_info:
        await store.ping()
    assert exc_info.value.operation == "ping"

    with pytest.raises(StoreUnavailableError):
        async with store.atomic("daily_update") as pipe:
            pipe.hincrby("k", "count", 1)

    await store.close()


@pytest.mark.asyncio
async def test_tracker_close_drains_and_closes(
    settings: Settings, fake_redis: FakeRedis
) -> None:
    tracker = EndpointUsageTracker(settings, UsageStore(fake_redis, PREFIX))

    assert tracker.store.client is fake_redis
    assert tracker.dispatcher.channels == []
    await tracker.close()
    assert not tracker.scheduler.running


def test_from_settings_builds_redis_client() -> None:
    settings = Settings(_env_file=None, redis={"url": "redis://cache:6390/2"})

    store = UsageStore.from_settings(settings)

    assert store.key_prefix == "endpoint_usage"
    kwargs = store.client.connection_pool.connection_kwargs
    assert (kwargs["host"], kwargs["port"], kwargs["db"]) == ("cache", 6390, 2)
