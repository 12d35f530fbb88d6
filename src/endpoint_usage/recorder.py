"""Usage recorder: the write path.

One observed request fans out to three aggregate families:
- global       lifetime totals per endpoint
- daily        totals per endpoint per UTC day (TTL 90 days)
- performance  rolling totals and minute throughput buckets (TTL 90 days)

plus a bounded raw event sample used for percentiles (TTL 30 days).

Counters are only ever changed with HINCRBY/HINCRBYFLOAT/HSETNX queued in
one MULTI/EXEC per record, never read-modify-write, so concurrent writers in
any number of processes cannot lose increments. last_accessed goes through a
max-only Lua update in the same transaction, so a late-committing older event
never moves it backwards.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Any

from endpoint_usage import keys
from endpoint_usage.clock import (
    Clock,
    minute_bucket,
    to_epoch_ms,
    utc_date,
    utc_now,
)
from endpoint_usage.config import Settings
from endpoint_usage.errors import StoreUnavailableError
from endpoint_usage.models import ObservedRequest, RecordOutcome, UsageEvent
from endpoint_usage.normalize import EndpointKey, normalize_endpoint
from endpoint_usage.routes import RouteRegistry
from endpoint_usage.store import UsageStore

logger = logging.getLogger(__name__)

# Writes ARGV[2] into field ARGV[1] only when it is numerically greater.
SET_MAX_FIELD_SCRIPT = """
local current = tonumber(redis.call('hget', KEYS[1], ARGV[1]))
local candidate = tonumber(ARGV[2])
if current == nil or candidate > current then
  redis.call('hset', KEYS[1], ARGV[1], ARGV[2])
  return 1
end
return 0
"""


def _apply_common_fields(
    pipe: Any, key: str, event: UsageEvent, count_field: str
) -> None:
    ts = str(event.timestamp)
    pipe.hincrby(key, count_field, 1)
    pipe.hsetnx(key, "first_accessed", ts)
    pipe.eval(SET_MAX_FIELD_SCRIPT, 1, key, "last_accessed", ts)
    if event.response_time is not None:
        pipe.hincrbyfloat(key, "total_response_time", float(event.response_time))
        pipe.hincrby(key, "response_count", 1)


class UsageRecorder:
    """Ingests UsageEvents into the shared store."""

    def __init__(
        self,
        store: UsageStore,
        settings: Settings,
        *,
        routes: RouteRegistry | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._settings = settings
        self._prefix = store.key_prefix
        self._routes = routes
        self._clock = clock
        # endpoint -> UTC day its route record was last refreshed
        self._route_refreshed: dict[EndpointKey, str] = {}
        self._background_tasks: set[asyncio.Task[RecordOutcome]] = set()

    @property
    def pending(self) -> int:
        return len(self._background_tasks)

    def build_event(self, observed: ObservedRequest) -> UsageEvent:
        """Normalize an adapter observation and stamp it with the ingest time."""
        endpoint = normalize_endpoint(
            observed.method,
            observed.path,
            include_query_params=self._settings.include_query_params,
        )
        return UsageEvent(
            timestamp=to_epoch_ms(self._clock()),
            method=endpoint.method,
            path=endpoint.path,
            status_code=observed.status_code,
            response_time=observed.response_time,
            user_agent=observed.user_agent,
            ip=observed.ip,
            memory_usage=observed.memory_usage,
            cpu_usage=observed.cpu_usage,
        )

    async def track(self, observed: ObservedRequest) -> RecordOutcome:
        """Record one observation from an instrumentation adapter."""
        if not self._settings.should_track(observed.path):
            return RecordOutcome.SKIPPED
        return await self.record(self.build_event(observed))

    def submit(self, observed: ObservedRequest) -> asyncio.Task[RecordOutcome] | None:
        """Fire-and-forget variant of track() for the request path."""
        if not self._settings.should_track(observed.path):
            return None
        task = asyncio.create_task(self.track(observed))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for background writes started by submit()."""
        if not self._background_tasks:
            return
        pending = list(self._background_tasks)
        _, still_pending = await asyncio.wait(pending, timeout=timeout)
        for task in still_pending:
            task.cancel()
        if still_pending:
            await asyncio.gather(*still_pending, return_exceptions=True)

    async def record(self, event: UsageEvent) -> RecordOutcome:
        """Apply one event to every aggregate family.

        Store failures are logged and reported as FAILED; they never raise.
        """
        if not self._settings.should_track(event.path):
            return RecordOutcome.SKIPPED

        endpoint = event.endpoint
        try:
            await self._append_raw(endpoint, event)
            await self._update_global(endpoint, event)
            await self._update_daily(endpoint, event)
            if self._settings.performance_tracking.enabled:
                await self._update_performance(endpoint, event)
            await self._refresh_route(endpoint, utc_date(event.timestamp))
        except StoreUnavailableError as exc:
            logger.warning("Failed to record usage for %s: %s", endpoint, exc)
            return RecordOutcome.FAILED
        return RecordOutcome.RECORDED

    async def _append_raw(self, endpoint: EndpointKey, event: UsageEvent) -> None:
        raw_key = keys.raw_key(self._prefix, endpoint)
        async with self._store.atomic("raw_append") as pipe:
            pipe.lpush(raw_key, event.to_json())
            pipe.ltrim(raw_key, 0, self._settings.raw_sample_limit - 1)
            pipe.expire(raw_key, keys.RAW_TTL)

    async def _update_global(self, endpoint: EndpointKey, event: UsageEvent) -> None:
        global_key = keys.global_key(self._prefix, endpoint)
        async with self._store.atomic("global_update") as pipe:
            _apply_common_fields(pipe, global_key, event, "count")
            pipe.hincrby(global_key, keys.status_field(event.status_code), 1)

    async def _update_daily(self, endpoint: EndpointKey, event: UsageEvent) -> None:
        daily_key = keys.daily_key(self._prefix, utc_date(event.timestamp), endpoint)
        async with self._store.atomic("daily_update") as pipe:
            _apply_common_fields(pipe, daily_key, event, "count")
            pipe.hincrby(daily_key, keys.status_field(event.status_code), 1)
            pipe.expire(daily_key, keys.DAILY_TTL)

    async def _update_performance(
        self, endpoint: EndpointKey, event: UsageEvent
    ) -> None:
        perf_key = keys.performance_key(self._prefix, endpoint)
        slow_threshold = self._settings.performance_tracking.slow_threshold_ms

        async with self._store.atomic("performance_update") as pipe:
            _apply_common_fields(pipe, perf_key, event, "total_requests")
            if (
                event.response_time is not None
                and event.response_time > slow_threshold
            ):
                pipe.hincrby(perf_key, "slow_requests", 1)
            if event.status_code >= 400:
                pipe.hincrby(perf_key, "error_requests", 1)
            if event.memory_usage is not None:
                pipe.hincrbyfloat(perf_key, "total_memory", float(event.memory_usage))
                pipe.hincrby(perf_key, "memory_count", 1)
            if event.cpu_usage is not None:
                pipe.hincrbyfloat(perf_key, "total_cpu", float(event.cpu_usage))
                pipe.hincrby(perf_key, "cpu_count", 1)
            pipe.hincrby(
                perf_key, keys.throughput_field(minute_bucket(event.timestamp)), 1
            )
            pipe.expire(perf_key, keys.PERFORMANCE_TTL)

        await self._prune_throughput(perf_key, event.timestamp)

    async def _prune_throughput(self, perf_key: str, now_ms: int) -> int:
        """Drop minute buckets older than the throughput window. Best effort."""
        cutoff = now_ms - keys.THROUGHPUT_WINDOW_MS
        stale: list[str] = []
        for field in await self._store.hkeys(perf_key):
            if not field.startswith(keys.THROUGHPUT_FIELD_PREFIX):
                continue
            bucket = field[len(keys.THROUGHPUT_FIELD_PREFIX) :]
            if bucket.isdigit() and int(bucket) < cutoff:
                stale.append(field)
        return await self._store.hdel(perf_key, *stale)

    async def _refresh_route(self, endpoint: EndpointKey, day: str) -> None:
        """Register the route on first use and renew its TTL once per UTC day."""
        if self._routes is None or self._route_refreshed.get(endpoint) == day:
            return
        await self._routes.register_endpoint(endpoint)
        self._route_refreshed[endpoint] = day

    async def clear(self, older_than_days: int | None = None) -> int:
        """Delete tracked data.

        Without a threshold (None or 0) every key under the prefix goes; with
        one, only daily records dated before ``today - older_than_days``.
        """
        if not older_than_days:
            doomed = await self._store.scan_keys(keys.all_keys_pattern(self._prefix))
        else:
            cutoff_day = (self._clock() - timedelta(days=older_than_days)).strftime(
                "%Y-%m-%d"
            )
            doomed = []
            for key in await self._store.scan_keys(
                keys.family_pattern(self._prefix, keys.DAILY)
            ):
                day = keys.day_from_daily_key(self._prefix, key)
                if day is not None and day < cutoff_day:
                    doomed.append(key)

        deleted = await self._store.delete(*doomed)
        self._route_refreshed.clear()
        logger.info("Cleared %s tracking keys", deleted)
        return deleted
