"""Stats reader: the read path.

Rebuilds per-endpoint statistics from the aggregate hashes written by the
recorder. Percentiles are computed on demand from the bounded raw event
sample; cross-endpoint totals are not a consistent snapshot.
"""

from __future__ import annotations

import json
import logging
import math
from collections.abc import Callable, Mapping, Sequence
from datetime import timedelta

from endpoint_usage import keys
from endpoint_usage.clock import (
    MS_PER_MINUTE,
    Clock,
    from_epoch_ms,
    minute_bucket,
    to_epoch_ms,
    utc_now,
)
from endpoint_usage.config import Settings
from endpoint_usage.models import (
    DashboardData,
    DashboardPerformance,
    EndpointStats,
    PerformanceMetrics,
    TimeRange,
)
from endpoint_usage.normalize import EndpointKey, normalize_endpoint
from endpoint_usage.store import UsageStore

logger = logging.getLogger(__name__)

# (bucket minute epoch ms -> count, read time epoch ms) -> requests per minute
ThroughputAggregator = Callable[[Mapping[int, int], int], float]

_BYTES_PER_MB = 1024 * 1024
_DASHBOARD_TOP_N = 10


def calculate_percentile(values: Sequence[float], percentile: float) -> float:
    """Nearest-rank percentile: index ceil(p/100 * n) - 1 over sorted values."""
    if not values:
        return 0.0
    ordered = sorted(values)
    index = math.ceil((percentile / 100) * len(ordered)) - 1
    index = min(max(index, 0), len(ordered) - 1)
    return float(ordered[index])


def requests_per_minute(buckets: Mapping[int, int], now_ms: int) -> float:
    """Rate over the retained window (last hour), not a raw sum.

    The window runs from the oldest retained minute through the current
    minute, so a freshly started endpoint is not diluted by empty minutes.
    """
    current = minute_bucket(now_ms)
    cutoff = now_ms - keys.THROUGHPUT_WINDOW_MS
    live = {minute: count for minute, count in buckets.items() if minute >= cutoff}
    if not live:
        return 0.0
    oldest = min(live)
    span_minutes = (current - oldest) // MS_PER_MINUTE + 1
    span_minutes = min(max(span_minutes, 1), keys.THROUGHPUT_WINDOW_MS // MS_PER_MINUTE)
    return round(sum(live.values()) / span_minutes, 2)


def _int(data: Mapping[str, str], field: str) -> int:
    try:
        return int(float(data.get(field, 0) or 0))
    except ValueError:
        return 0


def _float(data: Mapping[str, str], field: str) -> float:
    try:
        return float(data.get(field, 0) or 0)
    except ValueError:
        return 0.0


def _status_codes(data: Mapping[str, str]) -> dict[str, int]:
    codes: dict[str, int] = {}
    for field in data:
        if field.startswith(keys.STATUS_FIELD_PREFIX):
            codes[field[len(keys.STATUS_FIELD_PREFIX) :]] = _int(data, field)
    return codes


def _throughput_buckets(data: Mapping[str, str]) -> dict[int, int]:
    buckets: dict[int, int] = {}
    for field in data:
        if not field.startswith(keys.THROUGHPUT_FIELD_PREFIX):
            continue
        minute = field[len(keys.THROUGHPUT_FIELD_PREFIX) :]
        if minute.isdigit():
            buckets[int(minute)] = _int(data, field)
    return buckets


def _response_times(raw_events: Sequence[str]) -> list[float]:
    values: list[float] = []
    for raw in raw_events:
        try:
            payload = json.loads(raw)
        except ValueError:
            continue
        value = payload.get("responseTime") if isinstance(payload, dict) else None
        if isinstance(value, int | float) and not isinstance(value, bool):
            values.append(float(value))
    return values


def _average(total: float, samples: int) -> float:
    return total / samples if samples > 0 else 0.0


class StatsReader:
    """Reads endpoint statistics from the shared store."""

    def __init__(
        self,
        store: UsageStore,
        settings: Settings,
        *,
        clock: Clock = utc_now,
        throughput: ThroughputAggregator = requests_per_minute,
    ) -> None:
        self._store = store
        self._settings = settings
        self._prefix = store.key_prefix
        self._clock = clock
        self._throughput = throughput

    def _exact_key(self, family: str, method: str | None, path: str | None) -> str | None:
        if method and path:
            endpoint = normalize_endpoint(
                method, path, include_query_params=self._settings.include_query_params
            )
            return keys.family_key(self._prefix, family, endpoint)
        return None

    async def _keys(self, family: str, method: str | None, path: str | None) -> list[str]:
        exact = self._exact_key(family, method, path)
        if exact is not None:
            return [exact]
        return await self._store.scan_keys(keys.family_pattern(self._prefix, family))

    async def list_stats(
        self, method: str | None = None, path: str | None = None
    ) -> list[EndpointStats]:
        """Lifetime stats per endpoint, most requested first."""
        global_keys = await self._keys(keys.GLOBAL, method, path)
        rows = await self._store.hgetall_many(global_keys)

        stats: list[EndpointStats] = []
        for global_key, data in zip(global_keys, rows, strict=True):
            endpoint = keys.endpoint_from_key(self._prefix, keys.GLOBAL, global_key)
            if endpoint is None or not data:
                continue
            stats.append(
                EndpointStats(
                    method=endpoint.method,
                    path=endpoint.path,
                    count=_int(data, "count"),
                    first_accessed=from_epoch_ms(_int(data, "first_accessed")),
                    last_accessed=from_epoch_ms(_int(data, "last_accessed")),
                    average_response_time=_average(
                        _float(data, "total_response_time"),
                        _int(data, "response_count"),
                    ),
                    status_codes=_status_codes(data),
                )
            )

        stats.sort(key=lambda item: (-item.count, item.method, item.path))
        return stats

    async def performance_stats(
        self, method: str | None = None, path: str | None = None
    ) -> list[EndpointStats]:
        """Stats with percentiles and throughput, slowest p95 first."""
        perf_keys = await self._keys(keys.PERFORMANCE, method, path)
        endpoints = [
            keys.endpoint_from_key(self._prefix, keys.PERFORMANCE, key) for key in perf_keys
        ]
        valid = [(key, ep) for key, ep in zip(perf_keys, endpoints, strict=True) if ep]
        if not valid:
            return []

        perf_rows = await self._store.hgetall_many([key for key, _ in valid])
        global_rows = await self._store.hgetall_many(
            [keys.global_key(self._prefix, ep) for _, ep in valid]
        )
        now_ms = to_epoch_ms(self._clock())

        stats: list[EndpointStats] = []
        for (_, endpoint), data, global_data in zip(
            valid, perf_rows, global_rows, strict=True
        ):
            if not data:
                continue
            samples = _response_times(
                await self._store.lrange(keys.raw_key(self._prefix, endpoint))
            )
            stats.append(
                self._build_performance_stats(endpoint, data, global_data, samples, now_ms)
            )

        stats.sort(
            key=lambda item: (
                -(item.performance.p95_response_time if item.performance else 0.0),
                item.method,
                item.path,
            )
        )
        return stats

    def _build_performance_stats(
        self,
        endpoint: EndpointKey,
        data: Mapping[str, str],
        global_data: Mapping[str, str],
        samples: list[float],
        now_ms: int,
    ) -> EndpointStats:
        total_requests = _int(data, "total_requests")
        configured = self._settings.performance_tracking.percentiles
        percentiles = {
            p: calculate_percentile(samples, p) for p in sorted({50, 95, 99, *configured})
        }

        memory_count = _int(data, "memory_count")
        cpu_count = _int(data, "cpu_count")
        performance = PerformanceMetrics(
            p50_response_time=percentiles[50],
            p95_response_time=percentiles[95],
            p99_response_time=percentiles[99],
            percentiles={p: percentiles[p] for p in configured},
            slow_request_count=_int(data, "slow_requests"),
            error_rate=_average(_int(data, "error_requests"), total_requests),
            throughput=self._throughput(_throughput_buckets(data), now_ms),
            memory_usage=(
                _average(_float(data, "total_memory"), memory_count) / _BYTES_PER_MB
                if memory_count
                else None
            ),
            cpu_usage=(
                _average(_float(data, "total_cpu"), cpu_count) if cpu_count else None
            ),
        )
        return EndpointStats(
            method=endpoint.method,
            path=endpoint.path,
            count=total_requests,
            first_accessed=from_epoch_ms(_int(data, "first_accessed")),
            last_accessed=from_epoch_ms(_int(data, "last_accessed")),
            average_response_time=_average(
                _float(data, "total_response_time"), _int(data, "response_count")
            ),
            status_codes=_status_codes(global_data),
            performance=performance,
        )

    async def unused_endpoints(self, days_threshold: int = 30) -> list[EndpointStats]:
        """Endpoints whose last access is strictly before now - days_threshold."""
        threshold = self._clock() - timedelta(days=days_threshold)
        return [
            stat for stat in await self.list_stats() if stat.last_accessed < threshold
        ]

    async def slow_endpoints(self, threshold_ms: float = 1000.0) -> list[EndpointStats]:
        """Endpoints whose average or p95 response time exceeds the threshold."""
        return [
            stat
            for stat in await self.performance_stats()
            if stat.average_response_time > threshold_ms
            or (
                stat.performance is not None
                and stat.performance.p95_response_time > threshold_ms
            )
        ]

    async def dashboard(
        self, window_days: int = 30, slow_threshold_ms: float = 1000.0
    ) -> DashboardData:
        """Usage and performance overview for endpoints seen within the window."""
        end = self._clock()
        start = end - timedelta(days=window_days)

        all_stats = await self.list_stats()
        recent = [stat for stat in all_stats if start <= stat.last_accessed <= end]
        by_usage = sorted(recent, key=lambda item: -item.count)

        performance_by_key = {
            stat.endpoint: stat.performance
            for stat in await self.performance_stats()
            if stat.performance is not None
        }

        total_requests = sum(stat.count for stat in recent)
        weighted_latency = sum(stat.average_response_time * stat.count for stat in recent)
        total_errors = sum(stat.error_count for stat in recent)
        total_slow = 0
        peak_throughput = 0.0
        for stat in recent:
            perf = performance_by_key.get(stat.endpoint)
            if perf is None:
                continue
            total_slow += perf.slow_request_count
            peak_throughput = max(peak_throughput, perf.throughput)

        unused = await self.unused_endpoints(window_days)
        slow = await self.slow_endpoints(slow_threshold_ms)

        return DashboardData(
            total_requests=total_requests,
            unique_endpoints=len(recent),
            most_used_endpoints=by_usage[:_DASHBOARD_TOP_N],
            least_used_endpoints=list(reversed(by_usage[-_DASHBOARD_TOP_N:])),
            unused_endpoints=unused,
            slow_endpoints=slow[:_DASHBOARD_TOP_N],
            time_range=TimeRange(start=start, end=end),
            performance=DashboardPerformance(
                average_response_time=_average(weighted_latency, total_requests),
                total_slow_requests=total_slow,
                average_error_rate=_average(total_errors, total_requests),
                peak_throughput=peak_throughput,
            ),
        )
