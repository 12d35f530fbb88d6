"""Usage report generation and recommendation rules."""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from datetime import timedelta

from endpoint_usage.clock import MS_PER_DAY, Clock, to_epoch_ms, utc_now
from endpoint_usage.config import PerformanceAlertSettings, ReporterSettings
from endpoint_usage.models import (
    EndpointStats,
    HighErrorRateEndpoint,
    PerformanceIssues,
    ReportSummary,
    SlowEndpoint,
    TimeRange,
    UnusedEndpoint,
    UsageReport,
)
from endpoint_usage.routes import RouteRegistry
from endpoint_usage.stats import StatsReader

logger = logging.getLogger(__name__)

TOP_N = 10
VERY_OLD_DAYS = 90
CLEANUP_UNUSED_COUNT = 5
CRITICAL_RESPONSE_MS = 5000.0


def unused_percentage(unused: int, total: int) -> int:
    """Share of unused routes as a whole percent, half rounded up."""
    if total <= 0:
        return 0
    return math.floor(unused / total * 100 + 0.5)


def build_recommendations(
    unused: Sequence[UnusedEndpoint],
    slow: Sequence[SlowEndpoint],
    high_error_rate: Sequence[HighErrorRateEndpoint],
) -> list[str]:
    """Evaluate every rule in a fixed order and keep those that apply."""
    recommendations: list[str] = []

    if not unused:
        recommendations.append("All endpoints are actively being used. 👍")
    else:
        very_old = [e for e in unused if e.days_since_last_use > VERY_OLD_DAYS]
        if very_old:
            recommendations.append(
                f"{len(very_old)} endpoints haven't been used for 90+ days. "
                "Consider removing them."
            )

        never_used = [e for e in unused if e.total_requests == 0]
        if never_used:
            recommendations.append(
                f"{len(never_used)} endpoints have never been used. "
                "Should be tested or removed."
            )

        if len(unused) > CLEANUP_UNUSED_COUNT:
            recommendations.append(
                "Many unused endpoints detected. API cleanup recommended."
            )

    if slow:
        recommendations.append(
            f"{len(slow)} endpoints have slow response times. "
            "Performance optimization needed."
        )
        very_slow = [e for e in slow if e.average_response_time > CRITICAL_RESPONSE_MS]
        if very_slow:
            recommendations.append(
                f"{len(very_slow)} endpoints take >5s on average. "
                "Critical performance issue."
            )

    if high_error_rate:
        recommendations.append(
            f"{len(high_error_rate)} endpoints have high error rates. "
            "Investigation required."
        )

    return recommendations


class ReportGenerator:
    """Combines registry and stats state into a UsageReport. Reads only."""

    def __init__(
        self,
        stats: StatsReader,
        routes: RouteRegistry,
        settings: ReporterSettings,
        *,
        clock: Clock = utc_now,
    ) -> None:
        self._stats = stats
        self._routes = routes
        self._settings = settings
        self._clock = clock

    async def generate(self, settings: ReporterSettings | None = None) -> UsageReport:
        """Build a report; ``settings`` overrides the constructor settings for one call."""
        settings = settings or self._settings
        days_threshold = settings.days_threshold
        now = self._clock()
        now_ms = to_epoch_ms(now)

        routes = await self._routes.list_routes()
        unused_routes = await self._routes.find_unused_routes(days_threshold)
        usage_by_key = {stat.endpoint: stat for stat in await self._stats.list_stats()}
        dashboard = await self._stats.dashboard(days_threshold)
        performance = await self._stats.performance_stats()

        unused: list[UnusedEndpoint] = []
        for route in unused_routes:
            stat = usage_by_key.get(route.endpoint)
            if stat is None:
                days_since = days_threshold + 1
            else:
                days_since = (now_ms - to_epoch_ms(stat.last_accessed)) // MS_PER_DAY
            unused.append(
                UnusedEndpoint(
                    method=route.method,
                    path=route.path,
                    discovered_at=route.discovered_at,
                    days_since_last_use=days_since,
                    total_requests=stat.count if stat else 0,
                )
            )

        slow = _slow_endpoints(performance, settings.performance_alerts)
        high_error_rate = _high_error_rate_endpoints(
            performance, settings.performance_alerts
        )

        total_routes = len(routes)
        summary = ReportSummary(
            total_routes=total_routes,
            active_routes=total_routes - len(unused),
            unused_routes=len(unused),
            unused_percentage=unused_percentage(len(unused), total_routes),
            average_response_time=dashboard.performance.average_response_time,
            slow_endpoints=len(slow),
            high_error_rate_endpoints=len(high_error_rate),
        )

        report = UsageReport(
            generated_at=now,
            time_range=TimeRange(start=now - timedelta(days=days_threshold), end=now),
            summary=summary,
            unused_endpoints=unused,
            top_unused_endpoints=sorted(
                unused, key=lambda e: e.days_since_last_use, reverse=True
            )[:TOP_N],
            performance_issues=PerformanceIssues(
                slow_endpoints=slow[:TOP_N],
                high_error_rate_endpoints=high_error_rate[:TOP_N],
            ),
            recommendations=build_recommendations(unused, slow, high_error_rate),
        )
        logger.debug(
            "Generated usage report: %s routes, %s unused, %s slow, %s erroring",
            total_routes,
            len(unused),
            len(slow),
            len(high_error_rate),
        )
        return report


def _slow_endpoints(
    performance: Sequence[EndpointStats], alerts: PerformanceAlertSettings
) -> list[SlowEndpoint]:
    if not alerts.enabled:
        return []
    return [
        SlowEndpoint(
            method=stat.method,
            path=stat.path,
            average_response_time=stat.average_response_time,
            p95_response_time=(
                stat.performance.p95_response_time if stat.performance else 0.0
            ),
        )
        for stat in performance
        if stat.average_response_time > alerts.slow_endpoint_threshold_ms
    ]


def _high_error_rate_endpoints(
    performance: Sequence[EndpointStats], alerts: PerformanceAlertSettings
) -> list[HighErrorRateEndpoint]:
    if not alerts.enabled:
        return []
    return [
        HighErrorRateEndpoint(
            method=stat.method,
            path=stat.path,
            error_rate=stat.performance.error_rate,
            total_requests=stat.count,
        )
        for stat in performance
        if stat.performance is not None
        and stat.performance.error_rate > alerts.error_rate_threshold
    ]
