"""Endpoint usage tracking - which endpoints are used, how often, how fast."""

from endpoint_usage._version import __version__
from endpoint_usage.config import Settings
from endpoint_usage.errors import (
    DeliveryError,
    EndpointUsageError,
    StoreUnavailableError,
)
from endpoint_usage.middleware import UsageTrackingConfig, UsageTrackingMiddleware
from endpoint_usage.models import (
    DashboardData,
    DeliveryResult,
    EndpointStats,
    ObservedRequest,
    PerformanceMetrics,
    RecordOutcome,
    RouteRecord,
    UsageEvent,
    UsageReport,
)
from endpoint_usage.normalize import EndpointKey, normalize_endpoint
from endpoint_usage.notifications import NotificationDispatcher
from endpoint_usage.recorder import UsageRecorder
from endpoint_usage.report import ReportGenerator
from endpoint_usage.routes import (
    RouteRegistry,
    RouteSource,
    StarletteRouteSource,
    StaticRouteSource,
)
from endpoint_usage.scheduler import ReportScheduler
from endpoint_usage.stats import StatsReader
from endpoint_usage.store import UsageStore
from endpoint_usage.tracker import EndpointUsageTracker

__all__ = [
    "DashboardData",
    "DeliveryError",
    "DeliveryResult",
    "EndpointKey",
    "EndpointStats",
    "EndpointUsageError",
    "EndpointUsageTracker",
    "NotificationDispatcher",
    "ObservedRequest",
    "PerformanceMetrics",
    "RecordOutcome",
    "ReportGenerator",
    "ReportScheduler",
    "RouteRecord",
    "RouteRegistry",
    "RouteSource",
    "Settings",
    "StarletteRouteSource",
    "StaticRouteSource",
    "StatsReader",
    "StoreUnavailableError",
    "UsageEvent",
    "UsageRecorder",
    "UsageReport",
    "UsageStore",
    "UsageTrackingConfig",
    "UsageTrackingMiddleware",
    "__version__",
    "normalize_endpoint",
]
