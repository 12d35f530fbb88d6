"""Typed payloads for events, statistics and reports.

Models serialize with camelCase aliases so stored raw events and outbound
report payloads keep the field names other tracker processes expect.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from endpoint_usage.normalize import EndpointKey


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_payload(self) -> dict[str, object]:
        """JSON-safe dict with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)


class ObservedRequest(_CamelModel):
    """One request as captured by an HTTP adapter; the timestamp is assigned on ingest."""

    model_config = ConfigDict(frozen=True)

    method: str
    path: str
    status_code: int
    response_time: float | None = None
    user_agent: str | None = None
    ip: str | None = None
    memory_usage: float | None = None
    cpu_usage: float | None = None


class UsageEvent(_CamelModel):
    """A normalized, timestamped request observation."""

    model_config = ConfigDict(frozen=True)

    timestamp: int
    method: str
    path: str
    status_code: int
    response_time: float | None = None
    user_agent: str | None = None
    ip: str | None = None
    memory_usage: float | None = None
    cpu_usage: float | None = None

    @property
    def endpoint(self) -> EndpointKey:
        return EndpointKey(method=self.method, path=self.path)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


class RecordOutcome(StrEnum):
    RECORDED = "recorded"
    SKIPPED = "skipped"
    FAILED = "failed"


class PerformanceMetrics(_CamelModel):
    p50_response_time: float = 0.0
    p95_response_time: float = 0.0
    p99_response_time: float = 0.0
    percentiles: dict[int, float] = Field(default_factory=dict)
    slow_request_count: int = 0
    error_rate: float = 0.0
    throughput: float = 0.0
    memory_usage: float | None = None
    cpu_usage: float | None = None


class EndpointStats(_CamelModel):
    method: str
    path: str
    count: int
    first_accessed: datetime
    last_accessed: datetime
    average_response_time: float = 0.0
    status_codes: dict[str, int] = Field(default_factory=dict)
    performance: PerformanceMetrics | None = None

    @property
    def endpoint(self) -> EndpointKey:
        return EndpointKey(method=self.method, path=self.path)

    @property
    def error_count(self) -> int:
        total = 0
        for code, count in self.status_codes.items():
            if code.isdigit() and int(code) >= 400:
                total += count
        return total


class TimeRange(_CamelModel):
    start: datetime
    end: datetime


class DashboardPerformance(_CamelModel):
    average_response_time: float = 0.0
    total_slow_requests: int = 0
    average_error_rate: float = 0.0
    peak_throughput: float = 0.0


class DashboardData(_CamelModel):
    total_requests: int
    unique_endpoints: int
    most_used_endpoints: list[EndpointStats]
    least_used_endpoints: list[EndpointStats]
    unused_endpoints: list[EndpointStats]
    slow_endpoints: list[EndpointStats]
    time_range: TimeRange
    performance: DashboardPerformance


class RouteRecord(_CamelModel):
    method: str
    path: str
    discovered_at: datetime

    @property
    def endpoint(self) -> EndpointKey:
        return EndpointKey(method=self.method, path=self.path)


class UnusedEndpoint(_CamelModel):
    method: str
    path: str
    discovered_at: datetime | None = None
    days_since_last_use: int
    total_requests: int


class SlowEndpoint(_CamelModel):
    method: str
    path: str
    average_response_time: float
    p95_response_time: float


class HighErrorRateEndpoint(_CamelModel):
    method: str
    path: str
    error_rate: float
    total_requests: int


class PerformanceIssues(_CamelModel):
    slow_endpoints: list[SlowEndpoint] = Field(default_factory=list)
    high_error_rate_endpoints: list[HighErrorRateEndpoint] = Field(
        default_factory=list
    )


class ReportSummary(_CamelModel):
    total_routes: int
    active_routes: int
    unused_routes: int
    unused_percentage: int
    average_response_time: float
    slow_endpoints: int
    high_error_rate_endpoints: int


class UsageReport(_CamelModel):
    """Immutable snapshot produced by one report generation."""

    model_config = ConfigDict(frozen=True)

    generated_at: datetime
    time_range: TimeRange
    summary: ReportSummary
    unused_endpoints: list[UnusedEndpoint]
    top_unused_endpoints: list[UnusedEndpoint]
    performance_issues: PerformanceIssues
    recommendations: list[str]


class DeliveryResult(_CamelModel):
    channel: str
    delivered: bool
    error: str | None = None
