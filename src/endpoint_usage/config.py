"""Endpoint usage configuration.

Every option can be set through environment variables with the
ENDPOINT_USAGE_ prefix; nested options use a double underscore, e.g.
ENDPOINT_USAGE_REDIS__HOST or ENDPOINT_USAGE_REPORTER__INTERVAL_HOURS.
Components receive a Settings (or one of its sections) at construction.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from endpoint_usage._version import __version__
from endpoint_usage.keys import DEFAULT_KEY_PREFIX


class RedisSettings(BaseModel):
    """Location of the shared key-value store."""

    host: str = "localhost"
    port: int = 6379
    password: str | None = None
    db: int = 0
    url: str | None = None

    @property
    def effective_url(self) -> str:
        """Explicit URL wins, otherwise build one from host/port/db."""
        if self.url:
            return self.url
        auth = f":{self.password}@" if self.password else ""
        return f"redis://{auth}{self.host}:{self.port}/{self.db}"


class PerformanceTrackingSettings(BaseModel):
    enabled: bool = False
    slow_threshold_ms: float = 1000.0
    percentiles: list[int] = Field(default_factory=lambda: [50, 95, 99])
    memory_tracking: bool = False
    cpu_tracking: bool = False

    @field_validator("percentiles")
    @classmethod
    def _check_percentiles(cls, value: list[int]) -> list[int]:
        for item in value:
            if not 0 < item <= 100:
                raise ValueError(f"percentile {item} outside (0, 100]")
        return sorted(set(value))


class PerformanceAlertSettings(BaseModel):
    enabled: bool = True
    slow_endpoint_threshold_ms: float = 2000.0
    error_rate_threshold: float = 0.05
    # Recognized for compatibility; no alert consumes it yet.
    throughput_drop_threshold: float = 0.5


class WebhookSettings(BaseModel):
    url: str
    headers: dict[str, str] = Field(default_factory=dict)


class SlackSettings(BaseModel):
    webhook_url: str
    channel: str | None = None


class SmtpSettings(BaseModel):
    host: str
    port: int = 587
    secure: bool = False
    username: str | None = None
    password: str | None = None


class EmailSettings(BaseModel):
    smtp: SmtpSettings
    sender: str
    recipients: list[str]
    subject: str = "Endpoint Usage Report"


class NotificationSettings(BaseModel):
    webhook: WebhookSettings | None = None
    slack: SlackSettings | None = None
    email: EmailSettings | None = None
    timeout_seconds: float = 5.0


class HtmlReportSettings(BaseModel):
    enabled: bool = False
    output_path: str | None = None


class ReporterSettings(BaseModel):
    """Scheduled report generation and delivery."""

    enabled: bool = False
    interval_hours: float = 24.0
    days_threshold: int = 30
    performance_alerts: PerformanceAlertSettings = Field(
        default_factory=PerformanceAlertSettings
    )
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    html_report: HtmlReportSettings = Field(default_factory=HtmlReportSettings)

    @field_validator("interval_hours")
    @classmethod
    def _check_interval(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("interval_hours must be positive")
        return value

    @property
    def interval_seconds(self) -> float:
        return self.interval_hours * 3600


class Settings(BaseSettings):
    """Endpoint usage tracker configuration."""

    model_config = SettingsConfigDict(
        env_prefix="ENDPOINT_USAGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    redis: RedisSettings = Field(default_factory=RedisSettings)
    key_prefix: str = DEFAULT_KEY_PREFIX
    tracking_enabled: bool = True
    exclude_paths: list[str] = Field(default_factory=list)
    include_query_params: bool = False
    # Reserved for batched writes; every event is written immediately today.
    aggregation_interval: int = 60
    raw_sample_limit: int = Field(default=1000, ge=1)

    performance_tracking: PerformanceTrackingSettings = Field(
        default_factory=PerformanceTrackingSettings
    )
    reporter: ReporterSettings = Field(default_factory=ReporterSettings)

    debug: bool = False
    log_format: Literal["text", "json"] = "text"

    version: str = __version__

    @field_validator("key_prefix")
    @classmethod
    def _strip_prefix(cls, value: str) -> str:
        value = value.strip().rstrip(":")
        if not value:
            raise ValueError("key_prefix must not be empty")
        return value

    def should_track(self, path: str) -> bool:
        """False when tracking is off or the raw path hits an excluded prefix."""
        if not self.tracking_enabled:
            return False
        return not any(path.startswith(prefix) for prefix in self.exclude_paths)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance (CLI entry point only)."""
    return Settings()
