"""Wiring of store, recorder, reader, registry and reporter from one Settings."""

from __future__ import annotations

import logging
from typing import Any

from endpoint_usage.clock import Clock, utc_now
from endpoint_usage.config import Settings
from endpoint_usage.notifications import NotificationDispatcher
from endpoint_usage.recorder import UsageRecorder
from endpoint_usage.report import ReportGenerator
from endpoint_usage.routes import RouteRegistry
from endpoint_usage.scheduler import ReportScheduler
from endpoint_usage.stats import StatsReader
from endpoint_usage.store import UsageStore

logger = logging.getLogger(__name__)


class EndpointUsageTracker:
    """Explicitly constructed bundle of the tracking components.

    Example:
        tracker = EndpointUsageTracker.from_settings(Settings())
        app.add_middleware(UsageTrackingMiddleware, recorder=tracker.recorder)
        await tracker.scheduler.start()
    """

    def __init__(
        self,
        settings: Settings,
        store: UsageStore,
        *,
        dispatcher: NotificationDispatcher | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.settings = settings
        self.store = store
        self.stats = StatsReader(store, settings, clock=clock)
        self.routes = RouteRegistry(store, settings, self.stats, clock=clock)
        self.recorder = UsageRecorder(store, settings, routes=self.routes, clock=clock)
        self.reports = ReportGenerator(
            self.stats, self.routes, settings.reporter, clock=clock
        )
        self.dispatcher = dispatcher or NotificationDispatcher.from_settings(
            settings.reporter
        )
        self.scheduler = ReportScheduler(self.reports, self.dispatcher, settings.reporter)

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> EndpointUsageTracker:
        return cls(settings, UsageStore.from_settings(settings), **kwargs)

    async def close(self) -> None:
        """Stop the schedule, flush pending writes and close the store."""
        await self.scheduler.stop()
        await self.recorder.drain(timeout=5.0)
        await self.store.close()
        logger.debug("Endpoint usage tracker closed")
