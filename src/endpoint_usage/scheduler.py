"""Periodic report generation and delivery.

A tick runs immediately on start and then every ``interval_hours``. Ticks
are single-flight per scheduler; a failed tick is logged and the schedule
carries on.
"""

from __future__ import annotations

import asyncio
import logging

from endpoint_usage.config import ReporterSettings
from endpoint_usage.models import DeliveryResult
from endpoint_usage.notifications import NotificationDispatcher
from endpoint_usage.report import ReportGenerator

logger = logging.getLogger(__name__)


class ReportScheduler:
    """Runs ReportGenerator on an interval and dispatches non-empty reports."""

    def __init__(
        self,
        generator: ReportGenerator,
        dispatcher: NotificationDispatcher,
        settings: ReporterSettings,
    ) -> None:
        self._generator = generator
        self._dispatcher = dispatcher
        self._settings = settings
        self._interval_seconds = settings.interval_seconds
        self._task: asyncio.Task[None] | None = None
        self._tick_lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the schedule; the first tick fires immediately."""
        if not self._settings.enabled or self.running:
            return
        self._task = asyncio.create_task(self._loop())
        logger.info(
            "Automatic reporting started (interval=%sh, threshold=%sd)",
            self._settings.interval_hours,
            self._settings.days_threshold,
        )

    async def stop(self) -> None:
        """Cancel the schedule. start() may be called again afterwards."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Automatic reporting stopped")

    async def _loop(self) -> None:
        while True:
            await self.tick()
            await asyncio.sleep(self._interval_seconds)

    async def tick(self) -> list[DeliveryResult] | None:
        """Generate one report and deliver it if any endpoint is unused.

        Returns the per-channel results, or None when the tick was skipped,
        suppressed or failed.
        """
        if self._tick_lock.locked():
            logger.warning("Previous report tick still running, skipping")
            return None

        async with self._tick_lock:
            try:
                report = await self._generator.generate()
            except Exception:
                logger.exception("Error while generating usage report")
                return None

            if not report.unused_endpoints:
                logger.info("No unused endpoints found, report not sent")
                return None

            logger.info("%s unused endpoints detected", len(report.unused_endpoints))
            results = await self._dispatcher.dispatch(report)
            failed = [r.channel for r in results if not r.delivered]
            if failed:
                logger.warning("Report delivery failed for: %s", ", ".join(failed))
            return results
