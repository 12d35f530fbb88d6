"""Report, scheduling and maintenance commands."""

import asyncio
import json

import typer

from endpoint_usage.cli._console import (
    console,
    dim,
    error,
    nl,
    setup_logging,
    success,
    warning,
)
from endpoint_usage.cli._display import report_panel
from endpoint_usage.cli._runtime import load_settings, run_with_tracker
from endpoint_usage.cli.stats import PrefixOption, RedisUrlOption
from endpoint_usage.logging import configure_logging
from endpoint_usage.models import DeliveryResult, UsageReport
from endpoint_usage.tracker import EndpointUsageTracker


def report(
    days: int | None = typer.Option(
        None, "--days", "-d", help="Unused threshold (default: reporter setting)"
    ),
    send: bool = typer.Option(
        False, "--send", help="Deliver to configured channels even if nothing is unused"
    ),
    redis_url: str | None = RedisUrlOption,
    prefix: str | None = PrefixOption,
    as_json: bool = typer.Option(False, "--json", help="Print the report as JSON"),
) -> None:
    """Generate a usage report once."""
    settings = load_settings(redis_url, prefix)
    reporter = settings.reporter
    if days is not None:
        reporter = reporter.model_copy(update={"days_threshold": days})

    async def _action(
        tracker: EndpointUsageTracker,
    ) -> tuple[UsageReport, list[DeliveryResult]]:
        generated = await tracker.reports.generate(reporter)
        results = await tracker.dispatcher.dispatch(generated) if send else []
        return generated, results

    generated, results = run_with_tracker(settings, _action)

    if as_json:
        console.print_json(json.dumps(generated.to_payload(), default=str))
    else:
        nl()
        console.print(report_panel(generated))

    for result in results:
        if result.delivered:
            success(f"Delivered via {result.channel}")
        else:
            error(f"{result.channel}: {result.error}")


def schedule(
    redis_url: str | None = RedisUrlOption,
    prefix: str | None = PrefixOption,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Run the report scheduler until interrupted."""
    settings = load_settings(redis_url, prefix)
    if settings.log_format == "json":
        configure_logging(log_format="json", debug=verbose or settings.debug)
    else:
        setup_logging(verbose=verbose or settings.debug)

    if not settings.reporter.enabled:
        warning("Reporter disabled; enabling it for this run")
        settings = settings.model_copy(
            update={"reporter": settings.reporter.model_copy(update={"enabled": True})}
        )

    async def _action(tracker: EndpointUsageTracker) -> None:
        await tracker.scheduler.start()
        try:
            await asyncio.Event().wait()
        finally:
            await tracker.scheduler.stop()

    try:
        run_with_tracker(settings, _action)
    except KeyboardInterrupt:
        dim("Stopped")


def clear(
    older_than: int | None = typer.Option(
        None, "--older-than", help="Only delete daily records older than N days"
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    redis_url: str | None = RedisUrlOption,
    prefix: str | None = PrefixOption,
) -> None:
    """Delete tracked data."""
    settings = load_settings(redis_url, prefix)
    if not older_than and not yes:
        typer.confirm(
            f"Delete ALL keys under '{settings.key_prefix}:'?", abort=True
        )

    deleted = run_with_tracker(settings, lambda t: t.recorder.clear(older_than))
    success(f"Deleted {deleted} keys")
