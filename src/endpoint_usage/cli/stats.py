"""Read-only inspection commands."""

import json

import typer

from endpoint_usage.cli._console import console, dim, nl
from endpoint_usage.cli._display import (
    dashboard_panel,
    performance_table,
    routes_table,
    stats_table,
)
from endpoint_usage.cli._runtime import load_settings, run_with_tracker

RedisUrlOption = typer.Option(
    None, "--redis-url", help="Redis URL (overrides ENDPOINT_USAGE_REDIS__URL)"
)
PrefixOption = typer.Option(
    None, "--prefix", help="Key prefix (overrides ENDPOINT_USAGE_KEY_PREFIX)"
)
JsonOption = typer.Option(False, "--json", help="Print JSON instead of a table")


def _print_json(payload: object) -> None:
    console.print_json(json.dumps(payload, default=str))


def stats(
    method: str | None = typer.Option(None, "--method", "-m", help="HTTP method"),
    path: str | None = typer.Option(None, "--path", "-p", help="Request path"),
    redis_url: str | None = RedisUrlOption,
    prefix: str | None = PrefixOption,
    as_json: bool = JsonOption,
) -> None:
    """Show lifetime usage per endpoint, most requested first."""
    settings = load_settings(redis_url, prefix)
    rows = run_with_tracker(settings, lambda t: t.stats.list_stats(method, path))
    if as_json:
        _print_json([row.to_payload() for row in rows])
        return
    if not rows:
        dim("No usage recorded yet")
        return
    nl()
    console.print(stats_table(rows))


def performance(
    method: str | None = typer.Option(None, "--method", "-m", help="HTTP method"),
    path: str | None = typer.Option(None, "--path", "-p", help="Request path"),
    redis_url: str | None = RedisUrlOption,
    prefix: str | None = PrefixOption,
    as_json: bool = JsonOption,
) -> None:
    """Show percentiles, error rate and throughput, slowest p95 first."""
    settings = load_settings(redis_url, prefix)
    rows = run_with_tracker(settings, lambda t: t.stats.performance_stats(method, path))
    if as_json:
        _print_json([row.to_payload() for row in rows])
        return
    if not rows:
        dim("No performance data recorded (is performance tracking enabled?)")
        return
    nl()
    console.print(performance_table(rows))


def unused(
    days: int = typer.Option(30, "--days", "-d", help="Days without traffic"),
    redis_url: str | None = RedisUrlOption,
    prefix: str | None = PrefixOption,
    as_json: bool = JsonOption,
) -> None:
    """List endpoints not accessed within the last N days."""
    settings = load_settings(redis_url, prefix)
    rows = run_with_tracker(settings, lambda t: t.stats.unused_endpoints(days))
    if as_json:
        _print_json([row.to_payload() for row in rows])
        return
    if not rows:
        dim(f"Every tracked endpoint was used in the last {days} days")
        return
    nl()
    console.print(stats_table(rows, title=f"Unused for {days}+ days"))


def slow(
    threshold_ms: float = typer.Option(
        1000.0, "--threshold-ms", "-t", help="Average or p95 response time limit"
    ),
    redis_url: str | None = RedisUrlOption,
    prefix: str | None = PrefixOption,
    as_json: bool = JsonOption,
) -> None:
    """List endpoints whose average or p95 response time exceeds a threshold."""
    settings = load_settings(redis_url, prefix)
    rows = run_with_tracker(settings, lambda t: t.stats.slow_endpoints(threshold_ms))
    if as_json:
        _print_json([row.to_payload() for row in rows])
        return
    if not rows:
        dim(f"No endpoint slower than {threshold_ms:.0f}ms")
        return
    nl()
    console.print(performance_table(rows))


def dashboard(
    days: int = typer.Option(30, "--days", "-d", help="Window in days"),
    redis_url: str | None = RedisUrlOption,
    prefix: str | None = PrefixOption,
    as_json: bool = JsonOption,
) -> None:
    """Summarize usage and performance over a window."""
    settings = load_settings(redis_url, prefix)
    data = run_with_tracker(settings, lambda t: t.stats.dashboard(days))
    if as_json:
        _print_json(data.to_payload())
        return
    nl()
    console.print(dashboard_panel(data))
    if data.most_used_endpoints:
        console.print(stats_table(data.most_used_endpoints, title="Most used"))
    if data.least_used_endpoints:
        console.print(stats_table(data.least_used_endpoints, title="Least used"))


def routes(
    redis_url: str | None = RedisUrlOption,
    prefix: str | None = PrefixOption,
    as_json: bool = JsonOption,
) -> None:
    """List registered routes."""
    settings = load_settings(redis_url, prefix)
    rows = run_with_tracker(settings, lambda t: t.routes.list_routes())
    if as_json:
        _print_json([row.to_payload() for row in rows])
        return
    if not rows:
        dim("No routes registered")
        return
    nl()
    console.print(routes_table(rows))
