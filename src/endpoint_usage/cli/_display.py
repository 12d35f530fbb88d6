"""Rich renderers for stats and reports."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

from rich.box import ROUNDED
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from endpoint_usage.models import (
    DashboardData,
    EndpointStats,
    RouteRecord,
    UsageReport,
)


def _when(value: datetime) -> str:
    return value.strftime("%Y-%m-%d %H:%M")


def _ms(value: float) -> str:
    return f"{value:.0f}ms"


def stats_table(stats: Sequence[EndpointStats], *, title: str = "Endpoints") -> Table:
    table = Table(title=title, box=ROUNDED, title_justify="left")
    table.add_column("Method", style="bold")
    table.add_column("Path")
    table.add_column("Requests", justify="right")
    table.add_column("Avg", justify="right")
    table.add_column("Last accessed", style="dim")
    for stat in stats:
        table.add_row(
            stat.method,
            stat.path,
            str(stat.count),
            _ms(stat.average_response_time),
            _when(stat.last_accessed),
        )
    return table


def performance_table(stats: Sequence[EndpointStats]) -> Table:
    table = Table(title="Performance", box=ROUNDED, title_justify="left")
    table.add_column("Method", style="bold")
    table.add_column("Path")
    table.add_column("Requests", justify="right")
    table.add_column("p50", justify="right")
    table.add_column("p95", justify="right")
    table.add_column("p99", justify="right")
    table.add_column("Errors", justify="right")
    table.add_column("Req/min", justify="right")
    for stat in stats:
        perf = stat.performance
        if perf is None:
            continue
        table.add_row(
            stat.method,
            stat.path,
            str(stat.count),
            _ms(perf.p50_response_time),
            _ms(perf.p95_response_time),
            _ms(perf.p99_response_time),
            f"{perf.error_rate:.1%}",
            f"{perf.throughput:.1f}",
        )
    return table


def routes_table(routes: Sequence[RouteRecord]) -> Table:
    table = Table(title="Routes", box=ROUNDED, title_justify="left")
    table.add_column("Method", style="bold")
    table.add_column("Path")
    table.add_column("Discovered", style="dim")
    for route in sorted(routes, key=lambda r: (r.path, r.method)):
        table.add_row(route.method, route.path, _when(route.discovered_at))
    return table


def dashboard_panel(data: DashboardData) -> Panel:
    content = Text()
    content.append(f"{data.total_requests}", style="bold")
    content.append(" requests across ", style="dim")
    content.append(f"{data.unique_endpoints}", style="bold")
    content.append(" endpoints\n", style="dim")
    content.append("avg response ", style="dim")
    content.append(_ms(data.performance.average_response_time))
    content.append(" · error rate ", style="dim")
    content.append(f"{data.performance.average_error_rate:.1%}")
    content.append(" · slow requests ", style="dim")
    content.append(str(data.performance.total_slow_requests))
    content.append(" · peak ", style="dim")
    content.append(f"{data.performance.peak_throughput:.1f} req/min")
    return Panel(
        content,
        title=(
            f"[bold]Dashboard[/bold] [dim]{_when(data.time_range.start)} → "
            f"{_when(data.time_range.end)}[/dim]"
        ),
        title_align="left",
        border_style="dim",
        box=ROUNDED,
        padding=(0, 1),
    )


def report_panel(report: UsageReport) -> Panel:
    summary = report.summary
    lines = Text()
    lines.append(
        f"{summary.total_routes} routes · {summary.active_routes} active · "
        f"{summary.unused_routes} unused ({summary.unused_percentage}%)\n"
    )
    lines.append(
        f"avg response {_ms(summary.average_response_time)} · "
        f"{summary.slow_endpoints} slow · "
        f"{summary.high_error_rate_endpoints} high error rate\n",
        style="dim",
    )
    for endpoint in report.top_unused_endpoints:
        lines.append(f"\n  {endpoint.method} {endpoint.path}", style="yellow")
        lines.append(
            f"  {endpoint.days_since_last_use}d · {endpoint.total_requests} requests",
            style="dim",
        )
    if report.recommendations:
        lines.append("\n")
    for recommendation in report.recommendations:
        lines.append(f"\n  → {recommendation}")
    return Panel(
        lines,
        title="[bold]Endpoint Usage Report[/bold]",
        title_align="left",
        border_style="dim",
        box=ROUNDED,
        padding=(0, 1),
    )
