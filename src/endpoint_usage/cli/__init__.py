"""Endpoint usage CLI."""

import typer

from endpoint_usage.cli._console import console
from endpoint_usage.cli.report import clear, report, schedule
from endpoint_usage.cli.stats import dashboard, performance, routes, slow, stats, unused

app = typer.Typer(
    name="endpoint-usage",
    help="Inspect endpoint usage and generate stale-endpoint reports.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


def _version_callback(value: bool) -> None:
    if value:
        from endpoint_usage import __version__

        console.print(f"[bold]endpoint-usage[/bold] [dim]{__version__}[/dim]")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        callback=_version_callback,
        is_eager=True,
        help="Show version",
    ),
) -> None:
    """Endpoint usage analytics backed by Redis."""


# Register commands
app.command()(stats)
app.command()(performance)
app.command()(unused)
app.command()(slow)
app.command()(dashboard)
app.command()(routes)
app.command()(report)
app.command()(schedule)
app.command()(clear)
