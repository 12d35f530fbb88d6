from __future__ import annotations

import asyncio
import importlib
from pathlib import Path
from typing import Any

import pytest
import typer
from fakeredis import FakeServer
from fakeredis.aioredis import FakeRedis
from rich.table import Table
from typer.testing import CliRunner

from endpoint_usage.cli import _version_callback, app
from endpoint_usage.config import (
    HtmlReportSettings,
    PerformanceTrackingSettings,
    ReporterSettings,
    Settings,
)
from endpoint_usage.models import ObservedRequest
from endpoint_usage.routes import StaticRouteSource
from endpoint_usage.store import UsageStore
from endpoint_usage.tracker import EndpointUsageTracker
from tests._fixtures.broken import BrokenRedis

runtime_module = importlib.import_module("endpoint_usage.cli._runtime")
stats_module = importlib.import_module("endpoint_usage.cli.stats")
report_module = importlib.import_module("endpoint_usage.cli.report")

CLI_PREFIX = "cli_usage"
DEFAULT_TARGET: dict[str, Any] = {"redis_url": None, "prefix": None}


@pytest.fixture
def server() -> FakeServer:
    return FakeServer()


@pytest.fixture
def cli_settings(monkeypatch, server: FakeServer, tmp_path: Path) -> Settings:
    settings = Settings(
        _env_file=None,
        key_prefix=CLI_PREFIX,
        performance_tracking=PerformanceTrackingSettings(enabled=True),
        reporter=ReporterSettings(
            html_report=HtmlReportSettings(
                enabled=True, output_path=str(tmp_path / "report.html")
            )
        ),
    )
    monkeypatch.setattr(runtime_module, "get_settings", lambda: settings)
    monkeypatch.setattr(
        UsageStore,
        "from_settings",
        classmethod(
            lambda cls, s: cls(
                FakeRedis(server=server, decode_responses=True), s.key_prefix
            )
        ),
    )
    return settings


def _seed(
    server: FakeServer,
    settings: Settings,
    requests: list[tuple[str, str, int, float]],
    routes: list[tuple[str, str]] | None = None,
) -> None:
    async def _main() -> None:
        client = FakeRedis(server=server, decode_responses=True)
        store = UsageStore(client, settings.key_prefix)
        tracker = EndpointUsageTracker(settings, store)
        if routes:
            await tracker.routes.discover(StaticRouteSource(routes))
        for method, path, status_code, response_time in requests:
            await tracker.recorder.track(
                ObservedRequest(
                    method=method,
                    path=path,
                    status_code=status_code,
                    response_time=response_time,
                )
            )
        await tracker.close()

    asyncio.run(_main())


def _capture_json(monkeypatch, module: Any) -> list[Any]:
    payloads: list[Any] = []
    monkeypatch.setattr(module, "_print_json", payloads.append)
    return payloads


def test_cli_app_help_and_version() -> None:
    runner = CliRunner()
    help_result = runner.invoke(app, ["--help"])
    assert help_result.exit_code == 0
    assert "dashboard" in help_result.stdout
    assert "report" in help_result.stdout

    version_result = runner.invoke(app, ["--version"])
    assert version_result.exit_code == 0
    assert "endpoint-usage" in version_result.stdout


def test_version_callback_noop_when_false() -> None:
    assert _version_callback(False) is None


def test_stats_json_and_filters(
    monkeypatch, server: FakeServer, cli_settings: Settings
) -> None:
    _seed(
        server,
        cli_settings,
        [
            ("GET", "/users/1", 200, 100.0),
            ("GET", "/users/2", 200, 300.0),
            ("POST", "/orders", 201, 50.0),
        ],
    )
    payloads = _capture_json(monkeypatch, stats_module)

    stats_module.stats(method=None, path=None, **DEFAULT_TARGET, as_json=True)
    stats_module.stats(
        method="POST", path="/orders", **DEFAULT_TARGET, as_json=True
    )

    everything, filtered = payloads
    assert [(row["path"], row["count"]) for row in everything] == [
        ("/users/:id", 2),
        ("/orders", 1),
    ]
    assert everything[0]["averageResponseTime"] == 200.0
    assert [row["method"] for row in filtered] == ["POST"]


def test_stats_with_empty_store(monkeypatch, cli_settings: Settings) -> None:
    messages: list[str] = []
    monkeypatch.setattr(stats_module, "dim", messages.append)

    stats_module.stats(method=None, path=None, **DEFAULT_TARGET, as_json=False)
    stats_module.routes(**DEFAULT_TARGET, as_json=False)

    assert messages == ["No usage recorded yet", "No routes registered"]


def test_tables_are_rendered(
    monkeypatch, server: FakeServer, cli_settings: Settings
) -> None:
    _seed(server, cli_settings, [("GET", "/search", 200, 1500.0)])
    rendered: list[object] = []
    monkeypatch.setattr(
        stats_module.console,
        "print",
        lambda *args, **_kwargs: rendered.append(args[0] if args else ""),
    )
    monkeypatch.setattr(stats_module, "nl", lambda: None)

    stats_module.performance(
        method=None, path=None, **DEFAULT_TARGET, as_json=False
    )
    stats_module.slow(threshold_ms=1000.0, **DEFAULT_TARGET, as_json=False)
    stats_module.routes(**DEFAULT_TARGET, as_json=False)

    assert [table.title for table in rendered if isinstance(table, Table)] == [
        "Performance",
        "Performance",
        "Routes",
    ]


def test_unused_and_dashboard_json(
    monkeypatch, server: FakeServer, cli_settings: Settings
) -> None:
    _seed(server, cli_settings, [("GET", "/users/1", 500, 100.0)])
    payloads = _capture_json(monkeypatch, stats_module)

    stats_module.unused(days=30, **DEFAULT_TARGET, as_json=True)
    stats_module.dashboard(days=7, **DEFAULT_TARGET, as_json=True)

    unused, dashboard = payloads
    assert unused == []
    assert dashboard["totalRequests"] == 1
    assert dashboard["performance"]["averageErrorRate"] == 1.0


def test_report_json_and_send(
    monkeypatch, server: FakeServer, cli_settings: Settings, tmp_path: Path
) -> None:
    _seed(
        server,
        cli_settings,
        [("GET", "/active", 200, 10.0)],
        routes=[("GET", "/active"), ("GET", "/legacy")],
    )
    printed: list[str] = []
    delivered: list[str] = []
    monkeypatch.setattr(report_module.console, "print_json", printed.append)
    monkeypatch.setattr(report_module, "success", delivered.append)

    report_module.report(days=None, send=True, **DEFAULT_TARGET, as_json=True)

    [raw] = printed
    assert '"unusedRoutes": 1' in raw
    assert '"/legacy"' in raw
    assert delivered == ["Delivered via html_report"]
    assert (tmp_path / "report.html").exists()


def test_clear_with_and_without_confirmation(
    monkeypatch, server: FakeServer, cli_settings: Settings
) -> None:
    _seed(server, cli_settings, [("GET", "/users/1", 200, 10.0)])
    messages: list[str] = []
    monkeypatch.setattr(report_module, "success", messages.append)

    def _decline(*_args: Any, **_kwargs: Any) -> bool:
        raise typer.Abort()

    monkeypatch.setattr(report_module.typer, "confirm", _decline)
    with pytest.raises(typer.Abort):
        report_module.clear(older_than=None, yes=False, **DEFAULT_TARGET)
    with pytest.raises(typer.Abort):
        report_module.clear(older_than=0, yes=False, **DEFAULT_TARGET)

    report_module.clear(older_than=30, yes=False, **DEFAULT_TARGET)
    report_module.clear(older_than=None, yes=True, **DEFAULT_TARGET)

    assert messages == ["Deleted 0 keys", "Deleted 5 keys"]


def test_store_unavailable_exits_with_error(
    monkeypatch, cli_settings: Settings
) -> None:
    monkeypatch.setattr(
        UsageStore,
        "from_settings",
        classmethod(lambda cls, s: cls(BrokenRedis(), s.key_prefix)),
    )
    errors: list[str] = []
    monkeypatch.setattr(runtime_module, "error", errors.append)

    with pytest.raises(typer.Exit) as exc_info:
        stats_module.stats(method=None, path=None, **DEFAULT_TARGET, as_json=True)

    assert exc_info.value.exit_code == 1
    assert errors == ["Store unavailable during scan: Connection refused"]


def test_load_settings_applies_overrides(cli_settings: Settings) -> None:
    settings = runtime_module.load_settings("redis://other:6380/1", "override")

    assert settings.redis.effective_url == "redis://other:6380/1"
    assert settings.key_prefix == "override"
    assert runtime_module.load_settings(None, None) is cli_settings
