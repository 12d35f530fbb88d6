from __future__ import annotations

import pytest
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse
from starlette.routing import Mount, Route
from starlette.testclient import TestClient

from endpoint_usage.middleware import UsageTrackingConfig, UsageTrackingMiddleware
from endpoint_usage.models import ObservedRequest
from endpoint_usage.routes import StarletteRouteSource


class _RecorderStub:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.observed: list[ObservedRequest] = []

    def submit(self, observed: ObservedRequest) -> None:
        if self.fail:
            raise RuntimeError("recorder offline")
        self.observed.append(observed)


class _RouteStub:
    path_format = "/users/{user_id}"


def _request(path: str, query: bytes = b"", **extra: object) -> Request:
    scope = {
        "type": "http",
        "http_version": "1.1",
        "method": "GET",
        "scheme": "http",
        "path": path,
        "raw_path": path.encode("utf-8"),
        "query_string": query,
        "headers": [(b"user-agent", b"pytest-agent")],
        "client": ("127.0.0.1", 12345),
        "server": ("testserver", 80),
        "route": _RouteStub(),
        **extra,
    }
    return Request(scope)


async def _user(request):  # type: ignore[no-untyped-def]
    return JSONResponse({"id": request.path_params["user_id"]})


async def _missing(request):  # type: ignore[no-untyped-def]
    return PlainTextResponse("gone", status_code=404)


def _app(
    recorder: _RecorderStub, config: UsageTrackingConfig | None = None
) -> Starlette:
    app = Starlette(
        routes=[
            Route("/users/{user_id}", _user),
            Route("/missing", _missing),
        ]
    )
    app.add_middleware(UsageTrackingMiddleware, recorder=recorder, config=config)
    return app


def test_path_prefers_route_template() -> None:
    middleware = UsageTrackingMiddleware(
        app=lambda scope, receive, send: None, recorder=_RecorderStub()
    )

    template = middleware._path(_request("/users/123"))  # noqa: SLF001
    assert template == "/users/{user_id}"

    raw = UsageTrackingMiddleware(
        app=lambda scope, receive, send: None,
        recorder=_RecorderStub(),
        config=UsageTrackingConfig(prefer_route_template=False),
    )
    assert raw._path(_request("/users/123")) == "/users/123"  # noqa: SLF001


@pytest.mark.parametrize(
    ("root_path", "app_root_path", "expected"),
    [
        ("/api", "", "/api/users/{user_id}"),
        ("/proxy/api", "/proxy", "/api/users/{user_id}"),
        ("/proxy", "/proxy", "/users/{user_id}"),
    ],
)
def test_path_includes_enclosing_mount(
    root_path: str, app_root_path: str, expected: str
) -> None:
    middleware = UsageTrackingMiddleware(
        app=lambda scope, receive, send: None, recorder=_RecorderStub()
    )

    request = _request(
        "/users/123", root_path=root_path, app_root_path=app_root_path
    )
    assert middleware._path(request) == expected  # noqa: SLF001


def test_observation_honors_capture_flags() -> None:
    middleware = UsageTrackingMiddleware(
        app=lambda scope, receive, send: None,
        recorder=_RecorderStub(),
        config=UsageTrackingConfig(
            include_user_agent=True,
            include_ip=True,
            track_response_time=False,
            memory_tracking=True,
        ),
    )

    observed = middleware._observe(  # noqa: SLF001
        _request("/users/123", b"expand=1"), 201, 12.345
    )

    assert observed.path == "/users/{user_id}?expand=1"
    assert observed.status_code == 201
    assert observed.response_time is None
    assert observed.user_agent == "pytest-agent"
    assert observed.ip == "127.0.0.1"
    assert observed.memory_usage is not None and observed.memory_usage > 0
    assert observed.cpu_usage is None


def test_requests_are_submitted_with_status_and_latency() -> None:
    recorder = _RecorderStub()
    with TestClient(_app(recorder)) as client:
        assert client.get("/users/42").json() == {"id": "42"}
        assert client.get("/missing").status_code == 404

    assert [(o.method, o.status_code) for o in recorder.observed] == [
        ("GET", 200),
        ("GET", 404),
    ]
    assert recorder.observed[0].path == "/users/{user_id}"
    assert recorder.observed[1].path == "/missing"
    assert all(o.response_time is not None for o in recorder.observed)
    assert recorder.observed[0].user_agent is None
    assert recorder.observed[0].ip is None


@pytest.mark.parametrize("config", [None, UsageTrackingConfig(cpu_tracking=True)])
def test_recorder_failures_never_break_requests(
    config: UsageTrackingConfig | None,
) -> None:
    with TestClient(_app(_RecorderStub(fail=True), config)) as client:
        response = client.get("/users/1")

    assert response.status_code == 200


async def _item(request):  # type: ignore[no-untyped-def]
    return JSONResponse({"id": request.path_params["item_id"]})


def test_mounted_routes_are_tracked_under_their_discovered_path() -> None:
    recorder = _RecorderStub()
    app = Starlette(
        routes=[Mount("/api", routes=[Route("/items/{item_id}", _item)])]
    )
    app.add_middleware(UsageTrackingMiddleware, recorder=recorder)
    discovered = list(StarletteRouteSource(app).iter_routes())

    with TestClient(app) as client:
        assert client.get("/api/items/5").json() == {"id": "5"}

    [observed] = recorder.observed
    assert discovered == [("GET", "/api/items/{item_id}")]
    assert (observed.method, observed.path) in discovered
