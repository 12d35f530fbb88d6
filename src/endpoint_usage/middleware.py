"""Starlette/FastAPI request instrumentation.

Captures one request/response pair and hands it to the recorder as an
ObservedRequest. The write happens in a background task, so tracking never
delays or fails the request.
"""

from __future__ import annotations

import logging
import resource
import sys
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from endpoint_usage.models import ObservedRequest
from endpoint_usage.recorder import UsageRecorder

logger = logging.getLogger(__name__)

# ru_maxrss is reported in bytes on macOS and kilobytes elsewhere.
_RSS_SCALE = 1 if sys.platform == "darwin" else 1024


def _process_memory_bytes() -> float:
    return float(resource.getrusage(resource.RUSAGE_SELF).ru_maxrss * _RSS_SCALE)


def _process_cpu_micros() -> float:
    return time.process_time() * 1_000_000


def _mount_prefix(scope: Mapping[str, Any]) -> str:
    """Path of the enclosing Mounts, relative to the application root.

    Route templates under a Mount are relative to it; Starlette records the
    mount path in ``root_path`` and the application's own root in
    ``app_root_path``.
    """
    root_path = scope.get("root_path") or ""
    app_root_path = scope.get("app_root_path")
    if app_root_path is None:
        return ""
    if root_path.startswith(app_root_path):
        return root_path[len(app_root_path) :]
    return ""


@dataclass
class UsageTrackingConfig:
    """Controls what the middleware captures per request."""

    prefer_route_template: bool = True
    include_user_agent: bool = False
    include_ip: bool = False
    track_response_time: bool = True
    memory_tracking: bool = False
    cpu_tracking: bool = False


class UsageTrackingMiddleware(BaseHTTPMiddleware):
    """ASGI middleware that submits every handled request to a UsageRecorder."""

    def __init__(
        self,
        app: Any,
        recorder: UsageRecorder,
        config: UsageTrackingConfig | None = None,
    ) -> None:
        super().__init__(app)
        self.recorder = recorder
        self._config = config or UsageTrackingConfig()

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        start = time.perf_counter()
        response = await call_next(request)
        latency_ms = (time.perf_counter() - start) * 1000

        try:
            self.recorder.submit(self._observe(request, response.status_code, latency_ms))
        except Exception:
            # Never block requests for tracking.
            logger.debug("Failed to submit usage for %s", request.url.path, exc_info=True)

        return response

    def _path(self, request: Request) -> str:
        """Prefer route templates (e.g. /users/{id}) to avoid key cardinality blow-up."""
        path = request.url.path
        if not self._config.prefer_route_template:
            return path

        route = request.scope.get("route")
        if route is None:
            return path

        route_template = getattr(route, "path_format", None) or getattr(route, "path", None)
        if isinstance(route_template, str) and route_template.startswith("/"):
            return _mount_prefix(request.scope) + route_template
        return path

    def _observe(self, request: Request, status_code: int, latency_ms: float) -> ObservedRequest:
        config = self._config
        path = self._path(request)
        if request.url.query:
            path = f"{path}?{request.url.query}"
        return ObservedRequest(
            method=request.method,
            path=path,
            status_code=status_code,
            response_time=round(latency_ms, 2) if config.track_response_time else None,
            user_agent=request.headers.get("user-agent") if config.include_user_agent else None,
            ip=request.client.host if config.include_ip and request.client else None,
            memory_usage=_process_memory_bytes() if config.memory_tracking else None,
            cpu_usage=_process_cpu_micros() if config.cpu_tracking else None,
        )
