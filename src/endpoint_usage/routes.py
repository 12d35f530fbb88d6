"""Route registry: which endpoints exist versus which have been exercised.

Routes come from a RouteSource (static discovery) or from the recorder the
first time an endpoint is used. A route record is written with HSETNX only,
so ``discovered_at`` never changes once set.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Iterator, Sequence
from datetime import timedelta
from typing import Any, Protocol, runtime_checkable

from endpoint_usage import keys
from endpoint_usage.clock import Clock, from_epoch_ms, to_epoch_ms, utc_now
from endpoint_usage.config import Settings
from endpoint_usage.models import RouteRecord
from endpoint_usage.normalize import EndpointKey, normalize_endpoint
from endpoint_usage.stats import StatsReader
from endpoint_usage.store import UsageStore

logger = logging.getLogger(__name__)

# Methods Starlette adds implicitly; tracking them only adds noise.
_IMPLICIT_METHODS = frozenset({"HEAD", "OPTIONS"})


@runtime_checkable
class RouteSource(Protocol):
    """Anything that can enumerate (method, path) pairs of an application."""

    def iter_routes(self) -> Iterable[tuple[str, str]]: ...


class StaticRouteSource:
    """Route source over an explicit list of (method, path) pairs."""

    def __init__(self, routes: Iterable[tuple[str, str]]) -> None:
        self._routes = list(routes)

    def iter_routes(self) -> Iterator[tuple[str, str]]:
        yield from self._routes


class StarletteRouteSource:
    """Route source over a Starlette or FastAPI application's route table."""

    def __init__(self, app: Any, *, include_implicit_methods: bool = False) -> None:
        self._app = app
        self._include_implicit = include_implicit_methods

    def iter_routes(self) -> Iterator[tuple[str, str]]:
        yield from self._walk(getattr(self._app, "routes", []), "")

    def _walk(self, routes: Sequence[Any], base_path: str) -> Iterator[tuple[str, str]]:
        for route in routes:
            path = getattr(route, "path", "") or ""
            methods = getattr(route, "methods", None)
            if methods:
                for method in sorted(methods):
                    if method in _IMPLICIT_METHODS and not self._include_implicit:
                        continue
                    yield method, base_path + path
                continue
            children = getattr(route, "routes", None)
            if children:
                yield from self._walk(children, base_path + path)


class RouteRegistry:
    """Stores known routes and finds those without recent traffic."""

    def __init__(
        self,
        store: UsageStore,
        settings: Settings,
        stats: StatsReader,
        *,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._settings = settings
        self._stats = stats
        self._prefix = store.key_prefix
        self._clock = clock

    async def register_route(self, method: str, path: str) -> EndpointKey | None:
        """Register a route by raw method/path; excluded paths are ignored."""
        if not self._settings.should_track(path):
            return None
        endpoint = normalize_endpoint(
            method, path, include_query_params=self._settings.include_query_params
        )
        await self.register_endpoint(endpoint)
        return endpoint

    async def register_endpoint(self, endpoint: EndpointKey) -> None:
        """Create the route record if absent. Re-registration changes nothing."""
        route_key = keys.route_key(self._prefix, endpoint)
        async with self._store.atomic("route_register") as pipe:
            pipe.hsetnx(route_key, "discovered_at", str(to_epoch_ms(self._clock())))
            pipe.hsetnx(route_key, "method", endpoint.method)
            pipe.hsetnx(route_key, "path", endpoint.path)
            pipe.expire(route_key, keys.ROUTE_TTL)

    async def discover(
        self,
        source: RouteSource,
        exclude_patterns: Sequence[str | re.Pattern[str]] = (),
    ) -> list[EndpointKey]:
        """Register every route a source yields, skipping excluded patterns."""
        compiled = [re.compile(p) if isinstance(p, str) else p for p in exclude_patterns]
        registered: list[EndpointKey] = []
        for method, path in source.iter_routes():
            if any(pattern.search(path) for pattern in compiled):
                continue
            endpoint = await self.register_route(method, path)
            if endpoint is not None and endpoint not in registered:
                registered.append(endpoint)
        logger.info("Registered %s discovered routes", len(registered))
        return registered

    async def list_routes(self) -> list[RouteRecord]:
        route_keys = await self._store.scan_keys(
            keys.family_pattern(self._prefix, keys.ROUTES)
        )
        rows = await self._store.hgetall_many(route_keys)

        routes: list[RouteRecord] = []
        for route_key, data in zip(route_keys, rows, strict=True):
            endpoint = keys.endpoint_from_key(self._prefix, keys.ROUTES, route_key)
            if endpoint is None or not data:
                continue
            discovered = data.get("discovered_at", "0")
            routes.append(
                RouteRecord(
                    method=data.get("method") or endpoint.method,
                    path=data.get("path") or endpoint.path,
                    discovered_at=from_epoch_ms(int(discovered) if discovered.isdigit() else 0),
                )
            )
        return routes

    async def find_unused_routes(self, days_threshold: int = 30) -> list[RouteRecord]:
        """Routes never used, or last used before the threshold."""
        routes = await self.list_routes()
        stats_by_key = {stat.endpoint: stat for stat in await self._stats.list_stats()}
        threshold = self._clock() - timedelta(days=days_threshold)

        unused: list[RouteRecord] = []
        for route in routes:
            stat = stats_by_key.get(route.endpoint)
            if stat is None or stat.last_accessed < threshold:
                unused.append(route)
        return unused
