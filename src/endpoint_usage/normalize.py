"""Endpoint identity and path normalization."""

from __future__ import annotations

import re
from dataclasses import dataclass

# Whole segments only, so "/v2" or a UUID with a leading digit run stay intact.
_NUMERIC_SEGMENT = re.compile(r"/\d+(?=[/?#]|$)")
_UUID_SEGMENT = re.compile(r"/[a-f0-9-]{36}(?=[/?#]|$)")


@dataclass(frozen=True, order=True)
class EndpointKey:
    """Canonical (METHOD, normalized path) identity used for aggregation."""

    method: str
    path: str

    def __str__(self) -> str:
        return f"{self.method}:{self.path}"

    @classmethod
    def parse(cls, value: str) -> EndpointKey | None:
        """Parse "METHOD:path". Paths may themselves contain colons."""
        method, sep, path = value.partition(":")
        if not sep or not method:
            return None
        return cls(method=method, path=path)


def normalize_path(path: str, *, include_query_params: bool = False) -> str:
    """Collapse ids and UUIDs in a path so one route maps to one key.

    /users/42 -> /users/:id, /files/<uuid> -> /files/:uuid.
    """
    if not include_query_params:
        path = path.split("?", 1)[0]
    path = _NUMERIC_SEGMENT.sub("/:id", path)
    return _UUID_SEGMENT.sub("/:uuid", path)


def normalize_endpoint(
    method: str, path: str, *, include_query_params: bool = False
) -> EndpointKey:
    """Derive the EndpointKey for a raw method and path. Never raises."""
    return EndpointKey(
        method=str(method or "").strip().upper(),
        path=normalize_path(str(path or ""), include_query_params=include_query_params),
    )
