"""Redis-backed store adapter.

Wraps a redis.asyncio client (or a compatible fake) and exposes the small set
of operations the tracker needs. Writes for one aggregate record go through
``atomic()``, a MULTI/EXEC pipeline, so concurrent readers never observe a
half-applied update. Every Redis failure surfaces as StoreUnavailableError.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable, Mapping
from contextlib import asynccontextmanager
from typing import Any, TypeVar

import redis.asyncio as redis
from redis.exceptions import RedisError

from endpoint_usage.config import Settings
from endpoint_usage.errors import StoreUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_SCAN_COUNT = 500


def _decode_text(value: object) -> str | None:
    if isinstance(value, str):
        return value
    if isinstance(value, bytes):
        try:
            return value.decode()
        except UnicodeDecodeError:
            return None
    return None


def _normalize_mapping(raw_value: object) -> dict[str, str]:
    if not isinstance(raw_value, Mapping):
        return {}

    normalized: dict[str, str] = {}
    for raw_key, raw_item in raw_value.items():
        key = _decode_text(raw_key)
        item = _decode_text(raw_item)
        if key is None or item is None:
            continue
        normalized[key] = item
    return normalized


def _decode_list(raw_values: object) -> list[str]:
    if not isinstance(raw_values, list | tuple):
        return []
    values: list[str] = []
    for raw_value in raw_values:
        value = _decode_text(raw_value)
        if value is not None:
            values.append(value)
    return values


class UsageStore:
    """Thin async facade over the shared Redis key space."""

    def __init__(self, redis_client: Any, key_prefix: str) -> None:
        self._redis = redis_client
        self.key_prefix = key_prefix

    @classmethod
    def from_settings(cls, settings: Settings) -> UsageStore:
        client = redis.from_url(settings.redis.effective_url, decode_responses=True)
        return cls(client, settings.key_prefix)

    @property
    def client(self) -> Any:
        return self._redis

    async def _guard(self, operation: str, awaitable: Awaitable[T]) -> T:
        try:
            return await awaitable
        except RedisError as exc:
            raise StoreUnavailableError(operation, exc) from exc
        except OSError as exc:
            raise StoreUnavailableError(operation, exc) from exc

    async def ping(self) -> bool:
        return bool(await self._guard("ping", self._redis.ping()))

    async def close(self) -> None:
        try:
            await self._redis.aclose()
        except (RedisError, OSError) as exc:
            logger.debug("Ignoring error while closing store: %s", exc)

    @asynccontextmanager
    async def atomic(self, operation: str = "write") -> AsyncIterator[Any]:
        """Yield a transactional pipeline; queued commands run as one MULTI/EXEC."""
        pipe = self._redis.pipeline(transaction=True)
        yield pipe
        await self._guard(operation, pipe.execute())

    async def hgetall(self, key: str) -> dict[str, str]:
        raw = await self._guard("hgetall", self._redis.hgetall(key))
        return _normalize_mapping(raw)

    async def hgetall_many(self, keys: list[str]) -> list[dict[str, str]]:
        """Read several hashes in one round trip (not a consistent snapshot)."""
        if not keys:
            return []
        pipe = self._redis.pipeline(transaction=False)
        for key in keys:
            pipe.hgetall(key)
        results = await self._guard("hgetall", pipe.execute())
        return [_normalize_mapping(raw) for raw in results]

    async def hkeys(self, key: str) -> list[str]:
        raw = await self._guard("hkeys", self._redis.hkeys(key))
        return _decode_list(raw)

    async def hdel(self, key: str, *fields: str) -> int:
        if not fields:
            return 0
        return int(await self._guard("hdel", self._redis.hdel(key, *fields)))

    async def lrange(self, key: str, start: int = 0, stop: int = -1) -> list[str]:
        raw = await self._guard("lrange", self._redis.lrange(key, start, stop))
        return _decode_list(raw)

    async def scan_keys(self, pattern: str) -> list[str]:
        """All keys matching a glob pattern, sorted for stable iteration."""

        async def _collect() -> list[str]:
            keys: set[str] = set()
            async for raw_key in self._redis.scan_iter(match=pattern, count=_SCAN_COUNT):
                key = _decode_text(raw_key)
                if key is not None:
                    keys.add(key)
            return sorted(keys)

        return await self._guard("scan", _collect())

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return int(await self._guard("delete", self._redis.delete(*keys)))
