"""Run an async CLI action against a tracker built from settings."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import typer

from endpoint_usage.cli._console import error
from endpoint_usage.config import Settings, get_settings
from endpoint_usage.errors import StoreUnavailableError
from endpoint_usage.tracker import EndpointUsageTracker

T = TypeVar("T")


def load_settings(redis_url: str | None, key_prefix: str | None) -> Settings:
    settings = get_settings()
    update: dict[str, object] = {}
    if redis_url:
        update["redis"] = settings.redis.model_copy(update={"url": redis_url})
    if key_prefix:
        update["key_prefix"] = key_prefix
    return settings.model_copy(update=update) if update else settings


def run_with_tracker(
    settings: Settings,
    action: Callable[[EndpointUsageTracker], Awaitable[T]],
) -> T:
    async def _main() -> T:
        tracker = EndpointUsageTracker.from_settings(settings)
        try:
            return await action(tracker)
        finally:
            await tracker.close()

    try:
        return asyncio.run(_main())
    except StoreUnavailableError as exc:
        error(str(exc))
        raise typer.Exit(1) from exc
