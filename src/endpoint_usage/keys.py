"""Redis key space for endpoint usage tracking.

Several processes may share one store, so the layout is fixed:
    {prefix}:global:{METHOD}:{path}               -> HASH (lifetime totals)
    {prefix}:daily:{YYYY-MM-DD}:{METHOD}:{path}   -> HASH (one UTC day)
    {prefix}:raw:{METHOD}:{path}                  -> LIST of JSON events, newest first
    {prefix}:performance:{METHOD}:{path}          -> HASH (rolling performance totals)
    {prefix}:routes:{METHOD}:{path}               -> HASH (discovered_at, method, path)
"""

from __future__ import annotations

from endpoint_usage.normalize import EndpointKey

DEFAULT_KEY_PREFIX = "endpoint_usage"

# TTLs (seconds)
DAILY_TTL = 90 * 86_400  # 90 days
RAW_TTL = 30 * 86_400  # 30 days
PERFORMANCE_TTL = 90 * 86_400  # 90 days
ROUTE_TTL = 365 * 86_400  # 1 year

# Throughput buckets older than this (relative to the newest event) are pruned.
THROUGHPUT_WINDOW_MS = 3_600_000

STATUS_FIELD_PREFIX = "status_"
THROUGHPUT_FIELD_PREFIX = "throughput_"

GLOBAL = "global"
DAILY = "daily"
RAW = "raw"
PERFORMANCE = "performance"
ROUTES = "routes"


def global_key(prefix: str, endpoint: EndpointKey) -> str:
    """Build lifetime aggregate hash key."""
    return f"{prefix}:{GLOBAL}:{endpoint}"


def daily_key(prefix: str, day: str, endpoint: EndpointKey) -> str:
    """Build per-day aggregate hash key."""
    return f"{prefix}:{DAILY}:{day}:{endpoint}"


def raw_key(prefix: str, endpoint: EndpointKey) -> str:
    """Build raw event sample list key."""
    return f"{prefix}:{RAW}:{endpoint}"


def performance_key(prefix: str, endpoint: EndpointKey) -> str:
    """Build performance aggregate hash key."""
    return f"{prefix}:{PERFORMANCE}:{endpoint}"


def route_key(prefix: str, endpoint: EndpointKey) -> str:
    """Build route registry hash key."""
    return f"{prefix}:{ROUTES}:{endpoint}"


def family_key(prefix: str, family: str, endpoint: EndpointKey) -> str:
    """Build the key of an endpoint-scoped family (global/raw/performance/routes)."""
    return f"{prefix}:{family}:{endpoint}"


def family_pattern(prefix: str, family: str) -> str:
    """SCAN pattern for every key of one family."""
    return f"{prefix}:{family}:*"


def all_keys_pattern(prefix: str) -> str:
    """SCAN pattern for every key under a prefix."""
    return f"{prefix}:*"


def endpoint_from_key(prefix: str, family: str, key: str) -> EndpointKey | None:
    """Recover the EndpointKey from a global/raw/performance/routes key."""
    head = f"{prefix}:{family}:"
    if not key.startswith(head):
        return None
    return EndpointKey.parse(key[len(head) :])


def day_from_daily_key(prefix: str, key: str) -> str | None:
    """Extract the YYYY-MM-DD segment of a daily key."""
    head = f"{prefix}:{DAILY}:"
    if not key.startswith(head):
        return None
    day, sep, _ = key[len(head) :].partition(":")
    return day if sep else None


def status_field(status_code: int) -> str:
    return f"{STATUS_FIELD_PREFIX}{status_code}"


def throughput_field(minute_ms: int) -> str:
    return f"{THROUGHPUT_FIELD_PREFIX}{minute_ms}"
