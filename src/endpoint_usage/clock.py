"""Time helpers shared by the write and read paths.

All stored timestamps are integer epoch milliseconds (UTC).
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

Clock = Callable[[], datetime]

MS_PER_MINUTE = 60_000
MS_PER_HOUR = 3_600_000
MS_PER_DAY = 86_400_000

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def utc_now() -> datetime:
    return datetime.now(UTC)


def to_epoch_ms(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    delta = value - _EPOCH
    return delta.days * 86_400_000 + delta.seconds * 1000 + delta.microseconds // 1000


def from_epoch_ms(value: int) -> datetime:
    seconds, millis = divmod(int(value), 1000)
    return datetime.fromtimestamp(seconds, UTC) + timedelta(milliseconds=millis)


def minute_bucket(timestamp_ms: int) -> int:
    """Floor a timestamp to the start of its minute."""
    return (timestamp_ms // MS_PER_MINUTE) * MS_PER_MINUTE


def utc_date(timestamp_ms: int) -> str:
    """UTC calendar day (YYYY-MM-DD) for a timestamp."""
    return from_epoch_ms(timestamp_ms).strftime("%Y-%m-%d")
