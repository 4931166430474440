"""Datetime helpers. Everything stored is naive UTC truncated to the second."""

from datetime import datetime, timezone
from typing import Callable, Optional

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_naive_utc(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC. Naive input is assumed to be UTC already."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def truncate_to_second(value: datetime) -> datetime:
    """Naive UTC datetime with the sub-second part dropped."""
    return to_naive_utc(value).replace(microsecond=0)


def from_unix(seconds: float) -> datetime:
    """Naive UTC datetime from a unix timestamp."""
    return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(tzinfo=None)


def to_unix(value: datetime) -> int:
    """Unix timestamp (whole seconds) for a datetime, treating naive values as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp from an API payload into naive UTC."""
    if not value:
        return None
    return to_naive_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
