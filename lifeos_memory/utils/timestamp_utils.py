"""
Timestamp utilities for consistent time handling across the system.
"""

from datetime import datetime, timezone
from typing import Optional, Union


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_datetime(timestamp: Optional[Union[int, float]] = None) -> datetime:
    """Convert timestamp to datetime object.

    Args:
        timestamp: Unix timestamp in seconds (optional, uses current time if None)

    Returns:
        UTC datetime object
    """
    if timestamp is None:
        return utcnow()
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime for storage, assuming UTC for naive values."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def from_iso(value: Optional[Union[str, int, float, datetime]]) -> Optional[datetime]:
    """Parse a stored timestamp (ISO string or epoch seconds) into a UTC datetime."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return to_datetime(value)
    parsed = datetime.fromisoformat(value)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def age_in_days(value: datetime, now: Optional[datetime] = None) -> float:
    """Age of a timestamp in fractional days, never negative."""
    now = now or utcnow()
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return max(0.0, (now - value).total_seconds() / 86400.0)
