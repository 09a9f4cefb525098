"""
Datetime utility functions.
Provides replacements for deprecated datetime functions.
"""

from datetime import datetime
from typing import Optional
import pytz


def utcnow() -> datetime:
    """
    Get current UTC datetime using pytz.UTC.

    Returns:
        Current UTC datetime with pytz timezone information
    """
    return datetime.now(pytz.UTC)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime to an aware UTC datetime.

    Naive values are taken to already be in UTC. Some backends (SQLite) hand
    back naive datetimes for ``DateTime(timezone=True)`` columns, so anything
    read from the database goes through here before it is compared with
    ``utcnow()``.

    Args:
        value: Datetime, aware or naive, or None

    Returns:
        Aware UTC datetime, or None if value is None
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return pytz.UTC.localize(value)
    return value.astimezone(pytz.UTC)


def isoformat_or_none(value: Optional[datetime]) -> Optional[str]:
    """Format a datetime as an ISO 8601 UTC string, passing None through."""
    normalized = ensure_utc(value)
    return normalized.isoformat() if normalized else None
