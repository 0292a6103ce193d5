"""
Datetime utility functions.
Provides timezone-aware helpers used by the week aggregate and standings snapshots.
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

    SQLite hands back naive datetimes even for timezone-aware columns, so
    anything read from the database goes through here before comparisons.

    Args:
        value: Naive (assumed UTC) or aware datetime, or None

    Returns:
        Aware UTC datetime, or None when value is None
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return pytz.UTC.localize(value)
    return value.astimezone(pytz.UTC)
