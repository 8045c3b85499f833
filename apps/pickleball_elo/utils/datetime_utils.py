"""
Datetime utility functions.
Provides replacements for deprecated datetime functions.
"""

from datetime import datetime
from typing import Optional, Union
import pytz


def utcnow() -> datetime:
    """
    Get current UTC datetime using pytz.UTC.

    Returns:
        Current UTC datetime with pytz timezone information
    """
    return datetime.now(pytz.UTC)


def ensure_utc(value: datetime) -> datetime:
    """
    Normalize a datetime to UTC.

    Naive datetimes are assumed to already be UTC (SQLite hands them back
    without tzinfo), aware ones are converted.
    """
    if value.tzinfo is None:
        return pytz.UTC.localize(value)
    return value.astimezone(pytz.UTC)


def parse_game_time(value: Optional[Union[str, datetime]]) -> datetime:
    """
    Parse a game timestamp supplied by a client.

    Args:
        value: ISO-8601 string ("2026-01-21T18:30:00Z", "2026-01-21"),
               a datetime, or None for "now"

    Returns:
        Timezone-aware UTC datetime

    Raises:
        ValueError: If the string is not ISO-8601
    """
    if value is None:
        return utcnow()

    if isinstance(value, datetime):
        return ensure_utc(value)

    if not isinstance(value, str):
        raise ValueError(f"Expected string or datetime, got {type(value)}")

    date_str = value.strip()
    if date_str.endswith("Z"):
        date_str = date_str[:-1] + "+00:00"

    try:
        parsed = datetime.fromisoformat(date_str)
    except ValueError:
        raise ValueError(f"Invalid game time '{value}', expected ISO-8601")

    return ensure_utc(parsed)


def isoformat_or_none(value: Optional[datetime]) -> Optional[str]:
    """Serialize a timestamp for API responses."""
    if value is None:
        return None
    return ensure_utc(value).isoformat()
