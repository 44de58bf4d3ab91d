"""Timestamp helpers shared by the task and goal records.

Times are kept as timezone-aware datetimes in the local zone so that daily
clock times ("09:00") mean the user's wall clock. Stored files use ISO-8601;
naive values written by older versions are read as local time.
"""

from datetime import datetime
from typing import Any


def now_local() -> datetime:
    return datetime.now().astimezone()


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 string, returning None for missing or malformed input."""
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.astimezone()
    return parsed


def format_timestamp(value: datetime | None) -> str | None:
    return value.isoformat() if value else None
