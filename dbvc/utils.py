"""
Time helpers shared by the stores and the migration engine.

All timestamps are persisted as fixed-width UTC strings so that string
comparison in SQL matches chronological order.
"""

from datetime import datetime, timezone
from typing import Optional

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def format_timestamp(value: Optional[datetime] = None) -> str:
    """Format a datetime (default: now) as a fixed-width UTC string."""
    if value is None:
        value = utc_now()
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored timestamp back into an aware UTC datetime."""
    if not value:
        return None
    return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


def elapsed_ms(started: datetime, finished: Optional[datetime] = None) -> int:
    """Milliseconds between two datetimes."""
    if finished is None:
        finished = utc_now()
    return int((finished - started).total_seconds() * 1000)
