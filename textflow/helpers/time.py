"""Date and time utilities."""

from collections.abc import Callable
from datetime import UTC, datetime

Clock = Callable[[], datetime]
"""A zero-argument callable returning the current time as an aware UTC datetime."""


def utcnow() -> datetime:
    """Get the current UTC datetime.

    Returns:
        The current datetime with UTC timezone.
    """
    return datetime.now(tz=UTC)


def ensure_utc(dt: datetime) -> datetime:
    """Attach UTC to a naive datetime read back from the database.

    MySQL ``DATETIME`` and SQLite drop the offset on the way in, and every
    timestamp this server writes is UTC.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)
