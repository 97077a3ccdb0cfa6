"""Centralized Timezone Utilities - All datetime operations should use these functions."""

from datetime import datetime, timezone
from typing import Optional

UTC = timezone.utc


def utc_now() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(UTC)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def to_storage_precision(dt: datetime) -> datetime:
    """Truncate to milliseconds, the resolution MongoDB keeps for dates."""
    return dt.replace(microsecond=(dt.microsecond // 1000) * 1000)
