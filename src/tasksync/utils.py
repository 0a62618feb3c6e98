from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

UTC = timezone.utc


# PUBLIC_INTERFACE
def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(UTC)


# PUBLIC_INTERFACE
def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime to aware UTC so local and remote timestamps compare.
    Naive values are assumed to already be UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO8601 string from storage into an aware UTC datetime."""
    if value is None or value == "":
        return None
    return ensure_utc(datetime.fromisoformat(value))


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime for storage as ISO8601 text in UTC."""
    dt = ensure_utc(value)
    return dt.isoformat() if dt else None
