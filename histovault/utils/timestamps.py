"""
Timestamp normalization helpers.

Every timestamp stored by the vault is timezone-aware UTC, so load times
coming from different sources and from the database compare and serialize
identically.
"""

from datetime import date, datetime, timezone

# Load time stamped on sentinel (ghost) rows
GHOST_LOAD_TIME = datetime(1900, 1, 1, tzinfo=timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """
    Return the timestamp as an aware UTC datetime.

    Naive datetimes are interpreted as UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def ensure_utc_optional(value: datetime | None) -> datetime | None:
    """ensure_utc for nullable columns"""
    if value is None:
        return None
    return ensure_utc(value)


def utc_now() -> datetime:
    """Current time as an aware UTC datetime"""
    return datetime.now(timezone.utc)


def utc_date(value: datetime) -> date:
    """Calendar date of a timestamp, evaluated in UTC"""
    return ensure_utc(value).date()
