"""
UTC DateTime Utilities.

All datetimes are stored and handled in UTC with timezone awareness.
SQLite hands back naive datetimes, so every value read from or written to
the database goes through to_utc (see UTCDateTime in app.models.models).
"""

from datetime import datetime, timedelta, timezone


def utc_now() -> datetime:
    """
    Get current UTC time as timezone-aware datetime.

    Example:
        from app.core.utc import utc_now

        created_at = utc_now()  # 2026-10-18 03:00:00+00:00
    """
    return datetime.now(timezone.utc)


def to_utc(dt: datetime) -> datetime:
    """
    Convert a datetime to UTC timezone-aware datetime.

    - If naive: assumes UTC and adds timezone
    - If aware: converts to UTC
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def add_days(dt: datetime, days: int) -> datetime:
    """Shift a datetime by whole calendar days, keeping it in UTC."""
    return to_utc(dt) + timedelta(days=days)


def format_iso(dt: datetime | None) -> str | None:
    """ISO 8601 with a Z suffix, or None."""
    if dt is None:
        return None
    return to_utc(dt).isoformat().replace("+00:00", "Z")

