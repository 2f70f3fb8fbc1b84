"""UTC helpers. The store may hand back naive datetimes (SQLite); treat them as UTC."""

from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_day_bounds(value: datetime) -> tuple[datetime, datetime]:
    """Return [start, end) of the UTC calendar day containing value."""
    start = as_utc(value).replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1)


def isoformat(value: datetime | None) -> str | None:
    return as_utc(value).isoformat() if value else None
