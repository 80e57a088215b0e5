"""
Timezone helpers.

All timestamps are stored as UTC. Some backends (SQLite) hand back naive
datetimes, so values read from the database go through as_utc() before
any arithmetic.
"""

from datetime import datetime, timedelta, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes; convert aware ones."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def minutes_between(start: datetime | None, end: datetime | None) -> float | None:
    if start is None or end is None:
        return None
    return (as_utc(end) - as_utc(start)).total_seconds() / 60


def resolve_period(
    start: datetime | None,
    end: datetime | None,
    default_days: int,
    days: int | None = None,
) -> tuple[datetime, datetime]:
    """
    Turn optional query parameters into a concrete [start, end] window.

    Explicit dates win over `days`; `days` wins over the default.
    """
    end_at = as_utc(end) or utc_now()
    if start is not None:
        start_at = as_utc(start)
    else:
        start_at = end_at - timedelta(days=days or default_days)
    if start_at > end_at:
        from shared.utils.exceptions import ValidationError

        raise ValidationError(
            "startDate must be before endDate",
            errors=[{"field": "startDate", "message": "must be before endDate"}],
        )
    return start_at, end_at
