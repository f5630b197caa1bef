"""
Date-key helpers

Every record in the dashboard is keyed by a plain ``YYYY-MM-DD`` string.
Working on ``datetime.date`` keeps the arithmetic free of timezones, so a DST
change can never shift a day into the neighbouring week.
"""
from datetime import date, datetime, timedelta
from typing import Union

DateLike = Union[str, date, datetime]


def to_date(value: DateLike) -> date:
    """Parse a date key (or pass a date/datetime through)."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value.strip()[:10])
    raise ValueError(f"Unsupported date value: {value!r}")


def to_date_key(value: DateLike) -> str:
    return to_date(value).isoformat()


def add_days(key: DateLike, delta: int) -> str:
    return (to_date(key) + timedelta(days=delta)).isoformat()


def week_ending_sunday(key: DateLike) -> str:
    """Sunday on or after the given day; a Sunday maps to itself."""
    d = to_date(key)
    # Monday=0 ... Sunday=6
    return (d + timedelta(days=6 - d.weekday())).isoformat()


def week_starting_monday(key: DateLike) -> str:
    d = to_date(key)
    return (d - timedelta(days=d.weekday())).isoformat()


def week_start_from_end(end_key: DateLike) -> str:
    return add_days(end_key, -6)


def month_key(key: DateLike) -> str:
    d = to_date(key)
    return f"{d.year}-{d.month:02d}"
