from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Iterator

from .errors import InvalidDateError

# Stable, locale-independent weekday keys indexed by date.isoweekday() % 7.
WEEKDAY_KEYS = ("Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat")


def parse_day(value: str | date | None, *, field: str = "date") -> date:
    """Parse a `YYYY-MM-DD` calendar day (UTC midnight on the wire)."""
    if isinstance(value, datetime):
        return value.astimezone(timezone.utc).date() if value.tzinfo else value.date()
    if isinstance(value, date):
        return value
    raw = (value or "").strip()
    if len(raw) != 10:
        raise InvalidDateError(field, value)
    try:
        return date.fromisoformat(raw)
    except ValueError:
        raise InvalidDateError(field, value)


def to_ymd(day: date) -> str:
    return day.isoformat()


def today_utc() -> date:
    return datetime.now(tz=timezone.utc).date()


def add_days(day: date, days: int) -> date:
    return day + timedelta(days=days)


def day_diff(start: date, end: date) -> int:
    return (end - start).days


def expand_range(start: date, end_inclusive: date) -> list[date]:
    """Every day in [start, end_inclusive]; empty when end precedes start."""
    return [start + timedelta(days=i) for i in range(day_diff(start, end_inclusive) + 1)]


def iter_nights(start: date, end_exclusive: date) -> Iterator[date]:
    d = start
    while d < end_exclusive:
        yield d
        d += timedelta(days=1)


def to_exclusive_end(check_out_inclusive: date) -> date:
    return add_days(check_out_inclusive, 1)


def weekday_key(day: date) -> str:
    return WEEKDAY_KEYS[day.isoweekday() % 7]
