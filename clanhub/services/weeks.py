"""
ISO-8601 week helpers (Monday start, Thursday-anchored year), all in UTC.

get_week_iso(moment)    -> "YYYY-Www"
parse_week_iso(week)    -> (year, week_number)
week_bounds(week)       -> (Monday 00:00:00.000, Sunday 23:59:59.999)
ensure_utc(dt)          -> aware datetime (SQLite hands back naive values)
"""
from __future__ import annotations

import re
from datetime import date, datetime, timedelta, timezone

from clanhub.core.errors import InvalidWeekError

_WEEK_RE = re.compile(r"^(\d{4})-W(\d{2})$")

WEEK_SPAN = timedelta(days=7) - timedelta(milliseconds=1)


def ensure_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def get_week_iso(moment: datetime | date) -> str:
    if isinstance(moment, datetime):
        moment = ensure_utc(moment).date()
    year, week, _ = moment.isocalendar()
    return f"{year}-W{week:02d}"


def parse_week_iso(week_iso: str) -> tuple[int, int]:
    m = _WEEK_RE.match(week_iso or "")
    if not m:
        raise InvalidWeekError(week_iso)
    year, week = int(m.group(1)), int(m.group(2))
    try:
        date.fromisocalendar(year, week, 1)
    except ValueError as exc:
        raise InvalidWeekError(week_iso) from exc
    return year, week


def week_bounds(week_iso: str) -> tuple[datetime, datetime]:
    year, week = parse_week_iso(week_iso)
    monday = date.fromisocalendar(year, week, 1)
    start = datetime(monday.year, monday.month, monday.day, tzinfo=timezone.utc)
    return start, start + WEEK_SPAN


def weeks_spanning(first: datetime, last: datetime) -> tuple[datetime, datetime]:
    """Start of `first`'s ISO week through the end of `last`'s ISO week."""
    start, _ = week_bounds(get_week_iso(first))
    _, end = week_bounds(get_week_iso(last))
    return start, end
