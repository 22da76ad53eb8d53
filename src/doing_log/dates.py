"""Parsing of date bounds, date ranges and durations used to build filters.

Time-of-day inputs ("8am", "15:00") become ``datetime.time`` values so the
filter compares them against the time of each entry on any day. Everything
else resolves to a naive local ``datetime``; natural language goes through
pendulum.
"""

from __future__ import annotations

import re
from datetime import datetime, time, timedelta
from typing import Optional, Union

import pendulum

from .models import FilterError

DateBound = Union[datetime, time]

RANGE_SEPARATORS = (" to ", " through ", " - ")

TAG_TIMESTAMP_FORMATS = (
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d %H:%M:%S",
    "%Y/%m/%d %H:%M",
    "%Y/%m/%d %H:%M:%S",
)

_CLOCK_RE = re.compile(r"^(\d{1,2}):(\d{2})$")
_MERIDIEM_RE = re.compile(r"^(\d{1,2})(?::(\d{2}))?\s*([ap])\.?m\.?$")
_AGO_RE = re.compile(
    r"^(\d+|an?)\s+(minute|min|hour|hr|day|week|month|year)s?\s+ago$"
)
_RELATIVE_DAYS = {"today": 0, "yesterday": -1, "tomorrow": 1}
_AGO_UNITS = {
    "minute": "minutes",
    "min": "minutes",
    "hour": "hours",
    "hr": "hours",
    "day": "days",
    "week": "weeks",
    "month": "months",
    "year": "years",
}
_DURATION_CLOCK_RE = re.compile(r"^(\d+):(\d{2})$")
_DURATION_PART_RE = re.compile(r"(\d+)\s*([dhms])")


class DateParseError(FilterError):
    """Raised when a date, range or duration string cannot be understood."""
    pass


def parse_time_of_day(text: str) -> Optional[time]:
    """Parse "15:00", "8am", "8:30 pm" style input. Returns None otherwise."""
    s = text.strip().lower()

    match = _CLOCK_RE.match(s)
    if match:
        hour, minute = int(match.group(1)), int(match.group(2))
        if hour > 23 or minute > 59:
            return None
        return time(hour, minute)

    match = _MERIDIEM_RE.match(s)
    if match:
        hour = int(match.group(1))
        minute = int(match.group(2) or 0)
        if not 1 <= hour <= 12 or minute > 59:
            return None
        is_pm = match.group(3) == "p"
        if is_pm and hour != 12:
            hour += 12
        elif not is_pm and hour == 12:
            hour = 0
        return time(hour, minute)

    return None


def _now() -> pendulum.DateTime:
    return pendulum.now(pendulum.local_timezone())


def _parse_natural(s: str) -> Optional[pendulum.DateTime]:
    if s == "now":
        return _now()

    head, _, rest = s.partition(" ")
    if head in _RELATIVE_DAYS:
        day = pendulum.today(pendulum.local_timezone()).add(days=_RELATIVE_DAYS[head])
        rest = rest.strip()
        if rest.startswith("at "):
            rest = rest[3:].strip()
        if not rest:
            return day
        tod = parse_time_of_day(rest)
        if tod is None:
            return None
        return day.set(hour=tod.hour, minute=tod.minute)

    match = _AGO_RE.match(s)
    if match:
        amount = 1 if match.group(1) in ("a", "an") else int(match.group(1))
        unit = _AGO_UNITS[match.group(2)]
        return _now().subtract(**{unit: amount})

    return None


def parse_date_filter(text: str) -> DateBound:
    """Parse a filter bound.

    Returns a ``time`` for time-of-day input, otherwise a naive local
    ``datetime``.

    Raises:
        DateParseError: If the input cannot be parsed
    """
    s = text.strip()
    if not s:
        raise DateParseError("Empty date string")

    tod = parse_time_of_day(s)
    if tod is not None:
        return tod

    parsed = _parse_natural(s.lower())
    if parsed is None:
        try:
            parsed = pendulum.parse(s, strict=False, tz=pendulum.local_timezone())
        except (ValueError, OverflowError) as e:
            raise DateParseError(f"Failed to parse date: {text!r}") from e
        if not isinstance(parsed, pendulum.DateTime):
            raise DateParseError(f"Failed to parse date: {text!r}")

    naive = parsed.naive()
    return datetime(
        naive.year, naive.month, naive.day, naive.hour, naive.minute, naive.second
    )


def resolve_bound(bound: DateBound, today: Optional[datetime] = None) -> datetime:
    """Anchor a time-of-day bound to a day (today by default)."""
    if isinstance(bound, datetime):
        return bound
    day = (today or datetime.now()).date()
    return datetime.combine(day, bound)


def parse_date_range(text: str) -> tuple[datetime, Optional[datetime]]:
    """Parse "START to END" (also "through" or " - "), or a single start.

    Time-of-day parts are anchored to today.
    """
    for sep in RANGE_SEPARATORS:
        if sep in text:
            start_str, end_str = text.split(sep, 1)
            start = resolve_bound(parse_date_filter(start_str))
            end = resolve_bound(parse_date_filter(end_str))
            return start, end

    return resolve_bound(parse_date_filter(text)), None


def parse_duration(text: str) -> timedelta:
    """Parse "1:30" (hours:minutes) or compound "1h30m", "2d", "90s"."""
    s = text.strip().lower()

    match = _DURATION_CLOCK_RE.match(s)
    if match:
        return timedelta(hours=int(match.group(1)), minutes=int(match.group(2)))

    parts = _DURATION_PART_RE.findall(s)
    if not parts or _DURATION_PART_RE.sub("", s).strip():
        raise DateParseError(
            f"Invalid duration format: {text!r}. Use XX[dhms] or HH:MM"
        )

    units = {"d": "days", "h": "hours", "m": "minutes", "s": "seconds"}
    total = timedelta()
    for amount, unit in parts:
        total += timedelta(**{units[unit]: int(amount)})
    return total


def parse_tag_timestamp(value: str) -> Optional[datetime]:
    """Parse a timestamp stored as a tag value, e.g. @done(2025-01-01 11:00)."""
    for fmt in TAG_TIMESTAMP_FORMATS:
        try:
            return datetime.strptime(value.strip(), fmt)
        except ValueError:
            continue
    return None
