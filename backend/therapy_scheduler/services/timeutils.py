from __future__ import annotations

import re
from datetime import date, datetime, timedelta
from typing import Iterator

from ..errors import FormatError

TIME_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")
DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

MINUTES_PER_DAY = 24 * 60


def to_minutes(value: str) -> int:
    """Minutes since midnight for a 24h ``HH:MM`` string."""
    m = TIME_RE.match(value or "") if isinstance(value, str) else None
    if not m:
        raise FormatError(f"Invalid time {value!r}, expected HH:MM")
    return int(m.group(1)) * 60 + int(m.group(2))


def from_minutes(minutes: int) -> str:
    if isinstance(minutes, bool) or not isinstance(minutes, int) or not 0 <= minutes < MINUTES_PER_DAY:
        raise FormatError(f"Minute offset {minutes!r} is outside a single day")
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def add_minutes(value: str, minutes: int) -> str:
    return from_minutes(to_minutes(value) + minutes)


def overlaps(start1: int, end1: int, start2: int, end2: int) -> bool:
    # half-open: [10:00, 11:00) and [11:00, 12:00) do not overlap
    return start1 < end2 and start2 < end1


def times_overlap(start1: str, end1: str, start2: str, end2: str) -> bool:
    return overlaps(to_minutes(start1), to_minutes(end1), to_minutes(start2), to_minutes(end2))


def parse_date(value: str) -> date:
    if not isinstance(value, str) or not DATE_RE.match(value):
        raise FormatError(f"Invalid date {value!r}, expected YYYY-MM-DD")
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise FormatError(f"Invalid date {value!r}, expected YYYY-MM-DD") from None


def combine(d: date, hhmm: str) -> datetime:
    return datetime.combine(d, datetime.min.time()) + timedelta(minutes=to_minutes(hhmm))


def day_of_week(d: date) -> int:
    """0 = Sunday ... 6 = Saturday (``date.weekday()`` starts on Monday)."""
    return (d.weekday() + 1) % 7


def date_range(start: date, end: date) -> Iterator[date]:
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)
