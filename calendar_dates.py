"""Canonical calendar dates.

Every date that enters the lesson core goes through :func:`parse_date` once;
the rest of the code only handles the resulting ``datetime.date`` values and
writes them back out with :func:`format_date`.
"""
from __future__ import annotations

import re
from datetime import date, timedelta
from typing import Iterator, Union

from errors import InvalidDate

DATE_PATTERN = re.compile(r"[0-9]{4}-[0-9]{2}-[0-9]{2}")
MIN_YEAR = 1900
MAX_YEAR = 2100

# weekday_of() numbering
SUNDAY = 0
MONDAY = 1
FRIDAY = 5
SATURDAY = 6

DateLike = Union[date, str]


def parse_date(value: object) -> date:
    """Parse a ``YYYY-MM-DD`` string into a date, rejecting impossible days.

    The parsed date must format back to exactly the same text, which rules out
    values such as ``2025-02-30`` or the ``0000-00-00`` sentinel.
    """
    if not isinstance(value, str):
        raise InvalidDate(value, "expected a YYYY-MM-DD string")
    text = value.strip()
    if not DATE_PATTERN.fullmatch(text):
        raise InvalidDate(value, "expected YYYY-MM-DD")
    year, month, day = (int(part) for part in text.split("-"))
    if not MIN_YEAR <= year <= MAX_YEAR:
        raise InvalidDate(value, f"year outside {MIN_YEAR}-{MAX_YEAR}")
    if not 1 <= month <= 12:
        raise InvalidDate(value, "month outside 1-12")
    if not 1 <= day <= 31:
        raise InvalidDate(value, "day outside 1-31")
    try:
        parsed = date(year, month, day)
    except ValueError:
        raise InvalidDate(value, "no such calendar day") from None
    if format_date(parsed) != text:
        raise InvalidDate(value, "date does not round-trip")
    return parsed


def format_date(value: date) -> str:
    if not isinstance(value, date):
        raise InvalidDate(value, "expected a date")
    if not MIN_YEAR <= value.year <= MAX_YEAR:
        raise InvalidDate(value, f"year outside {MIN_YEAR}-{MAX_YEAR}")
    return f"{value.year:04d}-{value.month:02d}-{value.day:02d}"


def is_valid_date(value: object) -> bool:
    try:
        parse_date(value)
    except InvalidDate:
        return False
    return True


def add_days(value: date, days: int) -> date:
    try:
        shifted = value + timedelta(days=days)
    except OverflowError:
        raise InvalidDate(value, f"cannot shift by {days} days") from None
    return parse_date(format_date(shifted))


def weekday_of(value: date) -> int:
    """Day of week with 0 = Sunday, 1 = Monday ... 6 = Saturday."""
    return value.isoweekday() % 7


def _canonical(value: DateLike) -> str:
    if isinstance(value, date):
        return format_date(value)
    return format_date(parse_date(value))


def compare(left: DateLike, right: DateLike) -> int:
    left_text = _canonical(left)
    right_text = _canonical(right)
    if left_text < right_text:
        return -1
    if left_text > right_text:
        return 1
    return 0


def day_span(start: date, end: date) -> int:
    """Number of days in the inclusive range, 0 when ``start`` is after ``end``."""
    return max(0, (end - start).days + 1)


def iter_dates(start: date, end: date) -> Iterator[date]:
    current = start
    while compare(current, end) <= 0:
        yield current
        if current == end:
            return
        current = add_days(current, 1)


def semester_for(start: date) -> int:
    # March-July is the first semester, August-February the second.
    return 1 if 3 <= start.month <= 7 else 2
