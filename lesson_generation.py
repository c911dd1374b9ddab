from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Mapping
from dataclasses import asdict, dataclass
from datetime import date
from typing import Any, Iterable, Iterator, NamedTuple, Optional

from calendar_dates import (
    FRIDAY,
    MONDAY,
    compare,
    format_date,
    iter_dates,
    parse_date,
    weekday_of,
)
from errors import IncompleteSlotData, InvalidDate

UNDECIDED_SUBJECT = "미정"
LESSON_TITLE_SUFFIX = "차시"

logger = logging.getLogger(__name__)


def _field(record: Any, name: str) -> Any:
    if isinstance(record, Mapping):
        return record.get(name)
    return getattr(record, name, None)


def _positive_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = int(value)
    except (TypeError, ValueError):
        return None
    if number != value and str(number) != str(value).strip():
        return None
    return number if number > 0 else None


@dataclass(frozen=True)
class SlotSpec:
    """A weekly recurring teaching slot (weekday 1=Mon ... 5=Fri)."""

    grade: int
    class_number: int
    weekday: int
    period: int
    subject: str = ""

    @classmethod
    def from_record(cls, record: Any) -> Optional["SlotSpec"]:
        values = {
            name: _positive_int(_field(record, name))
            for name in ("grade", "class_number", "weekday", "period")
        }
        if any(value is None for value in values.values()):
            return None
        if not MONDAY <= values["weekday"] <= FRIDAY:
            return None
        subject = _field(record, "subject")
        return cls(subject=str(subject).strip() if subject else "", **values)


def coerce_slots(records: Iterable[Any]) -> list[SlotSpec]:
    """Turn stored slot rows into SlotSpecs, dropping incomplete and repeated ones.

    Two identical slots would hand out two orders for the same key on the
    same day, so only the first copy is kept.
    """
    slots: list[SlotSpec] = []
    seen: set[SlotSpec] = set()
    for record in records:
        slot = SlotSpec.from_record(record)
        if slot is None:
            logger.warning(
                "Skipping incomplete timetable slot %s (grade=%r class=%r weekday=%r period=%r)",
                _field(record, "id"),
                _field(record, "grade"),
                _field(record, "class_number"),
                _field(record, "weekday"),
                _field(record, "period"),
            )
            continue
        if slot in seen:
            logger.warning("Skipping duplicate timetable slot %s (%s)", _field(record, "id"), slot)
            continue
        seen.add(slot)
        slots.append(slot)
    return slots


class LessonOrderKey(NamedTuple):
    grade: int
    class_number: int
    period: int
    subject: str

    @classmethod
    def for_slot(cls, slot: SlotSpec) -> "LessonOrderKey":
        return cls(slot.grade, slot.class_number, slot.period, slot.subject or UNDECIDED_SUBJECT)


class HolidaySet:
    def __init__(self, dates: Iterable[str] = ()):
        self._dates = frozenset(dates)

    @classmethod
    def from_entries(
        cls,
        entries: Iterable[Any],
        start: date,
        end: date,
    ) -> "HolidaySet":
        dates: set[str] = set()
        for entry in entries:
            # entries without an is_holiday flag are plain holiday dates
            if _has_flag(entry) and not _field(entry, "is_holiday"):
                continue
            raw = _field(entry, "event_date")
            if raw is None:
                raw = _field(entry, "date")
            try:
                parsed = parse_date(raw)
            except InvalidDate:
                logger.warning("Ignoring holiday with invalid date %r", raw)
                continue
            if compare(parsed, start) < 0 or compare(parsed, end) > 0:
                continue
            dates.add(format_date(parsed))
        return cls(dates)

    def __contains__(self, value: object) -> bool:
        if isinstance(value, date):
            value = format_date(value)
        return value in self._dates

    def __len__(self) -> int:
        return len(self._dates)

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._dates))


def _has_flag(entry: Any) -> bool:
    if isinstance(entry, Mapping):
        return "is_holiday" in entry
    return hasattr(entry, "is_holiday")


class LessonOrderCounter:
    def __init__(self) -> None:
        self._next: dict[LessonOrderKey, int] = {}

    def peek(self, key: LessonOrderKey) -> int:
        return self._next.get(key, 1)

    def advance(self, key: LessonOrderKey) -> None:
        self._next[key] = self.peek(key) + 1

    def next_order(self, key: LessonOrderKey) -> int:
        order = self.peek(key)
        self.advance(key)
        return order

    def totals(self) -> dict[LessonOrderKey, int]:
        """Number of lessons handed out per key so far."""
        return {key: value - 1 for key, value in self._next.items()}


@dataclass(frozen=True)
class LessonDraft:
    lesson_date: str
    grade: int
    class_number: int
    period: int
    lesson_order: int
    lesson_title: str
    subject: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def lesson_title(order: int) -> str:
    return f"{order}{LESSON_TITLE_SUFFIX}"


def expand_occurrences(
    start: date,
    end: date,
    slots: Iterable[SlotSpec],
    holidays: HolidaySet,
) -> Iterator[tuple[date, SlotSpec]]:
    """Yield ``(date, slot)`` for every school day in range, in slot-list order."""
    by_weekday: dict[int, list[SlotSpec]] = defaultdict(list)
    for slot in slots:
        by_weekday[slot.weekday].append(slot)
    for current in iter_dates(start, end):
        weekday = weekday_of(current)
        if not MONDAY <= weekday <= FRIDAY:
            continue
        if current in holidays:
            continue
        day_slots = by_weekday.get(weekday)
        if not day_slots:
            logger.debug("%s: no slots scheduled, nothing generated", format_date(current))
            continue
        for slot in day_slots:
            yield current, slot


def _checked_draft(lesson_date: date, slot: SlotSpec, order: int) -> LessonDraft:
    date_text = format_date(lesson_date)
    parse_date(date_text)
    for name, value in (
        ("grade", slot.grade),
        ("class_number", slot.class_number),
        ("period", slot.period),
        ("lesson_order", order),
    ):
        if _positive_int(value) != value:
            raise IncompleteSlotData(name, value, slot)
    return LessonDraft(
        lesson_date=date_text,
        grade=slot.grade,
        class_number=slot.class_number,
        period=slot.period,
        lesson_order=order,
        lesson_title=lesson_title(order),
        subject=slot.subject or "",
    )


def build_lessons(
    occurrences: Iterable[tuple[date, SlotSpec]],
    counter: Optional[LessonOrderCounter] = None,
) -> list[LessonDraft]:
    counter = counter if counter is not None else LessonOrderCounter()
    lessons: list[LessonDraft] = []
    for lesson_date, slot in occurrences:
        key = LessonOrderKey.for_slot(slot)
        lessons.append(_checked_draft(lesson_date, slot, counter.peek(key)))
        counter.advance(key)
    return lessons


def generate_lessons(
    start: date,
    end: date,
    slots: Iterable[SlotSpec],
    holidays: Optional[HolidaySet] = None,
) -> list[LessonDraft]:
    occurrences = expand_occurrences(start, end, list(slots), holidays or HolidaySet())
    return build_lessons(occurrences)
