from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Optional

from sqlalchemy import func

from calendar_dates import FRIDAY, MONDAY, compare, format_date, parse_date, semester_for
from errors import InvalidRange, MissingTimetable
from models import Timetable, TimetableSlot

logger = logging.getLogger(__name__)


def _as_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def parse_classroom(classroom: Any) -> tuple[int, int]:
    """Split a room number such as ``"203"`` into grade 2, class 3."""
    number = _as_int(classroom)
    if number is None or not 100 <= number <= 999:
        raise ValueError(f"잘못된 교실 번호입니다: {classroom}")
    return number // 100, number % 100


def _normalize_slot(index: int, slot: Any) -> dict[str, Any]:
    if not isinstance(slot, dict):
        raise ValueError(f"slot #{index} must be an object")
    classroom = slot.get("classroom")
    grade = _as_int(slot.get("grade"))
    class_number = _as_int(slot.get("class_number"))
    if grade is None or class_number is None:
        if classroom in (None, ""):
            raise ValueError(f"slot #{index} needs a classroom or grade and class_number")
        grade, class_number = parse_classroom(classroom)
    if grade < 1 or class_number < 1:
        raise ValueError(f"slot #{index} has an invalid grade or class number")
    weekday = _as_int(slot.get("weekday"))
    if weekday is None or not MONDAY <= weekday <= FRIDAY:
        raise ValueError(f"slot #{index} weekday must be 1-5, got {slot.get('weekday')!r}")
    period = _as_int(slot.get("period"))
    if period is None or period < 1:
        raise ValueError(f"slot #{index} period must be a positive integer, got {slot.get('period')!r}")
    subject = str(slot.get("subject") or "").strip()
    return {
        "classroom": str(classroom).strip() if classroom not in (None, "") else f"{grade}{class_number:02d}",
        "grade": grade,
        "class_number": class_number,
        "weekday": weekday,
        "period": period,
        "subject": subject or None,
    }


def _reject_duplicates(slots: list[dict[str, Any]]) -> None:
    seen: dict[tuple, int] = {}
    for index, slot in enumerate(slots, start=1):
        key = (
            slot["grade"],
            slot["class_number"],
            slot["weekday"],
            slot["period"],
            slot["subject"] or "",
        )
        if key in seen:
            raise ValueError(f"slot #{index} duplicates slot #{seen[key]}")
        seen[key] = index


class TimetableManager:
    def __init__(self, session_factory: Callable):
        self._session_factory = session_factory

    def save_timetable(
        self,
        start_date: str,
        end_date: str,
        slots: Iterable[dict[str, Any]],
        name: Optional[str] = None,
    ) -> int:
        start = parse_date(start_date)
        end = parse_date(end_date)
        if compare(start, end) > 0:
            raise InvalidRange(format_date(start), format_date(end))
        if not isinstance(slots, (list, tuple)) or not slots:
            raise ValueError("timetable needs at least one slot")
        normalized = [_normalize_slot(index, slot) for index, slot in enumerate(slots, start=1)]
        _reject_duplicates(normalized)
        with self._session_factory() as session:
            timetable = Timetable(
                semester=semester_for(start),
                start_date=format_date(start),
                end_date=format_date(end),
                name=(name or "").strip() or None,
            )
            session.add(timetable)
            session.flush()
            session.bulk_save_objects(
                [TimetableSlot(timetable_id=timetable.id, **values) for values in normalized]
            )
            session.commit()
            timetable_id = timetable.id
        logger.info(
            "Saved timetable %s (%s..%s) with %d slots",
            timetable_id,
            format_date(start),
            format_date(end),
            len(normalized),
        )
        return timetable_id

    def list_timetables(self) -> list[dict[str, Any]]:
        with self._session_factory() as session:
            rows = (
                session.query(Timetable, func.count(TimetableSlot.id))
                .outerjoin(TimetableSlot, TimetableSlot.timetable_id == Timetable.id)
                .group_by(Timetable.id)
                .order_by(Timetable.start_date.desc(), Timetable.id.desc())
                .all()
            )
        return [self._timetable_dict(timetable, slot_count=count) for timetable, count in rows]

    def get_timetable(self, timetable_id: int) -> dict[str, Any]:
        with self._session_factory() as session:
            timetable = session.get(Timetable, timetable_id)
            if timetable is None:
                raise MissingTimetable(timetable_id)
            slots = (
                session.query(TimetableSlot)
                .filter(TimetableSlot.timetable_id == timetable_id)
                .order_by(TimetableSlot.weekday, TimetableSlot.period, TimetableSlot.id)
                .all()
            )
        data = self._timetable_dict(timetable, slot_count=len(slots))
        data["slots"] = [
            {
                "id": slot.id,
                "classroom": slot.classroom,
                "grade": slot.grade,
                "class_number": slot.class_number,
                "weekday": slot.weekday,
                "period": slot.period,
                "subject": slot.subject,
            }
            for slot in slots
        ]
        return data

    @staticmethod
    def _timetable_dict(timetable: Timetable, slot_count: int) -> dict[str, Any]:
        return {
            "id": timetable.id,
            "semester": timetable.semester,
            "start_date": timetable.start_date,
            "end_date": timetable.end_date,
            "name": timetable.name,
            "created_at": timetable.created_at.isoformat() if timetable.created_at else None,
            "slot_count": slot_count,
        }
