from __future__ import annotations

import logging
import os
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterator, Optional

import pandas as pd
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from calendar_dates import compare, day_span, format_date, is_valid_date, parse_date
from calendar_service import SchoolCalendarManager
from errors import (
    InvalidRange,
    LessonGenerationError,
    LessonNotFound,
    MissingTimetable,
    PersistenceFailure,
    RangeTooLarge,
)
from lesson_generation import HolidaySet, LessonDraft, coerce_slots, generate_lessons
from models import Lesson, LessonMemo, SchoolCalendarEvent, Timetable, TimetableSlot

MAX_GENERATION_DAYS = int(os.getenv("LESSON_MAX_DAYS", "1000"))

STAGE_LOAD = "load"
STAGE_VALIDATE = "validate"
STAGE_EXPAND = "expand"
STAGE_REPLACE = "replace"

MESSAGE_NO_SLOTS = "시간표 슬롯이 없어 수업 데이터를 생성하지 않았습니다. (학사일정 기반으로 날짜 범위만 확인됨)"
MESSAGE_NO_LESSONS = "해당 기간에 생성할 수업이 없습니다. (주말 및 휴일 제외)"
MESSAGE_GENERATED = "{count}개의 수업이 생성되었습니다."

EXPORT_COLUMNS = {
    "lesson_date": "Date",
    "grade": "Grade",
    "class_number": "Class",
    "period": "Period",
    "subject": "Subject",
    "lesson_order": "Order",
    "lesson_title": "Title",
    "memo_text": "Memo",
}

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GenerationResult:
    timetable_id: int
    start_date: str
    end_date: str
    count: int
    message: str
    removed: int = 0
    lessons: tuple[LessonDraft, ...] = field(default=(), repr=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timetable_id": self.timetable_id,
            "start_date": self.start_date,
            "end_date": self.end_date,
            "count": self.count,
            "message": self.message,
            "removed": self.removed,
        }


def summary_message(lesson_count: int, slot_count: int) -> str:
    if lesson_count == 0:
        return MESSAGE_NO_SLOTS if slot_count == 0 else MESSAGE_NO_LESSONS
    return MESSAGE_GENERATED.format(count=lesson_count)


def _is_canonical_date(value: Any) -> bool:
    # range deletes compare raw text, so padded values count as broken
    return isinstance(value, str) and value == value.strip() and is_valid_date(value)


class TimetableLocks:
    """One mutex per timetable so regenerations of the same range never interleave.

    An entry lives only while some run holds or waits on it.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[Any, list] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, timetable_id: Any) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(timetable_id, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[timetable_id]


class LessonGenerationManager:
    def __init__(
        self,
        session_factory: Callable,
        max_days: int = MAX_GENERATION_DAYS,
        locks: Optional[TimetableLocks] = None,
    ):
        self._session_factory = session_factory
        self.max_days = max_days
        self._locks = locks if locks is not None else TimetableLocks()

    def generate(self, timetable_id: int) -> GenerationResult:
        """Regenerate every lesson of a timetable in a single transaction.

        Lessons already stored inside the timetable's date range are replaced,
        rows with unusable dates anywhere in the table are dropped, and nothing
        is written at all if any step fails.
        """
        with self._locks.hold(timetable_id):
            return self._generate(timetable_id)

    def _generate(self, timetable_id: int) -> GenerationResult:
        stage = STAGE_LOAD
        with self._session_factory() as session:
            try:
                timetable = self._load_timetable(session, timetable_id)
                slot_rows = (
                    session.query(TimetableSlot)
                    .filter(TimetableSlot.timetable_id == timetable.id)
                    .order_by(TimetableSlot.id)
                    .all()
                )
                slots = coerce_slots(slot_rows)

                stage = STAGE_VALIDATE
                start, end = self._validated_range(timetable)
                start_text, end_text = format_date(start), format_date(end)

                stage = STAGE_LOAD
                holidays = self._load_holidays(session, start, end)

                stage = STAGE_EXPAND
                drafts = generate_lessons(start, end, slots, holidays)

                stage = STAGE_REPLACE
                removed = self._replace_lessons(session, start_text, end_text, drafts)
                session.commit()
            except LessonGenerationError as exc:
                session.rollback()
                if exc.stage is None:
                    exc.stage = stage
                logger.warning(
                    "Lesson generation for timetable %s failed during %s: %s",
                    timetable_id,
                    stage,
                    exc,
                )
                raise
            except SQLAlchemyError as exc:
                session.rollback()
                logger.exception(
                    "Lesson generation for timetable %s failed during %s",
                    timetable_id,
                    stage,
                )
                raise PersistenceFailure(stage, exc) from exc
        logger.info(
            "Generated %d lessons for timetable %s (%s..%s, %d slots, %d holidays, %d replaced)",
            len(drafts),
            timetable_id,
            start_text,
            end_text,
            len(slots),
            len(holidays),
            removed,
        )
        return GenerationResult(
            timetable_id=timetable.id,
            start_date=start_text,
            end_date=end_text,
            count=len(drafts),
            message=summary_message(len(drafts), len(slots)),
            removed=removed,
            lessons=tuple(drafts),
        )

    def _load_timetable(self, session, timetable_id: int) -> Timetable:
        timetable = (
            session.query(Timetable)
            .filter(Timetable.id == timetable_id)
            .with_for_update()
            .one_or_none()
        )
        if timetable is None:
            raise MissingTimetable(timetable_id)
        return timetable

    def _validated_range(self, timetable: Timetable):
        start = parse_date(timetable.start_date)
        end = parse_date(timetable.end_date)
        if compare(start, end) > 0:
            raise InvalidRange(format_date(start), format_date(end))
        days = day_span(start, end)
        if days > self.max_days:
            raise RangeTooLarge(format_date(start), format_date(end), days, self.max_days)
        return start, end

    def _load_holidays(self, session, start, end) -> HolidaySet:
        rows = (
            session.query(SchoolCalendarEvent.event_date, SchoolCalendarEvent.is_holiday)
            .filter(
                SchoolCalendarEvent.event_date.between(format_date(start), format_date(end)),
                SchoolCalendarEvent.is_holiday.is_(True),
            )
            .all()
        )
        return HolidaySet.from_entries(
            ({"event_date": row.event_date, "is_holiday": row.is_holiday} for row in rows),
            start,
            end,
        )

    def _replace_lessons(
        self,
        session,
        start_text: str,
        end_text: str,
        drafts: list[LessonDraft],
    ) -> int:
        invalid_ids = [
            row.id
            for row in session.query(Lesson.id, Lesson.lesson_date).all()
            if not _is_canonical_date(row.lesson_date)
        ]
        if invalid_ids:
            logger.warning("Removing %d lessons with invalid dates", len(invalid_ids))
            session.query(LessonMemo).filter(LessonMemo.lesson_id.in_(invalid_ids)).delete(
                synchronize_session=False
            )
            session.query(Lesson).filter(Lesson.id.in_(invalid_ids)).delete(
                synchronize_session=False
            )
        in_range = select(Lesson.id).where(Lesson.lesson_date.between(start_text, end_text))
        session.query(LessonMemo).filter(LessonMemo.lesson_id.in_(in_range)).delete(
            synchronize_session=False
        )
        removed = (
            session.query(Lesson)
            .filter(Lesson.lesson_date.between(start_text, end_text))
            .delete(synchronize_session=False)
        )
        if drafts:
            session.bulk_save_objects([Lesson(**draft.to_dict()) for draft in drafts])
        return removed


def _lesson_row(lesson: Lesson, memo: Optional[LessonMemo]) -> dict[str, Any]:
    return {
        "id": lesson.id,
        "lesson_date": lesson.lesson_date,
        "grade": lesson.grade,
        "class_number": lesson.class_number,
        "period": lesson.period,
        "lesson_order": lesson.lesson_order,
        "lesson_title": lesson.lesson_title,
        "subject": lesson.subject or "",
        "memo_id": memo.id if memo else None,
        "memo_text": memo.memo_text if memo else None,
        "memo_updated_at": memo.updated_at.isoformat() if memo and memo.updated_at else None,
    }


class LessonManager:
    def __init__(self, session_factory: Callable):
        self._session_factory = session_factory
        self._calendar = SchoolCalendarManager(session_factory)

    def lessons_between(self, start: str, end: str) -> list[dict[str, Any]]:
        start_text = format_date(parse_date(start))
        end_text = format_date(parse_date(end))
        with self._session_factory() as session:
            rows = (
                session.query(Lesson, LessonMemo)
                .outerjoin(LessonMemo, LessonMemo.lesson_id == Lesson.id)
                .filter(Lesson.lesson_date.between(start_text, end_text))
                .order_by(Lesson.grade, Lesson.class_number, Lesson.lesson_date, Lesson.period)
                .all()
            )
        return [_lesson_row(lesson, memo) for lesson, memo in rows]

    def weekly_lessons(self, start: str, end: str) -> dict[str, Any]:
        return {
            "lessons": self.lessons_between(start, end),
            "calendar_events": self._calendar.events_between(start, end),
        }

    def save_memo(self, lesson_id: int, memo_text: Optional[str]) -> str:
        """Store, replace or clear the memo of a lesson; returns what happened."""
        text = str(memo_text).strip() if memo_text else ""
        with self._session_factory() as session:
            if session.get(Lesson, lesson_id) is None:
                raise LessonNotFound(lesson_id)
            memo = (
                session.query(LessonMemo)
                .filter(LessonMemo.lesson_id == lesson_id)
                .one_or_none()
            )
            if memo is None and not text:
                return "unchanged"
            if not text:
                session.delete(memo)
                status = "deleted"
            elif memo is None:
                session.add(LessonMemo(lesson_id=lesson_id, memo_text=text))
                status = "created"
            else:
                memo.memo_text = text
                memo.updated_at = datetime.utcnow()
                status = "updated"
            session.commit()
        return status

    def export_to_excel(
        self,
        excel_path: str,
        start: Optional[str] = None,
        end: Optional[str] = None,
    ) -> int:
        if (start is None) != (end is None):
            raise ValueError("start and end must be given together")
        if start is not None:
            rows = self.lessons_between(start, end)
        else:
            with self._session_factory() as session:
                records = (
                    session.query(Lesson, LessonMemo)
                    .outerjoin(LessonMemo, LessonMemo.lesson_id == Lesson.id)
                    .order_by(Lesson.grade, Lesson.class_number, Lesson.lesson_date, Lesson.period)
                    .all()
                )
            rows = [_lesson_row(lesson, memo) for lesson, memo in records]
        if not rows:
            return 0
        df = pd.DataFrame(rows, columns=list(EXPORT_COLUMNS))
        df = df.rename(columns=EXPORT_COLUMNS)
        df.to_excel(excel_path, index=False)
        return len(rows)
