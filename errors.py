"""Failures raised by the lesson progression core.

Validation failures double as ``ValueError`` and lookups as ``LookupError``
so callers can map them to client errors without knowing every subclass.
"""
from __future__ import annotations

from typing import Any, Optional


class LessonGenerationError(Exception):
    # Filled in by the generation run with the stage it was in when it failed.
    stage: Optional[str] = None


class InvalidDate(LessonGenerationError, ValueError):
    def __init__(self, value: Any, reason: str = "invalid date"):
        self.value = value
        self.reason = reason
        super().__init__(f"{reason}: {value!r}")


class InvalidRange(LessonGenerationError, ValueError):
    def __init__(self, start_date: str, end_date: str):
        self.start_date = start_date
        self.end_date = end_date
        super().__init__(f"start date {start_date} is after end date {end_date}")


class RangeTooLarge(LessonGenerationError, ValueError):
    def __init__(self, start_date: str, end_date: str, days: int, limit: int):
        self.start_date = start_date
        self.end_date = end_date
        self.days = days
        self.limit = limit
        super().__init__(
            f"range {start_date}..{end_date} spans {days} days (limit {limit})"
        )


class IncompleteSlotData(LessonGenerationError, ValueError):
    def __init__(self, field: str, value: Any, slot: Any = None):
        self.field = field
        self.value = value
        self.slot = slot
        super().__init__(f"slot field {field!r} must be a positive integer, got {value!r}")


class MissingTimetable(LessonGenerationError, LookupError):
    def __init__(self, timetable_id: Any):
        self.timetable_id = timetable_id
        super().__init__(f"timetable {timetable_id} not found")


class PersistenceFailure(LessonGenerationError):
    def __init__(self, stage: str, original: BaseException):
        self.stage = stage
        self.original = original
        super().__init__(f"storage failure during {stage}: {original}")


class LessonNotFound(LookupError):
    def __init__(self, lesson_id: Any):
        self.lesson_id = lesson_id
        super().__init__(f"lesson {lesson_id} not found")
