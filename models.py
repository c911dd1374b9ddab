from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)

from db import Base

# Calendar dates are stored as canonical YYYY-MM-DD strings.
DATE_LENGTH = 10


class Timetable(Base):
    __tablename__ = "timetables"

    id = Column(Integer, primary_key=True)
    semester = Column(Integer, nullable=False)
    start_date = Column(String(DATE_LENGTH), nullable=False)
    end_date = Column(String(DATE_LENGTH), nullable=False)
    name = Column(String(100))
    created_at = Column(DateTime, default=datetime.utcnow)


class TimetableSlot(Base):
    __tablename__ = "timetable_slots"

    id = Column(Integer, primary_key=True)
    timetable_id = Column(
        Integer,
        ForeignKey("timetables.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    classroom = Column(String(10))
    grade = Column(Integer)
    class_number = Column(Integer)
    weekday = Column(Integer)  # 1=Mon ... 5=Fri
    period = Column(Integer)
    subject = Column(String(50))

    __table_args__ = (
        Index("idx_schedule", "grade", "class_number", "weekday", "period"),
    )


class SchoolCalendarEvent(Base):
    __tablename__ = "school_calendar"

    id = Column(Integer, primary_key=True)
    event_date = Column(String(DATE_LENGTH), index=True, nullable=False)
    title = Column(String(200))
    description = Column(Text)
    is_holiday = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)


class Lesson(Base):
    __tablename__ = "lessons"

    id = Column(Integer, primary_key=True)
    lesson_date = Column(String(DATE_LENGTH), index=True)
    grade = Column(Integer, nullable=False)
    class_number = Column(Integer, nullable=False)
    period = Column(Integer, nullable=False)
    lesson_order = Column(Integer, nullable=False)
    lesson_title = Column(String(200))
    subject = Column(String(50))
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_class", "grade", "class_number"),
    )


class LessonMemo(Base):
    __tablename__ = "lesson_memos"

    id = Column(Integer, primary_key=True)
    lesson_id = Column(Integer, ForeignKey("lessons.id"), unique=True, index=True, nullable=False)
    memo_text = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
