"""
School calendar (학사일정) storage
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Iterable

from calendar_dates import format_date, parse_date
from errors import InvalidDate
from models import SchoolCalendarEvent

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 200


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "y"}
    return bool(value)


def normalize_event(index: int, event: Any) -> dict[str, Any]:
    if not isinstance(event, dict):
        raise ValueError(f"event #{index} must be an object")
    raw_date = event.get("date") or event.get("event_date")
    try:
        event_date = format_date(parse_date(raw_date))
    except InvalidDate as exc:
        raise InvalidDate(raw_date, f"event #{index}: {exc.reason}") from None
    title = str(event.get("title") or "").strip()[:TITLE_MAX_LENGTH]
    description = str(event.get("description") or "").strip()
    return {
        "event_date": event_date,
        "title": title or None,
        "description": description or None,
        "is_holiday": _as_bool(event.get("is_holiday")),
    }


class SchoolCalendarManager:
    def __init__(self, session_factory: Callable):
        self._session_factory = session_factory

    def replace_events(self, events: Iterable[dict[str, Any]]) -> int:
        """Swap the stored academic calendar for ``events`` in one transaction."""
        if not isinstance(events, (list, tuple)):
            raise ValueError("events must be a list")
        if not events:
            raise ValueError("저장할 일정이 없습니다.")
        records = [
            SchoolCalendarEvent(**normalize_event(index, event))
            for index, event in enumerate(events, start=1)
        ]
        with self._session_factory() as session:
            session.query(SchoolCalendarEvent).delete(synchronize_session=False)
            session.bulk_save_objects(records)
            session.commit()
        holidays = sum(1 for record in records if record.is_holiday)
        logger.info("School calendar replaced: %d events (%d holidays)", len(records), holidays)
        return len(records)

    def events_between(self, start: str, end: str) -> list[dict[str, Any]]:
        start_text = format_date(parse_date(start))
        end_text = format_date(parse_date(end))
        with self._session_factory() as session:
            rows = (
                session.query(SchoolCalendarEvent)
                .filter(SchoolCalendarEvent.event_date.between(start_text, end_text))
                .order_by(SchoolCalendarEvent.event_date, SchoolCalendarEvent.id)
                .all()
            )
        return [
            {
                "id": row.id,
                "event_date": row.event_date,
                "title": row.title,
                "description": row.description,
                "is_holiday": bool(row.is_holiday),
            }
            for row in rows
        ]
