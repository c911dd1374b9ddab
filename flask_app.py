from __future__ import annotations

import logging
import os
import tempfile
import uuid
from datetime import date

from flask import Flask, after_this_request, jsonify, request, send_file
from sqlalchemy import text

from calendar_service import SchoolCalendarManager
from db import get_session, init_db
from errors import LessonGenerationError, PersistenceFailure
from lesson_service import LessonGenerationManager, LessonManager
from timetable_service import TimetableManager

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
EXPORT_DIR = os.getenv("EXPORT_DIR") or tempfile.gettempdir()

app = Flask(__name__)
app.json.ensure_ascii = False
init_db()
session_factory = get_session
timetable_manager = TimetableManager(session_factory)
calendar_manager = SchoolCalendarManager(session_factory)
generation_manager = LessonGenerationManager(session_factory)
lesson_manager = LessonManager(session_factory)


def _to_int(value) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _json_payload() -> dict:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValueError("expected JSON payload")
    return payload


def _error(message: str, status: int, **extra):
    body = {"success": False, "error": message}
    body.update(extra)
    return jsonify(body), status


@app.errorhandler(PersistenceFailure)
def handle_persistence_failure(exc: PersistenceFailure):
    app.logger.error("Storage failure during %s: %s", exc.stage, exc.original)
    return _error("데이터베이스 처리 중 오류가 발생했습니다.", 500, stage=exc.stage)


@app.errorhandler(ValueError)
def handle_value_error(exc: ValueError):
    app.logger.warning("Rejected request to %s: %s", request.path, exc)
    stage = exc.stage if isinstance(exc, LessonGenerationError) else None
    return _error(str(exc), 400, **({"stage": stage} if stage else {}))


@app.errorhandler(LookupError)
def handle_lookup_error(exc: LookupError):
    app.logger.warning("Lookup failed for %s: %s", request.path, exc)
    return _error(str(exc), 404)


@app.route("/api/db-check")
def db_check():
    try:
        with session_factory() as session:
            result = session.execute(text("SELECT 1")).scalar()
    except Exception as exc:
        app.logger.exception("Database check failed")
        return jsonify({"status": "error", "message": str(exc)}), 500
    return jsonify({"status": "ok", "message": "database reachable", "data": result})


@app.route("/api/timetables", methods=["GET"])
def list_timetables():
    return jsonify({"success": True, "timetables": timetable_manager.list_timetables()})


@app.route("/api/timetables", methods=["POST"])
def save_timetable():
    payload = _json_payload()
    start_date = payload.get("start_date")
    end_date = payload.get("end_date")
    if not start_date or not end_date:
        return _error("시작일, 종료일은 필수입니다.", 400)
    slots = payload.get("slots")
    if not isinstance(slots, list) or not slots:
        return _error("시간표 슬롯이 필요합니다.", 400)
    timetable_id = timetable_manager.save_timetable(
        start_date,
        end_date,
        slots,
        name=payload.get("name"),
    )
    return jsonify({"success": True, "timetableId": timetable_id, "message": "시간표가 저장되었습니다."})


@app.route("/api/timetables/<int:timetable_id>")
def timetable_detail(timetable_id: int):
    return jsonify({"success": True, "timetable": timetable_manager.get_timetable(timetable_id)})


@app.route("/api/calendar", methods=["POST"])
def save_calendar():
    payload = _json_payload()
    events = payload.get("events")
    if not isinstance(events, list):
        return _error("events 배열이 필요합니다.", 400)
    count = calendar_manager.replace_events(events)
    return jsonify({"success": True, "count": count, "message": f"{count}개 일정이 저장되었습니다."})


@app.route("/api/generate-lessons", methods=["POST"])
def generate_lessons():
    payload = _json_payload()
    timetable_id = _to_int(payload.get("timetableId") or payload.get("timetable_id"))
    if not timetable_id:
        return _error("시간표 ID가 필요합니다.", 400)
    result = generation_manager.generate(timetable_id)
    app.logger.info(
        "Lessons regenerated for timetable %s: %d (%s)",
        timetable_id,
        result.count,
        result.message,
    )
    return jsonify({"success": True, **result.to_dict()})


@app.route("/api/weekly-lessons")
def weekly_lessons():
    start = request.args.get("start")
    end = request.args.get("end")
    if not start or not end:
        return _error("필수 파라미터가 없습니다. (start, end)", 400)
    data = lesson_manager.weekly_lessons(start, end)
    return jsonify(
        {
            "success": True,
            "lessons": data["lessons"],
            "calendarEvents": data["calendar_events"],
        }
    )


@app.route("/api/memos", methods=["POST"])
def save_memo():
    payload = _json_payload()
    lesson_id = _to_int(payload.get("lessonId") or payload.get("lesson_id"))
    if not lesson_id:
        return _error("lessonId가 필요합니다.", 400)
    status = lesson_manager.save_memo(lesson_id, payload.get("memoText") or payload.get("memo_text"))
    return jsonify({"success": True, "status": status, "message": "메모가 저장되었습니다."})


@app.route("/api/lessons/export")
def export_lessons():
    start = request.args.get("start")
    end = request.args.get("end")
    export_path = os.path.join(EXPORT_DIR, f"lessons-{uuid.uuid4().hex[:8]}.xlsx")
    count = lesson_manager.export_to_excel(export_path, start or None, end or None)
    if not count:
        return _error("내보낼 수업이 없습니다.", 404)

    @after_this_request
    def _cleanup(response):
        try:
            os.remove(export_path)
        except OSError:
            app.logger.warning("Could not remove export file %s", export_path)
        return response

    app.logger.info("Exported %d lessons to %s", count, export_path)
    return send_file(
        export_path,
        as_attachment=True,
        download_name=f"lessons-{date.today().isoformat()}.xlsx",
    )


if __name__ == "__main__":
    logging.basicConfig(level=LOG_LEVEL)
    app.run(debug=True)
