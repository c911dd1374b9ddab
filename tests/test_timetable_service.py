"""
Unit Tests: Timetable Storage

Test coverage:
1. Classroom number parsing
2. Saving timetables with normalized slots
3. Listing and fetching stored timetables
"""

import unittest

from db import build_session_factory
from errors import InvalidDate, InvalidRange, MissingTimetable
from models import TimetableSlot
from timetable_service import TimetableManager, parse_classroom


class TestParseClassroom(unittest.TestCase):
    def test_splits_grade_and_class(self):
        self.assertEqual(parse_classroom("203"), (2, 3))
        self.assertEqual(parse_classroom(612), (6, 12))
        self.assertEqual(parse_classroom(" 101 "), (1, 1))

    def test_rejects_bad_numbers(self):
        for value in ("99", "1000", "A01", "", None):
            with self.subTest(value=value):
                with self.assertRaises(ValueError):
                    parse_classroom(value)


class TestTimetableManager(unittest.TestCase):
    def setUp(self):
        self.session_factory = build_session_factory("sqlite://")
        self.manager = TimetableManager(self.session_factory)

    def test_save_with_classroom_slots(self):
        timetable_id = self.manager.save_timetable(
            "2025-03-03",
            "2025-07-18",
            [
                {"classroom": "203", "weekday": 1, "period": 2, "subject": " 수학 "},
                {"grade": 1, "class_number": 4, "weekday": "5", "period": "6", "subject": ""},
            ],
            name="1학기",
        )
        timetable = self.manager.get_timetable(timetable_id)
        self.assertEqual(timetable["semester"], 1)
        self.assertEqual(timetable["name"], "1학기")
        self.assertEqual(timetable["slot_count"], 2)
        self.assertEqual(
            [
                (slot["classroom"], slot["grade"], slot["class_number"], slot["weekday"], slot["period"], slot["subject"])
                for slot in timetable["slots"]
            ],
            [("203", 2, 3, 1, 2, "수학"), ("104", 1, 4, 5, 6, None)],
        )

    def test_second_semester(self):
        timetable_id = self.manager.save_timetable(
            "2025-08-18", "2025-12-31", [{"classroom": "101", "weekday": 2, "period": 1}]
        )
        self.assertEqual(self.manager.get_timetable(timetable_id)["semester"], 2)

    def test_rejects_bad_dates_and_ranges(self):
        slots = [{"classroom": "101", "weekday": 1, "period": 1}]
        with self.assertRaises(InvalidDate):
            self.manager.save_timetable("0000-00-00", "2025-03-07", slots)
        with self.assertRaises(InvalidRange):
            self.manager.save_timetable("2025-03-07", "2025-03-03", slots)

    def test_rejects_bad_slots(self):
        cases = [
            [],
            [{"classroom": "101", "weekday": 6, "period": 1}],
            [{"classroom": "101", "weekday": 1, "period": 0}],
            [{"weekday": 1, "period": 1}],
            ["101-1-1"],
        ]
        for slots in cases:
            with self.subTest(slots=slots):
                with self.assertRaises(ValueError):
                    self.manager.save_timetable("2025-03-03", "2025-03-07", slots)
        with self.session_factory() as session:
            self.assertEqual(session.query(TimetableSlot).count(), 0)

    def test_rejects_duplicate_slots(self):
        slots = [
            {"classroom": "101", "weekday": 1, "period": 1, "subject": "Math"},
            {"grade": 1, "class_number": 1, "weekday": "1", "period": "1", "subject": " Math "},
        ]
        with self.assertRaises(ValueError) as ctx:
            self.manager.save_timetable("2025-03-03", "2025-03-07", slots)
        self.assertIn("slot #2 duplicates slot #1", str(ctx.exception))
        self.assertEqual(self.manager.list_timetables(), [])

    def test_same_period_with_different_subjects_is_allowed(self):
        timetable_id = self.manager.save_timetable(
            "2025-03-03",
            "2025-03-07",
            [
                {"classroom": "101", "weekday": 1, "period": 1, "subject": "Math"},
                {"classroom": "101", "weekday": 1, "period": 1, "subject": "Art"},
            ],
        )
        self.assertEqual(self.manager.get_timetable(timetable_id)["slot_count"], 2)

    def test_list_newest_first_with_slot_counts(self):
        older = self.manager.save_timetable(
            "2025-03-03", "2025-07-18", [{"classroom": "101", "weekday": 1, "period": 1}]
        )
        newer = self.manager.save_timetable(
            "2025-08-18",
            "2025-12-31",
            [
                {"classroom": "101", "weekday": 1, "period": 1},
                {"classroom": "102", "weekday": 2, "period": 1},
            ],
        )
        listing = self.manager.list_timetables()
        self.assertEqual([(item["id"], item["slot_count"]) for item in listing], [(newer, 2), (older, 1)])
        self.assertNotIn("slots", listing[0])

    def test_missing_timetable(self):
        with self.assertRaises(MissingTimetable):
            self.manager.get_timetable(42)


if __name__ == "__main__":
    unittest.main()
