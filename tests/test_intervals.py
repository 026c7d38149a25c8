from __future__ import annotations

import sys
import unittest
from pathlib import Path

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from errors import InvalidTimeError  # noqa: E402
from intervals import (  # noqa: E402
    ceil_to_interval,
    duration_hours,
    floor_to_interval,
    format_time,
    interval_key,
    overlaps,
    parse_time,
    time_range,
    timeline_minutes,
)


class IntervalModelTests(unittest.TestCase):
    def test_parse_time_within_service_day(self) -> None:
        self.assertEqual(parse_time("06:00"), 360)
        self.assertEqual(parse_time("23:45"), 23 * 60 + 45)
        self.assertEqual(parse_time("06:00:00"), 360)

    def test_early_morning_labels_wrap_past_midnight(self) -> None:
        self.assertEqual(parse_time("00:30"), 24 * 60 + 30)
        self.assertGreater(parse_time("00:30"), parse_time("23:45"))
        self.assertEqual(format_time(parse_time("00:30")), "00:30")

    def test_malformed_labels_fail_with_the_value(self) -> None:
        for label in ("", "6", "ab:cd", "12:60", None):
            with self.assertRaises(InvalidTimeError) as ctx:
                parse_time(label)
            self.assertEqual(ctx.exception.value, label)
        self.assertIn("HH:MM", str(InvalidTimeError("7pm")))

    def test_grid_helpers(self) -> None:
        self.assertEqual(floor_to_interval(367), 360)
        self.assertEqual(ceil_to_interval(361), 375)
        self.assertEqual(ceil_to_interval(375), 375)
        self.assertEqual(len(timeline_minutes()), 84)
        self.assertEqual(timeline_minutes()[0], 240)
        self.assertEqual(timeline_minutes()[-1], 25 * 60 - 15)

    def test_time_range_crosses_midnight_and_clamps(self) -> None:
        self.assertEqual(time_range("23:00", "01:00"), (23 * 60, 25 * 60))
        self.assertEqual(time_range("23:00", "02:00"), (23 * 60, 25 * 60))
        start, end = time_range("10:00", "10:00")
        self.assertGreater(end, start)

    def test_duration_and_keys(self) -> None:
        self.assertEqual(duration_hours("06:00", "14:30", break_minutes=30), 8.0)
        self.assertEqual(interval_key(360, 375, "North"), "06:00-06:15::North")
        self.assertTrue(overlaps(360, 420, 400, 480))
        self.assertFalse(overlaps(360, 420, 420, 480))


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
