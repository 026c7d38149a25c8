from __future__ import annotations

import sys
import unittest
from pathlib import Path

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from coverage_timeline import compute_coverage  # noqa: E402
from intervals import format_time, parse_time  # noqa: E402
from insights import (  # noqa: E402
    BREAK_ADJUSTMENT,
    EXTEND_SHIFT,
    NEW_SHIFT,
    apply_recommendations,
    build_deficit_blocks,
    compute_insights,
)
from models import DayType, RequirementInterval, Shift, Zone  # noqa: E402
from policy_defaults import build_default_rules  # noqa: E402

WEEKDAY = DayType.WEEKDAY


def _coverage(*rows):
    """Coverage for requirement rows ``(start, end, north, south, floater)`` with nothing scheduled."""
    requirements = [RequirementInterval(WEEKDAY, *row) for row in rows]
    return compute_coverage({WEEKDAY: requirements}, {}).timeline


def _north_rows(start, end):
    return [
        (format_time(minute), format_time(minute + 15), 1, 0, 0)
        for minute in range(parse_time(start), parse_time(end), 15)
    ]


class DeficitBlockTests(unittest.TestCase):
    def test_consecutive_deficits_merge_per_zone(self) -> None:
        coverage = _coverage(
            ("06:00", "06:15", 2, 0, 0),
            ("06:15", "06:30", 1, 1, 0),
            ("06:30", "06:45", 0, 0, 0),
            ("06:45", "07:00", 1, 0, 1),
        )
        blocks = build_deficit_blocks(WEEKDAY, coverage[WEEKDAY])

        summary = [(block.id, block.start_time, block.end_time) for block in blocks]
        self.assertEqual(
            summary,
            [
                ("North-06:00-0", "06:00", "06:30"),
                ("South-06:15-0", "06:15", "06:30"),
                ("North-06:45-1", "06:45", "07:00"),
                ("Floater-06:45-0", "06:45", "07:00"),
            ],
        )
        first = blocks[0]
        self.assertEqual(first.peak_shortfall, 2)
        self.assertEqual(first.vehicle_hours, 0.75)


class RecommendationTests(unittest.TestCase):
    def setUp(self) -> None:
        self.rules = build_default_rules()

    def test_adjacent_shift_is_extended_and_remainder_gets_new_shift(self) -> None:
        coverage = _coverage(("06:00", "06:15", 2, 0, 0), ("06:15", "06:30", 2, 0, 0))
        shifts = [Shift("N1", Zone.NORTH, WEEKDAY, "04:00", "06:00")]

        result = compute_insights(WEEKDAY, coverage[WEEKDAY], shifts, self.rules)

        self.assertEqual(result.totals, {"blockCount": 1, "totalVehicleHours": 1.0, "maxShortfall": 2})
        by_type = {rec.type: rec for rec in result.recommendations}
        extend = by_type[EXTEND_SHIFT]
        self.assertEqual(extend.affected_shift_codes, ["N1"])
        self.assertEqual(extend.priority, "high")
        self.assertIn("06:00-06:30", extend.summary)
        self.assertTrue(any("04:00-06:30" in item for item in extend.detail_items))

        new_shift = by_type[NEW_SHIFT]
        self.assertIn("06:00", new_shift.summary)
        self.assertIn("Shortfall of 1 operator(s)", new_shift.summary)
        self.assertEqual(new_shift.proposed_start, "06:00")
        self.assertEqual(new_shift.proposed_end, "13:15")
        self.assertEqual(new_shift.priority, "high")

    def test_shift_beyond_buffer_or_max_length_is_not_extended(self) -> None:
        coverage = _coverage(*_north_rows("12:00", "14:00"))
        shifts = [
            Shift("N1", Zone.NORTH, WEEKDAY, "06:00", "09:00"),
            Shift("N2", Zone.NORTH, WEEKDAY, "04:00", "12:00"),
            Shift("S1", Zone.SOUTH, WEEKDAY, "07:00", "12:00"),
        ]

        result = compute_insights(WEEKDAY, coverage[WEEKDAY], shifts, self.rules)

        self.assertEqual([rec.type for rec in result.recommendations], [NEW_SHIFT])
        self.assertEqual(result.recommendations[0].proposed_end, "19:15")

    def test_close_blocks_share_one_new_shift_proposal(self) -> None:
        coverage = _coverage(
            ("06:00", "06:15", 1, 0, 0),
            ("06:15", "06:30", 0, 0, 0),
            ("06:30", "06:45", 1, 0, 0),
        )
        result = compute_insights(WEEKDAY, coverage[WEEKDAY], [], self.rules)

        first = result.recommendations[0]
        self.assertEqual(first.type, NEW_SHIFT)
        self.assertEqual(
            [entry.interval_key for entry in first.impact],
            ["06:00-06:15::North", "06:30-06:45::North"],
        )

    def test_break_inside_deficit_is_moved(self) -> None:
        coverage = _coverage(("12:00", "12:15", 1, 0, 0), ("12:15", "12:30", 1, 0, 0))
        shift = Shift(
            "N2",
            Zone.NORTH,
            WEEKDAY,
            "08:00",
            "16:00",
            break_start="12:00",
            break_end="12:30",
            break_duration=30,
        )

        result = compute_insights(WEEKDAY, coverage[WEEKDAY], [shift], self.rules)

        moves = [rec for rec in result.recommendations if rec.type == BREAK_ADJUSTMENT]
        self.assertEqual(len(moves), 1)
        self.assertIn("Move it to 12:30-13:00", moves[0].summary)
        self.assertEqual(moves[0].priority, "medium")
        self.assertEqual(moves[0].affected_shift_codes, ["N2"])

    def test_break_moves_toward_the_nearer_shift_edge(self) -> None:
        coverage = _coverage(("10:00", "10:15", 1, 0, 0), ("10:15", "10:30", 1, 0, 0))
        shift = Shift(
            "N3",
            Zone.NORTH,
            WEEKDAY,
            "06:00",
            "15:30",
            break_start="10:00",
            break_end="10:40",
            break_duration=40,
        )

        result = compute_insights(WEEKDAY, coverage[WEEKDAY], [shift], self.rules)

        moves = [rec for rec in result.recommendations if rec.type == BREAK_ADJUSTMENT]
        self.assertEqual(len(moves), 1)
        self.assertIn("Move it to 09:15-09:55", moves[0].summary)

    def test_floater_deficits_are_reported(self) -> None:
        coverage = _coverage(("08:00", "08:15", 0, 0, 1))
        result = compute_insights(WEEKDAY, coverage[WEEKDAY], [], self.rules)

        self.assertEqual([block.zone for block in result.blocks], [Zone.FLOATER])
        self.assertEqual(result.recommendations[0].zone, Zone.FLOATER)

    def test_no_deficit_no_recommendations(self) -> None:
        coverage = _coverage(("08:00", "08:15", 0, 0, 0))
        result = compute_insights(WEEKDAY, coverage[WEEKDAY], [], self.rules)
        self.assertEqual(result.recommendations, [])
        self.assertEqual(result.totals["blockCount"], 0)


class PreviewTests(unittest.TestCase):
    def test_applying_recommendations_recomputes_a_copy(self) -> None:
        coverage = _coverage(("06:00", "06:15", 2, 0, 0), ("06:15", "06:30", 2, 0, 0))
        shifts = [Shift("N1", Zone.NORTH, WEEKDAY, "04:00", "06:00")]
        recommendations = compute_insights(WEEKDAY, coverage[WEEKDAY], shifts, build_default_rules()).recommendations
        extend = [rec for rec in recommendations if rec.type == EXTEND_SHIFT]

        partial = apply_recommendations(coverage, extend)
        self.assertEqual([row.north_excess for row in partial[WEEKDAY]], [-1, -1])

        full = apply_recommendations(coverage, recommendations)
        self.assertEqual([row.north_excess for row in full[WEEKDAY]], [0, 0])
        self.assertEqual([row.status for row in full[WEEKDAY]], ["balanced", "balanced"])

        self.assertEqual([row.north_excess for row in coverage[WEEKDAY]], [-2, -2])


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
