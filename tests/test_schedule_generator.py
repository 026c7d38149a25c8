from __future__ import annotations

import sys
import unittest
from pathlib import Path
from typing import Dict, List

from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from database import AuditLog, Base, get_run  # noqa: E402
from generator.api import generate_shifts  # noqa: E402
from generator.engine import AutoShiftGenerator  # noqa: E402
from intervals import INTERVAL_MINUTES, format_time, parse_time  # noqa: E402
from models import DayType, RequirementInterval, ShiftOrigin, Zone  # noqa: E402
from policy import EngineDefaults  # noqa: E402
from policy_defaults import build_default_rules  # noqa: E402


def requirement_window(
    start: str,
    end: str,
    *,
    north: float = 0,
    south: float = 0,
    floater: float = 0,
    day_type: DayType = DayType.WEEKDAY,
) -> List[RequirementInterval]:
    rows = []
    for minute in range(parse_time(start), parse_time(end), INTERVAL_MINUTES):
        rows.append(
            RequirementInterval(
                day_type,
                format_time(minute),
                format_time(minute + INTERVAL_MINUTES),
                north,
                south,
                floater,
            )
        )
    return rows


class AutoShiftGeneratorTests(unittest.TestCase):
    """Regression tests for the rank-based generation heuristic."""

    def setUp(self) -> None:
        self.rules = build_default_rules()
        self.generator = AutoShiftGenerator(self.rules)

    def test_long_window_is_split_into_compliant_lengths(self) -> None:
        timeline = {DayType.WEEKDAY: requirement_window("05:00", "23:00", north=1)}
        result = self.generator.generate(timeline)

        self.assertGreaterEqual(len(result.shifts), 2)
        for shift in result.shifts:
            self.assertGreaterEqual(shift.total_hours, 5)
            self.assertLessEqual(shift.total_hours, 9.75)
        self.assertEqual(result.shifts[0].start_time, "05:00")
        self.assertEqual(result.shifts[-1].end_time, "23:00")

    def test_short_window_is_extended_to_minimum(self) -> None:
        timeline = {DayType.WEEKDAY: requirement_window("10:00", "12:00", north=1)}
        result = self.generator.generate(timeline)

        self.assertEqual(len(result.shifts), 1)
        shift = result.shifts[0]
        self.assertEqual((shift.start_time, shift.end_time), ("10:00", "15:00"))
        self.assertEqual(shift.total_hours, 5.0)
        self.assertTrue(shift.union_compliant)

    def test_codes_ids_and_origin(self) -> None:
        timeline = {DayType.SATURDAY: requirement_window("06:00", "12:00", south=2)}
        result = self.generator.generate(timeline)

        codes = sorted(shift.shift_code for shift in result.shifts)
        self.assertEqual(codes, ["AUTO-SAT-S01", "AUTO-SAT-S02"])
        for shift in result.shifts:
            self.assertEqual(shift.id, f"{shift.shift_code}-saturday")
            self.assertIs(shift.origin, ShiftOrigin.OPTIMIZED)
            self.assertEqual(shift.vehicle_count, 1)

    def test_floater_requirement_generates_floater_shifts(self) -> None:
        timeline = {DayType.WEEKDAY: requirement_window("06:00", "12:00", floater=2)}
        result = self.generator.generate(timeline)

        self.assertEqual(len(result.shifts), 2)
        self.assertTrue(all(shift.zone is Zone.FLOATER for shift in result.shifts))
        self.assertTrue(all(shift.union_compliant for shift in result.shifts))
        self.assertEqual(result.warnings, [])

    def test_long_shifts_receive_a_meal_break(self) -> None:
        timeline = {DayType.WEEKDAY: requirement_window("06:00", "15:00", north=1)}
        shift = self.generator.generate(timeline).shifts[0]

        self.assertEqual((shift.start_time, shift.end_time), ("06:00", "15:00"))
        self.assertIsNotNone(shift.break_start)
        self.assertEqual(shift.break_duration, 40)
        offset = parse_time(shift.break_start) - parse_time(shift.start_time)
        self.assertLessEqual(offset, 285)
        self.assertEqual(offset % INTERVAL_MINUTES, 0)
        self.assertTrue(shift.union_compliant)

    def test_dip_in_requirement_does_not_close_young_ranks(self) -> None:
        rows = requirement_window("06:00", "08:00", north=2) + requirement_window("08:00", "13:00", north=1)
        result = self.generator.generate({DayType.WEEKDAY: rows})

        self.assertEqual(len(result.shifts), 2)
        for shift in result.shifts:
            self.assertGreaterEqual(shift.total_hours, 5)

    def test_operational_timeline_round_trips_generated_cover(self) -> None:
        timeline = {DayType.WEEKDAY: requirement_window("06:00", "12:00", north=1, south=1)}
        result = self.generator.generate(timeline)
        rows = {row.start_time: row for row in result.operational_timeline[DayType.WEEKDAY]}

        self.assertEqual(rows["06:00"].north_operational, 1)
        self.assertEqual(rows["06:00"].south_operational, 1)
        self.assertEqual(rows["05:45"].north_operational, 0)

    def test_engine_defaults_apply_without_rules(self) -> None:
        generator = AutoShiftGenerator([], EngineDefaults(min_shift_hours=3, max_shift_hours=6))
        timeline = {DayType.WEEKDAY: requirement_window("10:00", "11:00", north=1)}
        shift = generator.generate(timeline).shifts[0]
        self.assertEqual(shift.end_time, "13:00")

    def test_fractional_requirements_round_half_up(self) -> None:
        timeline = {DayType.WEEKDAY: requirement_window("06:00", "12:00", north=1.5)}
        self.assertEqual(len(self.generator.generate(timeline).shifts), 2)


class GenerateShiftsApiTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_engine(
            "sqlite://",
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(self.engine)
        self.session_factory = sessionmaker(bind=self.engine, expire_on_commit=False, future=True)

    def tearDown(self) -> None:
        self.engine.dispose()

    def test_summary_without_persistence(self) -> None:
        timeline: Dict[DayType, List[RequirementInterval]] = {
            DayType.WEEKDAY: requirement_window("06:00", "12:00", north=1)
        }
        summary = generate_shifts(timeline, build_default_rules())

        self.assertEqual(summary["shifts_created"], 1)
        self.assertNotIn("runId", summary)
        self.assertEqual(summary["report"]["totalShifts"], 1)
        self.assertEqual(summary["report"]["deficitIntervals"], 0)
        self.assertEqual(summary["ruleIssues"], [])
        self.assertIn("weekday", summary["coverageTimeline"])

    def test_persists_run_and_audit_entry(self) -> None:
        timeline = {DayType.WEEKDAY: requirement_window("06:00", "12:00", north=1)}
        summary = generate_shifts(
            timeline,
            build_default_rules(),
            session_factory=self.session_factory,
            actor="planner",
            label="baseline",
        )

        with self.session_factory() as session:
            run = get_run(session, summary["runId"])
            payload = run.payload_dict()
            self.assertEqual(payload["label"], "baseline")
            self.assertEqual(len(payload["shifts"]), 1)
            self.assertEqual(payload["report"]["totalShifts"], 1)
            audit = session.scalars(select(AuditLog)).all()
            self.assertEqual([entry.action for entry in audit], ["GENERATE_SHIFTS"])
            self.assertEqual(audit[0].user_id, "planner")

    def test_empty_timeline_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            generate_shifts({}, build_default_rules())


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
