from __future__ import annotations

import sys
import unittest
from pathlib import Path

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from coverage_timeline import build_operational_timeline, compute_coverage  # noqa: E402
from intervals import INTERVAL_MINUTES, format_time, parse_time  # noqa: E402
from models import DayType, RequirementInterval, Shift, SolverCandidateShift, Zone  # noqa: E402
from policy_defaults import build_default_rules  # noqa: E402
from solver.api import run_solver_mode  # noqa: E402
from solver.candidates import SolverCandidateFactory, build_solver_candidates  # noqa: E402
from solver.greedy import (  # noqa: E402
    GreedyRatioSelector,
    GreedySolver,
    ScoredCandidate,
    candidate_cost,
    covered_keys,
)

WEEKDAY = DayType.WEEKDAY


def _requirements(start: str, end: str, north: float = 0, south: float = 0, floater: float = 0):
    return [
        RequirementInterval(WEEKDAY, format_time(minute), format_time(minute + INTERVAL_MINUTES), north, south, floater)
        for minute in range(parse_time(start), parse_time(end), INTERVAL_MINUTES)
    ]


def _coverage(requirements, shifts=()):
    return compute_coverage({WEEKDAY: requirements}, build_operational_timeline(list(shifts))).timeline


def _candidate(solver_id: str, zone: Zone, start: str, end: str, existing: bool = False) -> SolverCandidateShift:
    shift = Shift(solver_id, zone, WEEKDAY, start, end)
    return SolverCandidateShift(shift=shift, solver_id=solver_id, existing=existing)


class CandidateFactoryTests(unittest.TestCase):
    def setUp(self) -> None:
        self.rules = build_default_rules()

    def test_without_variants_only_the_shift_itself(self) -> None:
        shift = Shift("N1", Zone.NORTH, WEEKDAY, "06:00", "12:00")
        candidates = build_solver_candidates(shift, existing=True, rules=self.rules)

        self.assertEqual(len(candidates), 1)
        self.assertIs(candidates[0].shift, shift)
        self.assertEqual(candidates[0].solver_id, "solver-N1")
        self.assertTrue(candidates[0].existing)

    def test_variants_respect_length_bounds_and_are_unique(self) -> None:
        shift = Shift("N1", Zone.NORTH, WEEKDAY, "06:00", "12:00")
        candidates = build_solver_candidates(shift, existing=False, rules=self.rules, enable_variants=True)

        self.assertEqual(len(candidates), 46)
        windows = [candidate.shift.window for candidate in candidates]
        self.assertEqual(len(set(windows)), len(windows))
        self.assertEqual(len({candidate.solver_id for candidate in candidates}), len(candidates))
        for candidate in candidates:
            self.assertGreaterEqual(candidate.duration_minutes, 300)
            self.assertLessEqual(candidate.duration_minutes, 585)
            self.assertFalse(candidate.existing)

    def test_variant_breaks_keep_their_offset_inside_the_shift(self) -> None:
        shift = Shift(
            "N1",
            Zone.NORTH,
            WEEKDAY,
            "06:00",
            "14:00",
            break_start="10:00",
            break_end="10:40",
            break_duration=40,
        )
        candidates = build_solver_candidates(shift, existing=True, rules=self.rules, enable_variants=True)

        self.assertGreater(len(candidates), 1)
        for candidate in candidates:
            start, end = candidate.shift.window
            window = candidate.shift.break_window()
            if end - start <= 450:
                continue
            self.assertIsNotNone(window)
            self.assertGreaterEqual(window[0], start + INTERVAL_MINUTES)
            self.assertLessEqual(window[1], end - INTERVAL_MINUTES)
            self.assertEqual(window[0] - start, 240)
            self.assertTrue(candidate.shift.union_compliant)

    def test_offsets_truncate_onto_the_grid(self) -> None:
        factory = SolverCandidateFactory(self.rules, enable_variants=True, offsets=[-20, 20, 29])
        self.assertEqual(factory.offsets, [-15, 15])


class GreedySolverTests(unittest.TestCase):
    def setUp(self) -> None:
        self.rules = build_default_rules()
        self.solver = GreedySolver(self.rules)
        self.coverage = _coverage(_requirements("06:00", "06:30", north=1))[WEEKDAY]

    def test_prefers_existing_shift(self) -> None:
        candidates = [
            _candidate("existing-1", Zone.NORTH, "06:00", "11:00", existing=True),
            _candidate("new-1", Zone.NORTH, "06:00", "13:00"),
        ]
        result = self.solver.solve(WEEKDAY, self.coverage, candidates)

        self.assertEqual([c.shift.shift_code for c in result.selected_shifts], ["existing-1"])
        self.assertGreater(result.objective_value, 0)
        self.assertEqual(result.unmet_constraints, [])

    def test_selects_combination_to_close_gaps(self) -> None:
        candidates = [
            _candidate("north-early", Zone.NORTH, "05:30", "10:30"),
            _candidate("north-late", Zone.NORTH, "06:00", "11:00"),
        ]
        result = self.solver.solve(WEEKDAY, self.coverage, candidates)

        self.assertEqual(len(result.selected_shifts), 1)
        self.assertEqual(result.unmet_constraints, [])

    def test_allocates_floater_coverage(self) -> None:
        coverage = _coverage(_requirements("08:00", "08:15", floater=1))[WEEKDAY]
        result = self.solver.solve(WEEKDAY, coverage, [_candidate("floater-1", Zone.FLOATER, "08:00", "13:00")])

        self.assertEqual(len(result.selected_shifts), 1)
        self.assertIs(result.selected_shifts[0].shift.zone, Zone.FLOATER)
        self.assertEqual(result.unmet_constraints, [])

    def test_ties_go_to_the_shorter_candidate(self) -> None:
        candidates = [
            _candidate("long", Zone.NORTH, "06:00", "12:00"),
            _candidate("short", Zone.NORTH, "06:00", "11:00"),
        ]
        result = self.solver.solve(WEEKDAY, self.coverage, candidates)
        self.assertEqual(result.selected_shifts[0].shift.shift_code, "short")

    def test_out_of_bounds_candidates_leave_demand_unmet(self) -> None:
        candidates = [_candidate("too-short", Zone.NORTH, "06:00", "08:00")]
        result = self.solver.solve(WEEKDAY, self.coverage, candidates)

        self.assertEqual(result.selected_shifts, [])
        self.assertEqual(result.unmet_constraints, ["06:00-06:15::North", "06:15-06:30::North"])
        self.assertEqual(result.objective_value, 0)

    def test_idempotent_on_unmet_demand(self) -> None:
        coverage = _coverage(_requirements("06:00", "06:30", north=2))[WEEKDAY]
        first = self.solver.solve(WEEKDAY, coverage, [_candidate("n1", Zone.NORTH, "06:00", "11:00")])
        self.assertEqual(len(first.unmet_constraints), 2)

        again = self.solver.solve(WEEKDAY, coverage, [], demand=first.residual_demand)
        self.assertEqual(again.unmet_constraints, first.unmet_constraints)
        self.assertEqual(again.residual_demand, first.residual_demand)

    def test_equal_ratio_goes_to_the_existing_shift(self) -> None:
        selector = GreedyRatioSelector()
        fresh = ScoredCandidate(_candidate("new", Zone.NORTH, "06:00", "11:00"), keys=[], cost=5.0, gain=5.0)
        kept = ScoredCandidate(
            _candidate("kept", Zone.NORTH, "06:00", "12:00", existing=True), keys=[], cost=1.0, gain=1.0
        )

        self.assertIs(selector.select([fresh, kept]), kept)

    def test_break_slots_still_count_as_covered(self) -> None:
        shift = Shift("N1", Zone.NORTH, WEEKDAY, "06:00", "08:00", break_start="07:00", break_end="07:30")
        coverage = _coverage(_requirements("06:00", "08:00", north=1))[WEEKDAY]
        self.assertEqual(len(covered_keys(shift, coverage)), 8)

    def test_overtime_penalty(self) -> None:
        self.assertEqual(candidate_cost(_candidate("a", Zone.NORTH, "06:00", "14:00", existing=True)), 1)
        self.assertAlmostEqual(candidate_cost(_candidate("b", Zone.NORTH, "06:00", "15:00")), 5.4)


class SolverModeTests(unittest.TestCase):
    def setUp(self) -> None:
        self.rules = build_default_rules()

    def test_existing_shift_is_kept_and_gap_reported(self) -> None:
        existing = Shift("N1", Zone.NORTH, WEEKDAY, "06:00", "11:00")
        coverage = _coverage(_requirements("06:00", "12:00", north=1), [existing])

        outcome = run_solver_mode(WEEKDAY, coverage, [existing], self.rules)

        self.assertEqual([shift["shiftCode"] for shift in outcome["shifts"]], ["N1"])
        self.assertEqual(len(outcome["unmetConstraints"]), 4)
        self.assertEqual(outcome["unmetConstraints"][0], "11:00-11:15::North")

    def test_variants_stretch_existing_shift(self) -> None:
        existing = Shift("N1", Zone.NORTH, WEEKDAY, "06:00", "11:00")
        coverage = _coverage(_requirements("06:00", "12:00", north=1), [existing])

        outcome = run_solver_mode(WEEKDAY, coverage, [existing], self.rules, enable_variants=True)

        self.assertEqual(len(outcome["shifts"]), 1)
        self.assertEqual(outcome["shifts"][0]["endTime"], "11:45")
        self.assertEqual(outcome["unmetConstraints"], ["11:45-12:00::North"])

    def test_existing_shift_with_break_leaves_nothing_unmet(self) -> None:
        existing = Shift(
            "N1",
            Zone.NORTH,
            WEEKDAY,
            "06:00",
            "14:00",
            break_start="10:00",
            break_end="10:45",
            break_duration=45,
        )
        coverage = _coverage(_requirements("06:00", "14:00", north=1), [existing])

        outcome = run_solver_mode(WEEKDAY, coverage, [existing], self.rules)

        self.assertEqual([shift["shiftCode"] for shift in outcome["shifts"]], ["N1"])
        self.assertEqual(outcome["unmetConstraints"], [])

    def test_new_shift_proposals_fill_uncovered_demand(self) -> None:
        coverage = _coverage(_requirements("06:00", "07:00", north=2))

        outcome = run_solver_mode("weekday", coverage, [], self.rules)

        codes = sorted(shift["shiftCode"] for shift in outcome["shifts"])
        self.assertEqual(codes, ["NEW-WEE-N01", "NEW-WEE-N02"])
        self.assertEqual(outcome["unmetConstraints"], [])
        self.assertEqual(outcome["objectiveValue"], 10)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
