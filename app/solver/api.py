from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Sequence

from .candidates import SolverCandidateFactory
from .greedy import GreedySolver
from coverage_timeline import build_coverage_interval
from insights import NEW_SHIFT, compute_insights
from intervals import parse_time
from logger import logger
from models import (
    CoverageInterval,
    DayType,
    OperationalInterval,
    RequirementInterval,
    Shift,
    ShiftOrigin,
    SolverCandidateShift,
    normalize_day_type,
)
from policy import DEFAULT_ENGINE_DEFAULTS, EngineDefaults, LaborRule


def _rows_for(coverage_timeline: Mapping[Any, Sequence[CoverageInterval]], day: DayType) -> List[CoverageInterval]:
    for key, rows in coverage_timeline.items():
        if normalize_day_type(key) is day:
            return sorted(rows, key=lambda row: row.start_minutes)
    return []


def requirement_only(rows: Sequence[CoverageInterval]) -> List[CoverageInterval]:
    """Coverage rows with nothing scheduled, so every required vehicle is open demand."""
    rebuilt = []
    for row in rows:
        requirement = RequirementInterval(
            row.day_type,
            row.start_time,
            row.end_time,
            row.north_required,
            row.south_required,
            row.floater_required,
        )
        empty = OperationalInterval(row.day_type, row.start_time, row.end_time)
        rebuilt.append(build_coverage_interval(row.day_type, row.start_time, row.end_time, requirement, empty))
    return rebuilt


def _synthesized_candidates(
    day: DayType,
    rows: Sequence[CoverageInterval],
    shifts: Sequence[Shift],
    rules: List[LaborRule],
    factory: SolverCandidateFactory,
) -> List[SolverCandidateShift]:
    insight = compute_insights(day, rows, shifts, rules, factory.defaults)
    candidates: List[SolverCandidateShift] = []
    sequence = 0
    for recommendation in insight.recommendations:
        if recommendation.type != NEW_SHIFT or not recommendation.proposed_start:
            continue
        copies = max((int(entry.coverage_gain) for entry in recommendation.impact), default=1)
        start = parse_time(recommendation.proposed_start)
        end = parse_time(recommendation.proposed_end)
        for _ in range(max(1, copies)):
            sequence += 1
            code = f"NEW-{day.code}-{recommendation.zone.letter}{sequence:02d}"
            draft = Shift(
                shift_code=code,
                zone=recommendation.zone,
                day_type=day,
                start_time=recommendation.proposed_start,
                end_time=recommendation.proposed_end,
                origin=ShiftOrigin.OPTIMIZED,
                id=f"{code}-{day.value}",
            )
            shaped = factory.reshape(draft, start, end)
            if shaped is None:
                logger.warning("[solver] dropped proposal %s %s-%s", code, draft.start_time, draft.end_time)
                continue
            candidates.extend(factory.build(shaped, existing=False))
    return candidates


def run_solver_mode(
    day_type: Any,
    coverage_timeline: Mapping[Any, Sequence[CoverageInterval]],
    shifts: Iterable[Shift],
    rules: Iterable[LaborRule],
    *,
    defaults: EngineDefaults = DEFAULT_ENGINE_DEFAULTS,
    enable_variants: bool = False,
) -> Dict[str, Any]:
    """Pick a cost-aware subset of existing and proposed shifts for one day type."""
    day = normalize_day_type(day_type)
    rule_list = list(rules or [])
    rows = _rows_for(coverage_timeline, day)
    day_shifts = [shift for shift in shifts if shift.day_type is day]
    factory = SolverCandidateFactory(rule_list, defaults, enable_variants=enable_variants)

    candidates: List[SolverCandidateShift] = []
    for shift in day_shifts:
        candidates.extend(factory.build(shift, existing=True))
    candidates.extend(_synthesized_candidates(day, rows, day_shifts, rule_list, factory))
    logger.info("[solver] %s: %d candidates from %d shifts", day.value, len(candidates), len(day_shifts))

    result = GreedySolver(rule_list, defaults).solve(day, requirement_only(rows), candidates)
    payload = result.to_dict()
    payload["dayType"] = day.value
    payload["candidateCount"] = len(candidates)
    payload["shifts"] = [candidate.shift.to_dict() for candidate in result.selected_shifts]
    return payload
