from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from intervals import interval_key, overlaps
from logger import logger
from models import ZONE_ORDER, CoverageInterval, Shift, SolverCandidateShift, Zone, normalize_day_type
from policy import DEFAULT_ENGINE_DEFAULTS, EngineDefaults, LaborRule, resolve_rule_limits

EXISTING_COST = 1.0
NEW_SHIFT_COST = 5.0
OVERTIME_AFTER_MINUTES = 8 * 60
OVERTIME_PENALTY_PER_INTERVAL = 0.1
LENGTH_TOLERANCE_HOURS = 1e-6
RATIO_EPSILON = 1e-9


@dataclass
class ScoredCandidate:
    candidate: SolverCandidateShift
    keys: List[str]
    cost: float
    gain: float = 0.0

    @property
    def ratio(self) -> float:
        return self.gain / self.cost if self.cost > 0 else self.gain


@dataclass
class SolverResult:
    selected_shifts: List[SolverCandidateShift] = field(default_factory=list)
    unmet_constraints: List[str] = field(default_factory=list)
    objective_value: float = 0.0
    residual_demand: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "selectedShifts": [candidate.to_dict() for candidate in self.selected_shifts],
            "unmetConstraints": list(self.unmet_constraints),
            "objectiveValue": round(self.objective_value, 4),
        }


class SelectionStrategy(ABC):
    """Choose the next candidate to commit from the scored pool."""

    @abstractmethod
    def select(self, pool: Sequence[ScoredCandidate]) -> Optional[ScoredCandidate]:
        raise NotImplementedError


class GreedyRatioSelector(SelectionStrategy):
    """Best gain per unit cost; ties go to existing shifts, then shorter ones."""

    def select(self, pool: Sequence[ScoredCandidate]) -> Optional[ScoredCandidate]:
        best: Optional[ScoredCandidate] = None
        for scored in pool:
            if scored.gain <= 0:
                continue
            if best is None or scored.ratio > best.ratio + RATIO_EPSILON:
                best = scored
                continue
            if abs(scored.ratio - best.ratio) > RATIO_EPSILON:
                continue
            if scored.candidate.existing and not best.candidate.existing:
                best = scored
            elif (
                scored.candidate.existing == best.candidate.existing
                and scored.candidate.duration_minutes < best.candidate.duration_minutes
            ):
                best = scored
        return best


def candidate_cost(candidate: SolverCandidateShift) -> float:
    base = EXISTING_COST if candidate.existing else NEW_SHIFT_COST
    overtime = max(0, candidate.duration_minutes - OVERTIME_AFTER_MINUTES)
    return base + overtime / 15 * OVERTIME_PENALTY_PER_INTERVAL


def _zone_deficit(row: CoverageInterval, zone: Zone) -> float:
    if zone is Zone.FLOATER:
        return max(0.0, row.floater_required - row.floater_operational)
    return max(0.0, row.required(zone) - row.operational(zone))


def build_demand(rows: Sequence[CoverageInterval]) -> Dict[str, float]:
    """Residual demand keyed by ``interval_key`` for every short zone."""
    demand: Dict[str, float] = {}
    for row in sorted(rows, key=lambda item: item.start_minutes):
        start, end = row.window
        for zone in ZONE_ORDER:
            deficit = _zone_deficit(row, zone)
            if deficit > 0:
                demand[interval_key(start, end, zone.value)] = deficit
    return demand


def covered_keys(shift: Shift, rows: Sequence[CoverageInterval]) -> List[str]:
    """Interval keys across the whole shift window, matching the operational timeline."""
    start, end = shift.window
    keys: List[str] = []
    for row in rows:
        row_start, row_end = row.window
        if not overlaps(start, end, row_start, row_end):
            continue
        keys.append(interval_key(row_start, row_end, shift.zone.value))
    return keys


class GreedySolver:
    def __init__(
        self,
        rules: Iterable[LaborRule],
        defaults: EngineDefaults = DEFAULT_ENGINE_DEFAULTS,
        selector: Optional[SelectionStrategy] = None,
    ) -> None:
        self.rules = list(rules or [])
        self.limits = resolve_rule_limits(self.rules, defaults)
        self.selector = selector or GreedyRatioSelector()

    def _within_length(self, candidate: SolverCandidateShift) -> bool:
        hours = candidate.duration_minutes / 60
        return (
            self.limits.min_shift_hours - LENGTH_TOLERANCE_HOURS
            <= hours
            <= self.limits.max_shift_hours + LENGTH_TOLERANCE_HOURS
        )

    @staticmethod
    def _gain(keys: Sequence[str], residual: Mapping[str, float]) -> float:
        return sum(min(1.0, residual.get(key, 0.0)) for key in keys)

    def solve(
        self,
        day_type: Any,
        coverage_rows: Sequence[CoverageInterval],
        candidates: Iterable[SolverCandidateShift],
        demand: Optional[Mapping[str, float]] = None,
    ) -> SolverResult:
        day = normalize_day_type(day_type)
        rows = sorted(coverage_rows, key=lambda row: row.start_minutes)
        residual: Dict[str, float] = dict(demand) if demand is not None else build_demand(rows)
        order: Dict[str, Tuple[int, int]] = {}
        for position, row in enumerate(rows):
            start, end = row.window
            for zone_index, zone in enumerate(ZONE_ORDER):
                order[interval_key(start, end, zone.value)] = (position, zone_index)

        pool: List[ScoredCandidate] = []
        for candidate in candidates:
            if candidate.shift.day_type is not day or not self._within_length(candidate):
                continue
            scored = ScoredCandidate(candidate, covered_keys(candidate.shift, rows), candidate_cost(candidate))
            scored.gain = self._gain(scored.keys, residual)
            if scored.gain > 0:
                pool.append(scored)

        result = SolverResult()
        while pool and any(value > 0 for value in residual.values()):
            for scored in pool:
                scored.gain = self._gain(scored.keys, residual)
            chosen = self.selector.select(pool)
            if chosen is None:
                break
            for key in chosen.keys:
                if key in residual:
                    residual[key] = max(0.0, residual[key] - 1)
            result.selected_shifts.append(chosen.candidate)
            result.objective_value += chosen.cost
            pool.remove(chosen)

        unmet = [key for key, value in residual.items() if value > 0]
        unmet.sort(key=lambda key: order.get(key, (len(order), 0)))
        result.unmet_constraints = unmet
        result.residual_demand = {key: residual[key] for key in unmet}
        logger.info(
            "[solver] %s: selected %d candidates, %d unmet keys, objective %.2f",
            day.value,
            len(result.selected_shifts),
            len(unmet),
            result.objective_value,
        )
        return result
