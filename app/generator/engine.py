from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from coverage_timeline import build_operational_timeline
from intervals import INTERVAL_MINUTES, WINDOW_END_MINUTES, floor_to_interval, format_time, time_range
from logger import logger
from models import (
    DAY_TYPE_ORDER,
    ZONE_ORDER,
    DayType,
    OperationalInterval,
    RequirementInterval,
    Shift,
    ShiftOrigin,
    Zone,
    normalize_day_type,
)
from policy import DEFAULT_ENGINE_DEFAULTS, EngineDefaults, LaborRule, resolve_rule_limits
from validation import apply_compliance


@dataclass
class ActiveRank:
    """One anonymous concurrent-duty slot that is currently open."""

    rank: int
    start_minutes: int
    last_interval_end: int


@dataclass
class GenerationResult:
    shifts: List[Shift]
    operational_timeline: Dict[DayType, List[OperationalInterval]]
    warnings: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def shifts_created(self) -> int:
        return len(self.shifts)


class AutoShiftGenerator:
    def __init__(
        self,
        rules: Iterable[LaborRule],
        defaults: EngineDefaults = DEFAULT_ENGINE_DEFAULTS,
    ) -> None:
        self.rules: List[LaborRule] = list(rules or [])
        self.defaults = defaults
        self.limits = resolve_rule_limits(self.rules, defaults)
        self.min_shift_minutes: int = self.limits.min_shift_minutes
        self.max_shift_minutes: int = self.limits.max_shift_minutes
        self.break_minutes: int = self.limits.break_duration_minutes
        self.break_threshold_minutes: int = self.limits.break_threshold_minutes
        self.break_latest_start_minutes: int = self.limits.break_latest_start_minutes

    @staticmethod
    def _required_count(row: RequirementInterval, zone: Zone) -> int:
        value = row.required(zone)
        if not value or value <= 0:
            return 0
        # Half-up rounding; fractional requirements come from averaged imports.
        return int(math.floor(value + 0.5))

    @staticmethod
    def _rows_for(timeline: Mapping[Any, Sequence[RequirementInterval]], day_type: DayType) -> List[RequirementInterval]:
        rows: Sequence[RequirementInterval] = []
        for key, value in (timeline or {}).items():
            if normalize_day_type(key) is day_type:
                rows = value
                break
        return sorted(rows, key=lambda row: row.start_minutes)

    def generate(self, requirement_timeline: Mapping[Any, Sequence[RequirementInterval]]) -> GenerationResult:
        shifts: List[Shift] = []
        warnings: List[Dict[str, Any]] = []
        for day_type in DAY_TYPE_ORDER:
            rows = self._rows_for(requirement_timeline, day_type)
            if not rows:
                continue
            for zone in ZONE_ORDER:
                windows = self._plan_zone(zone, rows)
                for index, (start, end) in enumerate(windows):
                    shift, messages = self._build_shift(day_type, zone, index + 1, start, end)
                    shifts.append(shift)
                    if messages:
                        warnings.append({"shiftCode": shift.shift_code, "messages": messages})
                if windows:
                    logger.debug(
                        "[generator] %s %s: %d shifts",
                        day_type.value,
                        zone.value,
                        len(windows),
                    )
        day_rank = {day: idx for idx, day in enumerate(DAY_TYPE_ORDER)}
        shifts.sort(key=lambda item: (day_rank[item.day_type], item.window[0]))
        if warnings:
            logger.warning("[generator] %d generated shifts carry compliance warnings", len(warnings))
        return GenerationResult(shifts, build_operational_timeline(shifts), warnings)

    def _plan_zone(self, zone: Zone, rows: List[RequirementInterval]) -> List[Tuple[int, int]]:
        """Scan one zone's requirement curve and return finalized (start, end) windows."""
        active: Dict[int, ActiveRank] = {}
        finalized: List[Tuple[int, int]] = []
        last_index = len(rows) - 1
        for index, row in enumerate(rows):
            required = self._required_count(row, zone)
            interval_start, interval_end = time_range(row.start_time, row.end_time)

            # Close surplus ranks from the top, unless that would leave them too short.
            for rank_id in sorted((rank for rank in active if rank >= required), reverse=True):
                rank = active[rank_id]
                if rank.last_interval_end <= rank.start_minutes:
                    # Split remainder that never covered a slot.
                    del active[rank_id]
                    continue
                if interval_start - rank.start_minutes < self.min_shift_minutes:
                    continue
                rank.last_interval_end = interval_start
                finalized.append(self._finalize(rank))
                del active[rank_id]

            for rank_id in range(required):
                if rank_id not in active:
                    active[rank_id] = ActiveRank(rank_id, interval_start, interval_start)

            for rank_id in sorted(active):
                rank = active[rank_id]
                rank.last_interval_end = max(rank.last_interval_end, interval_start)
                while rank.last_interval_end < interval_end:
                    max_allowed = rank.start_minutes + self.max_shift_minutes
                    next_end = min(interval_end, max_allowed)
                    rank.last_interval_end = next_end
                    if next_end < max_allowed:
                        break
                    # Split: hand the remainder of the run to a fresh rank in the same position.
                    finalized.append(self._finalize(rank))
                    rank = ActiveRank(rank_id, next_end, next_end)
                    active[rank_id] = rank

            if index == last_index:
                for rank_id in sorted(active):
                    rank = active[rank_id]
                    if rank.last_interval_end > rank.start_minutes:
                        finalized.append(self._finalize(rank))
                active.clear()
        return finalized

    def _finalize(self, rank: ActiveRank) -> Tuple[int, int]:
        start = rank.start_minutes
        min_end = start + self.min_shift_minutes
        max_end = start + self.max_shift_minutes
        if max_end < min_end:
            end = min(rank.last_interval_end, max_end)
        else:
            end = min(max(rank.last_interval_end, min_end), max_end)
        end = min(end, WINDOW_END_MINUTES)
        return start, max(end, start + INTERVAL_MINUTES)

    def _break_window(self, start: int, end: int) -> Optional[Tuple[int, int]]:
        total = end - start
        if total < self.break_threshold_minutes + self.break_minutes:
            return None
        midpoint = start + total // 2
        preferred = floor_to_interval(min(midpoint - self.break_minutes // 2, start + self.break_latest_start_minutes))
        break_start = min(max(start + INTERVAL_MINUTES, preferred), end - self.break_minutes)
        return break_start, break_start + self.break_minutes

    def _build_shift(
        self,
        day_type: DayType,
        zone: Zone,
        sequence: int,
        start: int,
        end: int,
    ) -> Tuple[Shift, List[str]]:
        code = f"AUTO-{day_type.code}-{zone.letter}{sequence:02d}"
        window = self._break_window(start, end)
        shift = Shift(
            shift_code=code,
            zone=zone,
            day_type=day_type,
            start_time=format_time(start),
            end_time=format_time(end),
            total_hours=round((end - start) / 60, 2),
            break_start=format_time(window[0]) if window else None,
            break_end=format_time(window[1]) if window else None,
            break_duration=self.break_minutes if window else None,
            origin=ShiftOrigin.OPTIMIZED,
            vehicle_count=1,
            id=f"{code}-{day_type.value}",
        )
        shift = apply_compliance(shift, self.rules, self.defaults, limits=self.limits)
        return shift, list(shift.compliance_warnings)
