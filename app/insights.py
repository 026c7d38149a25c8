from __future__ import annotations

import math
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from coverage_timeline import build_coverage_interval
from intervals import (
    INTERVAL_MINUTES,
    WINDOW_END_MINUTES,
    ceil_to_interval,
    floor_to_interval,
    format_time,
    interval_key,
    overlaps,
    round_to_interval,
)
from logger import logger
from models import (
    ZONE_ORDER,
    CoverageImpact,
    CoverageInterval,
    DayType,
    DeficitBlock,
    OperationalInterval,
    Recommendation,
    RequirementInterval,
    Shift,
    Zone,
    normalize_day_type,
)
from policy import DEFAULT_ENGINE_DEFAULTS, EngineDefaults, LaborRule, RuleLimits, resolve_rule_limits

EXTEND_SHIFT = "extend_shift"
NEW_SHIFT = "new_shift"
BREAK_ADJUSTMENT = "break_adjustment"
PRIORITY_HIGH = "high"
PRIORITY_MEDIUM = "medium"
EXTENSION_BUFFER_MIN = 60
EXTENSION_BUFFER_MAX = 120
MAX_BREAK_OPTIONS_PER_BLOCK = 2


@dataclass
class ExtensionOption:
    shift: Shift
    direction: str
    gap_minutes: int
    added_minutes: int
    new_start: int
    new_end: int


@dataclass
class InsightResult:
    day_type: DayType
    blocks: List[DeficitBlock] = field(default_factory=list)
    recommendations: List[Recommendation] = field(default_factory=list)
    totals: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dayType": self.day_type.value,
            "blocks": [block.to_dict() for block in self.blocks],
            "recommendations": [rec.to_dict() for rec in self.recommendations],
            "totals": dict(self.totals),
        }


def _interval_minutes(row: CoverageInterval) -> int:
    start, end = row.window
    return max(INTERVAL_MINUTES, end - start)


def build_deficit_blocks(day_type: DayType, rows: Sequence[CoverageInterval]) -> List[DeficitBlock]:
    """Merge consecutive deficit intervals into blocks, independently per zone."""
    ordered = sorted(rows, key=lambda row: row.start_minutes)
    blocks: List[DeficitBlock] = []
    for zone in ZONE_ORDER:
        runs: List[List[CoverageInterval]] = []
        current: List[CoverageInterval] = []
        for row in ordered:
            if row.excess(zone) < 0:
                if current and current[-1].window[1] != row.window[0]:
                    runs.append(current)
                    current = []
                current.append(row)
            elif current:
                runs.append(current)
                current = []
        if current:
            runs.append(current)
        for index, run in enumerate(runs):
            start = run[0].window[0]
            end = run[-1].window[1]
            vehicle_hours = sum(-row.excess(zone) * _interval_minutes(row) / 60 for row in run)
            blocks.append(
                DeficitBlock(
                    id=f"{zone.value}-{format_time(start)}-{index}",
                    day_type=day_type,
                    zone=zone,
                    start_minutes=start,
                    end_minutes=end,
                    vehicle_hours=round(vehicle_hours, 2),
                    peak_shortfall=max(-row.excess(zone) for row in run),
                    intervals=list(run),
                )
            )
    blocks.sort(key=lambda block: block.start_minutes)
    return blocks


def _impact(rows: Iterable[CoverageInterval], zone: Zone, gain: float) -> List[CoverageImpact]:
    impacts = []
    for row in rows:
        start, end = row.window
        impacts.append(CoverageImpact(interval_key(start, end, zone.value), zone, gain))
    return impacts


def _priority(block: DeficitBlock, kind: str) -> str:
    if kind == NEW_SHIFT or block.peak_shortfall >= 2:
        return PRIORITY_HIGH
    return PRIORITY_MEDIUM


class OptimizationInsightEngine:
    def __init__(
        self,
        rules: Iterable[LaborRule],
        defaults: EngineDefaults = DEFAULT_ENGINE_DEFAULTS,
    ) -> None:
        self.rules = list(rules or [])
        self.limits: RuleLimits = resolve_rule_limits(self.rules, defaults)

    def compute(
        self,
        day_type: Any,
        coverage_rows: Sequence[CoverageInterval],
        shifts: Iterable[Shift],
    ) -> InsightResult:
        day = normalize_day_type(day_type)
        day_shifts = [shift for shift in shifts if shift.day_type is day]
        blocks = build_deficit_blocks(day, coverage_rows)
        recommendations: List[Recommendation] = []
        for position, block in enumerate(blocks):
            zone_shifts = [shift for shift in day_shifts if shift.zone is block.zone]
            shortfall = max(1, math.ceil(block.peak_shortfall))
            options = self._extension_options(block, zone_shifts)[:shortfall]
            if options:
                recommendations.append(self._extension_recommendation(block, options))
            remaining = shortfall - len(options)
            if remaining > 0:
                recommendations.append(self._new_shift_recommendation(block, blocks[position + 1:], remaining))
            recommendations.extend(self._break_recommendations(block, zone_shifts))
        totals = {
            "blockCount": len(blocks),
            "totalVehicleHours": round(sum(block.vehicle_hours for block in blocks), 2),
            "maxShortfall": max((block.peak_shortfall for block in blocks), default=0),
        }
        logger.debug(
            "[insights] %s: %d deficit blocks, %d recommendations",
            day.value,
            len(blocks),
            len(recommendations),
        )
        return InsightResult(day, blocks, recommendations, totals)

    # Extensions -----------------------------------------------------------------

    def _extension_options(self, block: DeficitBlock, shifts: Sequence[Shift]) -> List[ExtensionOption]:
        buffer = max(EXTENSION_BUFFER_MIN, min(block.duration_minutes + INTERVAL_MINUTES, EXTENSION_BUFFER_MAX))
        options: List[ExtensionOption] = []
        for shift in shifts:
            start, end = shift.window
            duration = end - start
            end_gap = block.start_minutes - end
            if 0 <= end_gap <= buffer:
                added = block.end_minutes - end
                if duration + added <= self.limits.max_shift_minutes:
                    options.append(ExtensionOption(shift, "end", end_gap, added, start, block.end_minutes))
                    continue
            start_gap = start - block.end_minutes
            if 0 <= start_gap <= buffer:
                added = start - block.start_minutes
                if duration + added <= self.limits.max_shift_minutes:
                    options.append(ExtensionOption(shift, "start", start_gap, added, block.start_minutes, end))
        options.sort(key=lambda option: option.gap_minutes)
        return options

    def _extension_recommendation(self, block: DeficitBlock, options: List[ExtensionOption]) -> Recommendation:
        codes = [option.shift.shift_code for option in options]
        details = []
        for option in options:
            new_hours = (option.new_end - option.new_start) / 60
            details.append(
                f"{option.shift.shift_code}: extend {option.direction} to "
                f"{format_time(option.new_start)}-{format_time(option.new_end)} "
                f"(+{option.added_minutes / 60:.2f} hrs, {new_hours:.2f} hrs total)"
            )
        return Recommendation(
            id=f"{block.id}-extend",
            type=EXTEND_SHIFT,
            zone=block.zone,
            title=f"Extend {len(options)} {block.zone.value} shift(s)",
            summary=(
                f"Extend {', '.join(codes)} to cover {block.start_time}-{block.end_time} "
                f"(peak shortfall {block.peak_shortfall:g})."
            ),
            priority=_priority(block, EXTEND_SHIFT),
            deficit=block,
            detail_items=details,
            affected_shift_codes=codes,
            impact=_impact(block.intervals, block.zone, len(options)),
        )

    # New shifts -----------------------------------------------------------------

    def _new_shift_recommendation(
        self,
        block: DeficitBlock,
        later_blocks: Sequence[DeficitBlock],
        needed: int,
    ) -> Recommendation:
        limits = self.limits
        coverage_end = block.end_minutes
        covered_rows = list(block.intervals)
        for candidate in later_blocks:
            if candidate.zone is not block.zone:
                continue
            gap = candidate.start_minutes - block.end_minutes
            if 0 <= gap <= INTERVAL_MINUTES and candidate.end_minutes - block.start_minutes <= limits.max_shift_minutes:
                coverage_end = candidate.end_minutes
                covered_rows.extend(candidate.intervals)
            break

        coverage_minutes = max(limits.min_shift_minutes, ceil_to_interval(coverage_end - block.start_minutes))
        recommended = min(max(limits.ideal_shift_minutes, coverage_minutes), limits.max_shift_minutes)
        recommended = min(max(round_to_interval(recommended), coverage_minutes), limits.max_shift_minutes)
        start = block.start_minutes
        end = min(start + recommended, WINDOW_END_MINUTES)
        hours = (end - start) / 60
        summary = (
            f"Shortfall of {needed} operator(s) over {block.start_time}-{block.end_time}. "
            f"Recommend scheduling {format_time(start)}-{format_time(end)} ({hours:.1f} hrs)."
        )
        return Recommendation(
            id=f"{block.id}-new",
            type=NEW_SHIFT,
            zone=block.zone,
            title=f"Add {needed} {block.zone.value} shift(s)",
            summary=summary,
            priority=_priority(block, NEW_SHIFT),
            deficit=block,
            detail_items=[f"Start {format_time(start)}, end {format_time(end)}, {needed} vehicle(s)"],
            impact=_impact((row for row in covered_rows if row.window[1] <= end), block.zone, needed),
            proposed_start=format_time(start),
            proposed_end=format_time(end),
        )

    # Break adjustments ----------------------------------------------------------

    def _relocate_break(self, shift: Shift, window: Tuple[int, int], block: DeficitBlock) -> Optional[Tuple[int, int]]:
        shift_start, shift_end = shift.window
        length = window[1] - window[0]
        earlier: Optional[Tuple[int, int]] = None
        later: Optional[Tuple[int, int]] = None
        if block.start_minutes - shift_start >= length:
            start = max(shift_start, floor_to_interval(block.start_minutes - length))
            earlier = (start, start + length)
        if shift_end - block.end_minutes >= length:
            start = ceil_to_interval(block.end_minutes)
            if start + length > shift_end:
                start = shift_end - length
            later = (start, start + length)
        # Move toward the shift edge nearer the block; earlier wins ties.
        if block.start_minutes - shift_start <= shift_end - block.end_minutes:
            attempts = [option for option in (earlier, later) if option]
        else:
            attempts = [option for option in (later, earlier) if option]
        requires_meal = shift.duration_minutes > self.limits.break_threshold_minutes
        for option in attempts:
            if option == window:
                continue
            if overlaps(option[0], option[1], block.start_minutes, block.end_minutes):
                continue
            if requires_meal and option[0] - shift_start > self.limits.break_latest_start_minutes:
                continue
            return option
        return None

    def _break_recommendations(self, block: DeficitBlock, shifts: Sequence[Shift]) -> List[Recommendation]:
        recommendations: List[Recommendation] = []
        for shift in shifts:
            if len(recommendations) >= MAX_BREAK_OPTIONS_PER_BLOCK:
                break
            window = shift.break_window() or shift.meal_window()
            if not window or not overlaps(window[0], window[1], block.start_minutes, block.end_minutes):
                continue
            target = self._relocate_break(shift, window, block)
            if target is None:
                continue
            released = [
                row for row in block.intervals if overlaps(row.window[0], row.window[1], window[0], window[1])
            ]
            current = f"{format_time(window[0])}-{format_time(window[1])}"
            moved = f"{format_time(target[0])}-{format_time(target[1])}"
            recommendations.append(
                Recommendation(
                    id=f"{block.id}-break-{shift.shift_code}",
                    type=BREAK_ADJUSTMENT,
                    zone=block.zone,
                    title=f"Shift break for {shift.shift_code}",
                    summary=(
                        f"Break {current} overlaps the {block.zone.value} gap at "
                        f"{block.start_time}-{block.end_time}. Move it to {moved}."
                    ),
                    priority=_priority(block, BREAK_ADJUSTMENT),
                    deficit=block,
                    detail_items=[f"{shift.shift_code}: {current} -> {moved}"],
                    affected_shift_codes=[shift.shift_code],
                    impact=_impact(released, block.zone, max(1, int(shift.vehicle_count or 1))),
                )
            )
        return recommendations


def compute_insights(
    day_type: Any,
    coverage_rows: Sequence[CoverageInterval],
    shifts: Iterable[Shift],
    rules: Iterable[LaborRule],
    defaults: EngineDefaults = DEFAULT_ENGINE_DEFAULTS,
) -> InsightResult:
    return OptimizationInsightEngine(rules, defaults).compute(day_type, coverage_rows, shifts)


def apply_recommendations(
    coverage_timeline: Mapping[Any, Sequence[CoverageInterval]],
    recommendations: Iterable[Recommendation],
) -> Dict[DayType, List[CoverageInterval]]:
    """Recompute coverage on a copy of the timeline as if the recommendations were accepted.

    Un-applying one is the same as applying the remaining subset to the original
    timeline; the input is never modified.
    """
    gains: Dict[DayType, Dict[str, float]] = defaultdict(lambda: defaultdict(float))
    for recommendation in recommendations:
        day = recommendation.deficit.day_type
        for entry in recommendation.impact:
            gains[day][entry.interval_key] += entry.coverage_gain

    preview: Dict[DayType, List[CoverageInterval]] = {}
    for day_key, rows in coverage_timeline.items():
        day = normalize_day_type(day_key)
        day_gains = gains.get(day, {})
        updated: List[CoverageInterval] = []
        for row in rows:
            start, end = row.window
            extra = {zone: day_gains.get(interval_key(start, end, zone.value), 0.0) for zone in ZONE_ORDER}
            requirement = RequirementInterval(
                day,
                row.start_time,
                row.end_time,
                row.north_required,
                row.south_required,
                row.floater_required,
            )
            operational = OperationalInterval(
                day,
                row.start_time,
                row.end_time,
                row.north_operational + extra[Zone.NORTH],
                row.south_operational + extra[Zone.SOUTH],
                row.floater_operational + extra[Zone.FLOATER],
            )
            updated.append(build_coverage_interval(day, row.start_time, row.end_time, requirement, operational))
        preview[day] = updated
    return preview
