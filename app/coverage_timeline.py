from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from intervals import (
    INTERVAL_MINUTES,
    WINDOW_END_MINUTES,
    ceil_to_interval,
    floor_to_interval,
    format_time,
    time_range,
    timeline_minutes,
)
from logger import logger
from models import (
    DAY_TYPE_ORDER,
    CoverageInterval,
    DayType,
    OperationalInterval,
    RequirementInterval,
    Shift,
    Zone,
    normalize_day_type,
)

RequirementTimeline = Mapping[Any, Sequence[RequirementInterval]]
OperationalTimeline = Mapping[Any, Sequence[OperationalInterval]]
CoverageTimeline = Dict[DayType, List[CoverageInterval]]

STABLE_DOMAIN_MINIMUM = 3.0


@dataclass(frozen=True)
class ColorScale:
    min: float
    max: float

    @property
    def domain(self) -> Tuple[float, float]:
        """Symmetric +/- range for surplus/deficit charts."""
        span = max(abs(self.min), abs(self.max), STABLE_DOMAIN_MINIMUM)
        return (-span, span)

    def to_dict(self) -> Dict[str, Any]:
        low, high = self.domain
        return {
            "min": self.min,
            "max": self.max,
            "thresholds": {"deficit": self.min, "surplus": self.max},
            "domain": [low, high],
        }


@dataclass
class CoverageResult:
    timeline: CoverageTimeline
    color_scale: ColorScale


def _status(total_excess: float) -> str:
    if total_excess < 0:
        return "deficit"
    if total_excess > 0:
        return "excess"
    return "balanced"


def build_coverage_interval(
    day_type: DayType,
    start_time: str,
    end_time: str,
    requirement: Optional[RequirementInterval],
    operational: Optional[Any],
) -> CoverageInterval:
    """Merge one slot's requirement and operational counts.

    Floater capacity goes to the North shortfall first, then South; whatever is
    left counts against the Floater zone's own requirement.
    """
    north_req = requirement.north_required if requirement else 0.0
    south_req = requirement.south_required if requirement else 0.0
    floater_req = max(0.0, requirement.floater_required) if requirement else 0.0
    north_op = operational.north_operational if operational else 0.0
    south_op = operational.south_operational if operational else 0.0
    floater_pool = max(0.0, operational.floater_operational) if operational else 0.0
    floater_op = floater_pool

    north_deficit = max(0.0, north_req - north_op)
    south_deficit = max(0.0, south_req - south_op)
    to_north = min(north_deficit, floater_pool)
    floater_pool -= to_north
    to_south = min(south_deficit, floater_pool)
    floater_pool -= to_south

    north_excess = north_op + to_north - north_req
    south_excess = south_op + to_south - south_req
    floater_excess = floater_pool - floater_req
    total = north_excess + south_excess + floater_excess
    return CoverageInterval(
        day_type=day_type,
        start_time=start_time,
        end_time=end_time,
        north_required=north_req,
        south_required=south_req,
        floater_required=floater_req,
        north_operational=north_op,
        south_operational=south_op,
        floater_operational=floater_op,
        floater_to_north=to_north,
        floater_to_south=to_south,
        north_excess=north_excess,
        south_excess=south_excess,
        floater_excess=floater_excess,
        total_excess=total,
        status=_status(total),
    )


def _index_by_start(rows: Iterable[Any]) -> Dict[int, Any]:
    indexed: Dict[int, Any] = {}
    for row in rows or []:
        indexed[row.start_minutes] = row
    return indexed


def _normalized_days(*timelines: Mapping[Any, Any]) -> List[DayType]:
    present = set()
    for timeline in timelines:
        for key in (timeline or {}).keys():
            present.add(normalize_day_type(key))
    return [day for day in DAY_TYPE_ORDER if day in present]


def _rows_for(timeline: Mapping[Any, Any], day_type: DayType) -> Sequence[Any]:
    if not timeline:
        return []
    if day_type in timeline:
        return timeline[day_type]
    return timeline.get(day_type.value, [])


def compute_coverage(
    requirement_timeline: RequirementTimeline,
    operational_timeline: OperationalTimeline,
) -> CoverageResult:
    coverage: CoverageTimeline = {}
    scale_min = 0.0
    scale_max = 0.0
    for day_type in _normalized_days(requirement_timeline, operational_timeline):
        requirements = _index_by_start(_rows_for(requirement_timeline, day_type))
        operations = _index_by_start(_rows_for(operational_timeline, day_type))
        rows: List[CoverageInterval] = []
        for start in sorted(set(requirements) | set(operations)):
            requirement = requirements.get(start)
            operational = operations.get(start)
            source = requirement or operational
            row = build_coverage_interval(
                day_type,
                source.start_time,
                source.end_time,
                requirement,
                operational,
            )
            rows.append(row)
            for value in (row.total_excess, row.north_excess, row.south_excess, row.floater_excess):
                scale_min = min(scale_min, value)
                scale_max = max(scale_max, value)
        coverage[day_type] = rows
        logger.debug(
            "[coverage] %s: %d intervals, %d in deficit",
            day_type.value,
            len(rows),
            sum(1 for row in rows if row.status == "deficit"),
        )
    return CoverageResult(coverage, ColorScale(scale_min, scale_max))


def build_operational_timeline(shifts: Iterable[Shift]) -> Dict[DayType, List[OperationalInterval]]:
    """Rebuild per-slot headcount (and breaks) for every day type from shifts."""
    starts = timeline_minutes()
    timeline: Dict[DayType, List[OperationalInterval]] = {
        day: [
            OperationalInterval(day, format_time(start), format_time(start + INTERVAL_MINUTES))
            for start in starts
        ]
        for day in DAY_TYPE_ORDER
    }
    for shift in shifts:
        rows = timeline[shift.day_type]
        start, end = shift.window
        end = min(end, WINDOW_END_MINUTES)
        count = max(1, int(shift.vehicle_count or 1))
        for row, slot in zip(rows, starts):
            if floor_to_interval(start) <= slot < end:
                if shift.zone is Zone.NORTH:
                    row.north_operational += count
                elif shift.zone is Zone.SOUTH:
                    row.south_operational += count
                else:
                    row.floater_operational += count
        relief = shift.break_window() or shift.meal_window()
        if relief:
            break_start = floor_to_interval(relief[0])
            break_end = min(ceil_to_interval(relief[1]), WINDOW_END_MINUTES)
            for row, slot in zip(rows, starts):
                if break_start <= slot < break_end:
                    row.break_count += 1
    return timeline


def _interval_hours(row: Any) -> float:
    start, end = time_range(row.start_time, row.end_time)
    return max(INTERVAL_MINUTES, end - start) / 60


def excess_vehicle_hours(coverage: Mapping[DayType, Sequence[CoverageInterval]]) -> Dict[str, float]:
    """Vehicle-hours of surplus (positive total excess) per day type."""
    totals: Dict[str, float] = {}
    for day_type, rows in coverage.items():
        hours = sum(row.total_excess * _interval_hours(row) for row in rows if row.total_excess > 0)
        totals[normalize_day_type(day_type).value] = round(hours, 2)
    return totals


def break_relief_summary(operational_timeline: OperationalTimeline) -> List[Dict[str, Any]]:
    """Hours of operator break relief the schedule must absorb, per day type."""
    summary: List[Dict[str, Any]] = []
    for day_type in _normalized_days(operational_timeline):
        rows = [row for row in _rows_for(operational_timeline, day_type) if row.break_count > 0]
        hours = sum(row.break_count * _interval_hours(row) for row in rows)
        summary.append(
            {
                "dayType": day_type.value,
                "totalHours": round(hours, 2),
                "intervalCount": len(rows),
            }
        )
    return summary
