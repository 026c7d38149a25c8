from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from intervals import (
    INTERVAL_MINUTES,
    ceil_to_interval,
    clamp_to_window,
    floor_to_interval,
    format_time,
)
from logger import logger
from models import CoverageInterval, DayType, Shift, Zone, normalize_day_type
from policy import DEFAULT_ENGINE_DEFAULTS, EngineDefaults, LaborRule, resolve_rule_limits
from validation import apply_compliance

SurplusGrid = Dict[int, Dict[Zone, float]]


@dataclass
class TrimResult:
    shifts: List[Shift]
    hours_removed: float = 0.0
    vehicle_hours_removed: float = 0.0
    shifts_modified: int = 0
    modified_codes: List[str] = field(default_factory=list)

    def summary(self) -> Dict[str, Any]:
        return {
            "hoursRemoved": self.hours_removed,
            "vehicleHoursRemoved": self.vehicle_hours_removed,
            "shiftsModified": self.shifts_modified,
            "modifiedShiftCodes": list(self.modified_codes),
        }


def _surplus_grid(rows: Sequence[CoverageInterval]) -> SurplusGrid:
    """Positive surplus per zone on the 15-minute grid for one day type."""
    grid: SurplusGrid = {}
    for row in rows:
        start, end = row.window
        for slot in range(floor_to_interval(start), end, INTERVAL_MINUTES):
            grid[slot] = {zone: max(0.0, row.excess(zone)) for zone in Zone}
    return grid


def _trim_leading(start: int, end: int, zone: Zone, count: int, grid: SurplusGrid, min_minutes: int) -> int:
    cursor = start
    while True:
        slot = floor_to_interval(cursor)
        step = slot + INTERVAL_MINUTES - cursor
        if end - (cursor + step) < min_minutes:
            break
        available = grid.get(slot, {}).get(zone, 0.0)
        if available < count:
            break
        grid[slot][zone] = available - count
        cursor += step
    return cursor


def _trim_trailing(start: int, end: int, zone: Zone, count: int, grid: SurplusGrid, min_minutes: int) -> int:
    cursor = end
    while True:
        slot = ceil_to_interval(cursor) - INTERVAL_MINUTES
        step = cursor - slot
        if (cursor - step) - start < min_minutes:
            break
        available = grid.get(slot, {}).get(zone, 0.0)
        if available < count:
            break
        grid[slot][zone] = available - count
        cursor -= step
    return cursor


def realign_window(window: Optional[Tuple[int, int]], start: int, end: int) -> Optional[Tuple[int, int]]:
    """Slide a break window inside ``[start + 15, end - 15]``; ``None`` when it no longer fits."""
    if window is None:
        return None
    length = window[1] - window[0]
    lower = start + INTERVAL_MINUTES
    upper = end - INTERVAL_MINUTES
    if length <= 0 or upper - lower < length:
        return None
    window_start = max(window[0], lower)
    window_start = min(window_start, upper - length)
    return window_start, window_start + length


def normalize_shift_times(start: int, end: int, original: Tuple[int, int]) -> Tuple[int, int]:
    """Snap trimmed boundaries onto the grid; an untouched boundary keeps its value."""
    if start != original[0]:
        start = clamp_to_window(floor_to_interval(start))
    if end != original[1]:
        end = clamp_to_window(ceil_to_interval(end))
    if end <= start:
        end = start + INTERVAL_MINUTES
    return start, end


def _label(window: Optional[Tuple[int, int]], index: int) -> Optional[str]:
    return format_time(window[index]) if window else None


def _break_duration(shift: Shift, window: Optional[Tuple[int, int]]) -> Optional[int]:
    if window:
        return window[1] - window[0]
    # A duration-only break has no window to lose.
    return shift.break_duration if shift.break_window() is None else None


def trim_shifts(
    shifts: Iterable[Shift],
    coverage_timeline: Mapping[Any, Sequence[CoverageInterval]],
    rules: Iterable[LaborRule],
    defaults: EngineDefaults = DEFAULT_ENGINE_DEFAULTS,
) -> TrimResult:
    rule_list = list(rules or [])
    limits = resolve_rule_limits(rule_list, defaults)
    grids: Dict[DayType, SurplusGrid] = {
        normalize_day_type(day): _surplus_grid(rows) for day, rows in (coverage_timeline or {}).items()
    }
    result = TrimResult(shifts=[])
    trimmed_minutes = 0
    vehicle_minutes = 0
    for shift in shifts:
        grid = grids.get(shift.day_type)
        start, end = shift.window
        if not grid or end - start - limits.min_shift_minutes < INTERVAL_MINUTES:
            result.shifts.append(shift)
            continue
        count = max(1, int(shift.vehicle_count or 1))
        new_start = _trim_leading(start, end, shift.zone, count, grid, limits.min_shift_minutes)
        new_end = _trim_trailing(new_start, end, shift.zone, count, grid, limits.min_shift_minutes)
        new_start, new_end = normalize_shift_times(new_start, new_end, (start, end))
        removed = (new_start - start) + (end - new_end)
        if removed <= 0:
            result.shifts.append(shift)
            continue

        trimmed_minutes += removed
        vehicle_minutes += removed * count
        break_window = realign_window(shift.break_window(), new_start, new_end)
        meal_window = realign_window(shift.meal_window(), new_start, new_end)
        updated = replace(
            shift,
            start_time=format_time(new_start),
            end_time=format_time(new_end),
            total_hours=round((new_end - new_start) / 60, 2),
            break_start=_label(break_window, 0),
            break_end=_label(break_window, 1),
            break_duration=_break_duration(shift, break_window),
            meal_break_start=_label(meal_window, 0),
            meal_break_end=_label(meal_window, 1),
        )
        result.shifts.append(apply_compliance(updated, rule_list, defaults, limits=limits))
        result.shifts_modified += 1
        result.modified_codes.append(shift.shift_code)
        logger.debug(
            "[trim] %s %s-%s -> %s-%s",
            shift.shift_code,
            shift.start_time,
            shift.end_time,
            updated.start_time,
            updated.end_time,
        )

    result.hours_removed = round(trimmed_minutes / 60, 2)
    result.vehicle_hours_removed = round(vehicle_minutes / 60, 2)
    logger.info(
        "[trim] removed %.2f hours across %d shifts",
        result.hours_removed,
        result.shifts_modified,
    )
    return result
