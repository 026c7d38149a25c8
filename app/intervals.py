from __future__ import annotations

from typing import List, Optional, Tuple

from errors import InvalidTimeError

# Service day runs 04:00 -> 25:00 (01:00 next day) on a 15-minute grid.
WINDOW_START_MINUTES = 4 * 60
WINDOW_END_MINUTES = 25 * 60
INTERVAL_MINUTES = 15
MINUTES_PER_DAY = 24 * 60


def parse_time(value: Optional[str]) -> int:
    """Return minutes since midnight for an ``HH:MM`` label.

    Labels earlier than the window start belong to the next service day and are
    shifted forward by 24 hours, so ``"00:30"`` sorts after ``"23:45"``.
    """
    if value is None:
        raise InvalidTimeError(value)
    label = str(value).strip()
    parts = label.split(":")
    if len(parts) not in (2, 3):
        raise InvalidTimeError(value)
    try:
        hours = int(parts[0])
        minutes = int(parts[1])
    except ValueError:
        raise InvalidTimeError(value) from None
    if hours < 0 or not 0 <= minutes < 60:
        raise InvalidTimeError(value)
    total = hours * 60 + minutes
    if total < WINDOW_START_MINUTES:
        total += MINUTES_PER_DAY
    return total


def format_time(minutes: int) -> str:
    normalized = int(minutes) % MINUTES_PER_DAY
    return f"{normalized // 60:02d}:{normalized % 60:02d}"


def floor_to_interval(minutes: int) -> int:
    return (int(minutes) // INTERVAL_MINUTES) * INTERVAL_MINUTES


def ceil_to_interval(minutes: int) -> int:
    return -(-int(minutes) // INTERVAL_MINUTES) * INTERVAL_MINUTES


def round_to_interval(minutes: float) -> int:
    return int(round(minutes / INTERVAL_MINUTES)) * INTERVAL_MINUTES


def clamp_to_window(minutes: int) -> int:
    return max(WINDOW_START_MINUTES, min(WINDOW_END_MINUTES, int(minutes)))


def timeline_minutes() -> List[int]:
    """Canonical interval starts for one service day (84 slots)."""
    return list(range(WINDOW_START_MINUTES, WINDOW_END_MINUTES, INTERVAL_MINUTES))


def time_range(start: str, end: str) -> Tuple[int, int]:
    """Resolve a start/end label pair into a clamped, non-empty minute range."""
    start_min = parse_time(start)
    end_min = parse_time(end)
    if end_min <= start_min:
        end_min += MINUTES_PER_DAY
    start_min = clamp_to_window(start_min)
    end_min = clamp_to_window(end_min)
    if end_min <= start_min:
        end_min = start_min + INTERVAL_MINUTES
    return start_min, end_min


def duration_hours(start: str, end: str, break_minutes: int = 0) -> float:
    start_min, end_min = time_range(start, end)
    worked = max(0, end_min - start_min - int(break_minutes or 0))
    return round(worked / 60, 2)


def interval_key(start_minutes: int, end_minutes: int, zone: str) -> str:
    """Stable ``HH:MM-HH:MM::Zone`` key shared by insights and the solver."""
    return f"{format_time(start_minutes)}-{format_time(end_minutes)}::{zone}"


def overlaps(start_a: int, end_a: int, start_b: int, end_b: int) -> bool:
    return start_a < end_b and start_b < end_a
