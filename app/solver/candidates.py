from __future__ import annotations

from dataclasses import replace
from typing import Iterable, List, Optional, Sequence, Set, Tuple

from intervals import INTERVAL_MINUTES, WINDOW_END_MINUTES, clamp_to_window, format_time
from models import Shift, SolverCandidateShift
from policy import DEFAULT_ENGINE_DEFAULTS, EngineDefaults, LaborRule, RuleLimits, resolve_rule_limits
from validation import apply_compliance

DEFAULT_OFFSETS: Tuple[int, ...] = (-45, -30, -15, 0, 15, 30, 45)


def _snap_offset(value: float) -> int:
    # int() truncates toward zero, so -20 becomes -15 rather than -30.
    return int(value / INTERVAL_MINUTES) * INTERVAL_MINUTES


def _fit_break(start: int, end: int, break_start: int, length: int) -> Optional[Tuple[int, int]]:
    lower = start + INTERVAL_MINUTES
    upper = end - INTERVAL_MINUTES
    if length <= 0 or upper - lower < length:
        return None
    break_start = min(max(break_start, lower), upper - length)
    return break_start, break_start + length


class SolverCandidateFactory:
    """Expand a shift into the candidate set the greedy solver chooses from."""

    def __init__(
        self,
        rules: Iterable[LaborRule],
        defaults: EngineDefaults = DEFAULT_ENGINE_DEFAULTS,
        *,
        enable_variants: bool = False,
        offsets: Optional[Sequence[float]] = None,
        prefix: str = "solver",
    ) -> None:
        self.rules = list(rules or [])
        self.defaults = defaults
        self.limits: RuleLimits = resolve_rule_limits(self.rules, defaults)
        self.enable_variants = enable_variants
        raw_offsets = DEFAULT_OFFSETS if offsets is None else offsets
        snapped: List[int] = []
        for value in raw_offsets:
            offset = _snap_offset(value)
            if offset not in snapped:
                snapped.append(offset)
        self.offsets = snapped or [0]
        self.prefix = prefix

    def build(self, shift: Shift, *, existing: bool) -> List[SolverCandidateShift]:
        base_id = f"{self.prefix}-{shift.shift_code}"
        candidates = [SolverCandidateShift(shift=shift, solver_id=base_id, existing=existing)]
        if not self.enable_variants:
            return candidates

        start, end = shift.window
        seen: Set[Tuple[int, int, bool]] = {(start, end, existing)}
        for start_offset in self.offsets:
            for end_offset in self.offsets:
                new_start = clamp_to_window(start + start_offset)
                new_end = min(end + end_offset, WINDOW_END_MINUTES)
                if new_end <= new_start:
                    new_end = new_start + INTERVAL_MINUTES
                key = (new_start, new_end, existing)
                if key in seen:
                    continue
                variant = self.reshape(shift, new_start, new_end)
                if variant is None:
                    continue
                seen.add(key)
                candidates.append(
                    SolverCandidateShift(
                        shift=variant,
                        solver_id=f"{base_id}-{len(candidates)}",
                        existing=existing,
                    )
                )
        return candidates

    def reshape(self, shift: Shift, start: int, end: int) -> Optional[Shift]:
        """Move ``shift`` to ``[start, end)`` with a realigned break; ``None`` when it cannot comply."""
        limits = self.limits
        duration = end - start
        if duration < limits.min_shift_minutes or duration > limits.max_shift_minutes:
            return None
        window = self._realign_break(shift, start, end)
        if window is None and duration > limits.break_threshold_minutes:
            return None
        variant = replace(
            shift,
            start_time=format_time(start),
            end_time=format_time(end),
            total_hours=round(duration / 60, 2),
            break_start=format_time(window[0]) if window else None,
            break_end=format_time(window[1]) if window else None,
            break_duration=window[1] - window[0] if window else None,
            meal_break_start=None,
            meal_break_end=None,
        )
        return apply_compliance(variant, self.rules, self.defaults, limits=limits)

    def _realign_break(self, shift: Shift, start: int, end: int) -> Optional[Tuple[int, int]]:
        limits = self.limits
        duration = end - start
        if duration <= limits.break_threshold_minutes:
            return None
        original = shift.meal_window() or shift.break_window()
        length = limits.break_duration_minutes
        if original:
            length = max(original[1] - original[0], length)
            offset = original[0] - shift.window[0]
            if offset <= limits.break_latest_start_minutes:
                kept = _fit_break(start, end, start + offset, length)
                if kept and kept[0] - start == offset:
                    return kept
        preferred = min(start + duration // 2 - length // 2, start + limits.break_latest_start_minutes)
        return _fit_break(start, end, preferred, length)


def build_solver_candidates(
    shift: Shift,
    *,
    existing: bool,
    rules: Iterable[LaborRule],
    defaults: EngineDefaults = DEFAULT_ENGINE_DEFAULTS,
    enable_variants: bool = False,
    offsets: Optional[Sequence[float]] = None,
    prefix: str = "solver",
) -> List[SolverCandidateShift]:
    factory = SolverCandidateFactory(
        rules,
        defaults,
        enable_variants=enable_variants,
        offsets=offsets,
        prefix=prefix,
    )
    return factory.build(shift, existing=existing)
