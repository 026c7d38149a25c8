from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Iterable, List, Optional

from intervals import parse_time
from models import SEVERITY_ERROR, SEVERITY_WARNING, Shift, Violation
from policy import (
    DEFAULT_ENGINE_DEFAULTS,
    EngineDefaults,
    LaborRule,
    RuleKind,
    RuleLimits,
    resolve_rule_limits,
)

DEFAULT_RULE_NAMES = {
    RuleKind.MIN_SHIFT_LENGTH: "Minimum Shift Length",
    RuleKind.MAX_SHIFT_LENGTH: "Maximum Shift Length",
    RuleKind.MEAL_BREAK_THRESHOLD: "Meal Break Requirement Threshold",
    RuleKind.MEAL_BREAK_LATEST_START: "Meal Break Latest Start",
    RuleKind.MEAL_BREAK_DURATION: "Meal Break Duration",
    RuleKind.CONTINUOUS_DRIVING: "Break After Continuous Driving",
}


@dataclass(frozen=True)
class MealBreak:
    duration_minutes: int
    start_offset_minutes: Optional[int]


def resolve_meal_break(shift: Shift, limits: RuleLimits) -> Optional[MealBreak]:
    """Find the break that counts as the shift's meal break.

    Preference order: explicit meal window, break window, break start plus a
    duration, and finally a bare duration long enough to qualify on its own.
    """
    start, _ = shift.window
    meal = shift.meal_window()
    if meal:
        return MealBreak(meal[1] - meal[0], meal[0] - start)
    window = shift.break_window()
    if window:
        return MealBreak(window[1] - window[0], window[0] - start)
    duration = int(shift.break_duration or 0)
    if shift.break_start and duration > 0:
        offset = _offset_from_start(shift, shift.break_start)
        return MealBreak(duration, offset)
    if duration >= limits.break_duration_minutes:
        return MealBreak(duration, None)
    return None


def _offset_from_start(shift: Shift, label: str) -> int:
    start, _ = shift.window
    return max(0, parse_time(label) - start)


def _violation(limits: RuleLimits, kind: RuleKind, message: str) -> Violation:
    rule: Optional[LaborRule] = limits.rule_for(kind)
    if rule is None:
        return Violation(None, DEFAULT_RULE_NAMES.get(kind, kind.value), SEVERITY_ERROR, message)
    severity = SEVERITY_ERROR if rule.is_required else SEVERITY_WARNING
    return Violation(rule.id, rule.name, severity, message)


def _shift_length_violations(on_duty_minutes: int, limits: RuleLimits) -> List[Violation]:
    hours = on_duty_minutes / 60
    issues: List[Violation] = []
    if on_duty_minutes < limits.min_shift_minutes:
        issues.append(
            _violation(
                limits,
                RuleKind.MIN_SHIFT_LENGTH,
                f"Shift is {hours:.2f} hours; minimum shift length is {limits.min_shift_hours:.2f} hours.",
            )
        )
    if on_duty_minutes > limits.max_shift_minutes:
        issues.append(
            _violation(
                limits,
                RuleKind.MAX_SHIFT_LENGTH,
                f"Shift is {hours:.2f} hours; maximum shift length is {limits.max_shift_hours:.2f} hours.",
            )
        )
    return issues


def _meal_break_violations(shift: Shift, on_duty_minutes: int, limits: RuleLimits) -> List[Violation]:
    if on_duty_minutes <= limits.break_threshold_minutes:
        return []
    threshold_hours = limits.break_threshold_minutes / 60
    latest_hours = limits.break_latest_start_minutes / 60
    meal = resolve_meal_break(shift, limits)
    if meal is None:
        return [
            _violation(
                limits,
                RuleKind.MEAL_BREAK_THRESHOLD,
                f"Shifts longer than {threshold_hours:.2f} hours require a "
                f"{limits.break_duration_minutes}-minute meal break beginning no later than "
                f"{latest_hours:.2f} hours into the shift.",
            )
        ]
    issues: List[Violation] = []
    if meal.duration_minutes < limits.break_duration_minutes:
        issues.append(
            _violation(
                limits,
                RuleKind.MEAL_BREAK_DURATION,
                f"Meal break is {meal.duration_minutes} minutes; at least "
                f"{limits.break_duration_minutes} minutes are required.",
            )
        )
    if meal.start_offset_minutes is None:
        issues.append(
            _violation(
                limits,
                RuleKind.MEAL_BREAK_LATEST_START,
                f"Meal break start time is not specified; it must begin no later than "
                f"{latest_hours:.2f} hours into the shift.",
            )
        )
    elif meal.start_offset_minutes > limits.break_latest_start_minutes:
        issues.append(
            _violation(
                limits,
                RuleKind.MEAL_BREAK_LATEST_START,
                f"Meal break begins {meal.start_offset_minutes / 60:.2f} hours into the shift; "
                f"it must start no later than {latest_hours:.2f} hours.",
            )
        )
    return issues


def _continuous_driving_violations(shift: Shift, on_duty_minutes: int, limits: RuleLimits) -> List[Violation]:
    limit = limits.continuous_driving_minutes
    if not limit:
        return []
    meal = resolve_meal_break(shift, limits)
    if meal is None or meal.start_offset_minutes is None:
        driven = on_duty_minutes
    else:
        driven = meal.start_offset_minutes
    if driven <= limit:
        return []
    if meal is None:
        message = f"No break scheduled after {limit / 60:.2f} hours of continuous driving."
    else:
        message = (
            f"Break begins {driven / 60:.2f} hours into the shift; continuous driving is "
            f"limited to {limit / 60:.2f} hours."
        )
    return [_violation(limits, RuleKind.CONTINUOUS_DRIVING, message)]


def validate_shift(
    shift: Shift,
    rules: Iterable[LaborRule],
    defaults: EngineDefaults = DEFAULT_ENGINE_DEFAULTS,
    *,
    limits: Optional[RuleLimits] = None,
) -> List[Violation]:
    """Return rule violations for one shift; never raises for non-compliance."""
    limits = limits or resolve_rule_limits(rules, defaults)
    on_duty = shift.duration_minutes
    violations: List[Violation] = []
    violations.extend(_shift_length_violations(on_duty, limits))
    violations.extend(_meal_break_violations(shift, on_duty, limits))
    violations.extend(_continuous_driving_violations(shift, on_duty, limits))
    return violations


def apply_compliance(
    shift: Shift,
    rules: Iterable[LaborRule],
    defaults: EngineDefaults = DEFAULT_ENGINE_DEFAULTS,
    *,
    limits: Optional[RuleLimits] = None,
) -> Shift:
    """Return a copy of ``shift`` carrying a freshly computed compliance result."""
    violations = validate_shift(shift, rules, defaults, limits=limits)
    return replace(
        shift,
        union_compliant=not any(v.severity == SEVERITY_ERROR for v in violations),
        compliance_warnings=[v.message for v in violations],
    )
