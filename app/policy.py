from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from intervals import INTERVAL_MINUTES


class RuleCategory(str, Enum):
    SHIFT_LENGTH = "shift_length"
    BREAKS = "breaks"
    REST_PERIODS = "rest_periods"


class RuleType(str, Enum):
    REQUIRED = "required"
    PREFERRED = "preferred"


class RuleKind(str, Enum):
    MIN_SHIFT_LENGTH = "min_shift_length"
    MAX_SHIFT_LENGTH = "max_shift_length"
    IDEAL_SHIFT_LENGTH = "ideal_shift_length"
    MEAL_BREAK_THRESHOLD = "meal_break_threshold"
    MEAL_BREAK_LATEST_START = "meal_break_latest_start"
    MEAL_BREAK_DURATION = "meal_break_duration"
    CONTINUOUS_DRIVING = "continuous_driving"
    MIN_REST_PERIOD = "min_rest_period"


RULE_KIND_CATEGORY: Dict[RuleKind, RuleCategory] = {
    RuleKind.MIN_SHIFT_LENGTH: RuleCategory.SHIFT_LENGTH,
    RuleKind.MAX_SHIFT_LENGTH: RuleCategory.SHIFT_LENGTH,
    RuleKind.IDEAL_SHIFT_LENGTH: RuleCategory.SHIFT_LENGTH,
    RuleKind.MEAL_BREAK_THRESHOLD: RuleCategory.BREAKS,
    RuleKind.MEAL_BREAK_LATEST_START: RuleCategory.BREAKS,
    RuleKind.MEAL_BREAK_DURATION: RuleCategory.BREAKS,
    RuleKind.CONTINUOUS_DRIVING: RuleCategory.BREAKS,
    RuleKind.MIN_REST_PERIOD: RuleCategory.REST_PERIODS,
}

# Which bound carries the effective value for each kind; the other is a fallback.
_KIND_VALUE_FIELD: Dict[RuleKind, str] = {
    RuleKind.MIN_SHIFT_LENGTH: "min",
    RuleKind.MAX_SHIFT_LENGTH: "max",
    RuleKind.IDEAL_SHIFT_LENGTH: "min",
    RuleKind.MEAL_BREAK_THRESHOLD: "min",
    RuleKind.MEAL_BREAK_LATEST_START: "max",
    RuleKind.MEAL_BREAK_DURATION: "min",
    RuleKind.CONTINUOUS_DRIVING: "max",
    RuleKind.MIN_REST_PERIOD: "min",
}


@dataclass(frozen=True)
class LaborRule:
    name: str
    category: RuleCategory
    rule_type: RuleType = RuleType.REQUIRED
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    unit: str = "hours"
    active: bool = True
    kind: Optional[RuleKind] = None
    id: Optional[int] = None
    description: str = ""

    @property
    def is_required(self) -> bool:
        return self.rule_type is RuleType.REQUIRED

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "LaborRule":
        raw_kind = payload.get("kind")
        rule = cls(
            name=str(payload.get("ruleName") or payload.get("name") or "").strip(),
            category=RuleCategory(str(payload.get("category") or "shift_length")),
            rule_type=RuleType(str(payload.get("ruleType") or payload.get("rule_type") or "required")),
            min_value=_optional_float(payload.get("minValue", payload.get("min_value"))),
            max_value=_optional_float(payload.get("maxValue", payload.get("max_value"))),
            unit=str(payload.get("unit") or "hours"),
            active=bool(payload.get("isActive", payload.get("active", True))),
            kind=RuleKind(raw_kind) if raw_kind else None,
            id=payload.get("id"),
            description=str(payload.get("description") or ""),
        )
        if rule.kind is None:
            return with_inferred_kind(rule)
        return rule

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "ruleName": self.name,
            "ruleType": self.rule_type.value,
            "category": self.category.value,
            "minValue": self.min_value,
            "maxValue": self.max_value,
            "unit": self.unit,
            "isActive": self.active,
            "kind": self.kind.value if self.kind else None,
            "description": self.description,
        }


@dataclass(frozen=True)
class EngineDefaults:
    """Fallback constraints used whenever a rule set does not define a kind."""

    min_shift_hours: float = 5.0
    max_shift_hours: float = 9.75
    ideal_shift_hours: float = 7.2
    meal_break_threshold_hours: float = 7.5
    meal_break_latest_start_hours: float = 4.75
    meal_break_minutes: int = 40
    continuous_driving_hours: Optional[float] = None


DEFAULT_ENGINE_DEFAULTS = EngineDefaults()


@dataclass(frozen=True)
class RuleLimits:
    min_shift_minutes: int
    max_shift_minutes: int
    ideal_shift_minutes: int
    break_threshold_minutes: int
    break_latest_start_minutes: int
    break_duration_minutes: int
    continuous_driving_minutes: Optional[int] = None
    matched: Dict[RuleKind, LaborRule] = field(default_factory=dict)

    @property
    def min_shift_hours(self) -> float:
        return self.min_shift_minutes / 60

    @property
    def max_shift_hours(self) -> float:
        return self.max_shift_minutes / 60

    def rule_for(self, kind: RuleKind) -> Optional[LaborRule]:
        return self.matched.get(kind)


def _optional_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def infer_rule_kind(rule: LaborRule) -> Optional[RuleKind]:
    """Tag a legacy rule from its free-text name.

    Stored and imported rule sets predate explicit kinds; this is the only place
    the name is inspected. Everything downstream looks rules up by ``kind``.
    """
    name = rule.name.lower()
    if rule.category is RuleCategory.SHIFT_LENGTH:
        if "weekly" in name:
            return None
        if "ideal" in name or "target" in name:
            return RuleKind.IDEAL_SHIFT_LENGTH
        if "minimum" in name or name.startswith("min "):
            return RuleKind.MIN_SHIFT_LENGTH
        if "maximum" in name or name.startswith("max "):
            return RuleKind.MAX_SHIFT_LENGTH
        if rule.rule_type is RuleType.PREFERRED and rule.min_value is not None:
            return RuleKind.IDEAL_SHIFT_LENGTH
        if rule.max_value is not None and rule.min_value is None:
            return RuleKind.MAX_SHIFT_LENGTH
        if rule.min_value is not None and rule.max_value is None:
            return RuleKind.MIN_SHIFT_LENGTH
        return None
    if rule.category is RuleCategory.BREAKS:
        if "continuous" in name:
            return RuleKind.CONTINUOUS_DRIVING
        if "meal" in name and ("threshold" in name or "requirement" in name):
            return RuleKind.MEAL_BREAK_THRESHOLD
        if "latest" in name:
            return RuleKind.MEAL_BREAK_LATEST_START
        if "duration" in name:
            return RuleKind.MEAL_BREAK_DURATION
        return None
    if rule.category is RuleCategory.REST_PERIODS and "rest" in name:
        return RuleKind.MIN_REST_PERIOD
    return None


def with_inferred_kind(rule: LaborRule) -> LaborRule:
    kind = infer_rule_kind(rule)
    if kind is None:
        return rule
    return replace(rule, kind=kind)


def _rule_minutes(rule: LaborRule) -> Optional[float]:
    primary = _KIND_VALUE_FIELD.get(rule.kind, "min") if rule.kind else "min"
    if primary == "min":
        value = rule.min_value if rule.min_value is not None else rule.max_value
    else:
        value = rule.max_value if rule.max_value is not None else rule.min_value
    if value is None or value <= 0:
        return None
    if (rule.unit or "hours").lower().startswith("min"):
        return float(value)
    return float(value) * 60


def find_rule(rules: Iterable[LaborRule], kind: RuleKind) -> Optional[LaborRule]:
    category = RULE_KIND_CATEGORY[kind]
    for rule in rules or []:
        if not rule.active or rule.kind is not kind or rule.category is not category:
            continue
        if _rule_minutes(rule) is None:
            continue
        return rule
    return None


def resolve_rule_limits(
    rules: Iterable[LaborRule],
    defaults: EngineDefaults = DEFAULT_ENGINE_DEFAULTS,
) -> RuleLimits:
    rule_list: List[LaborRule] = list(rules or [])
    matched: Dict[RuleKind, LaborRule] = {}

    def minutes_for(kind: RuleKind, fallback_minutes: Optional[float]) -> Optional[float]:
        rule = find_rule(rule_list, kind)
        if rule is None:
            return fallback_minutes
        matched[kind] = rule
        return _rule_minutes(rule)

    continuous_default = (
        defaults.continuous_driving_hours * 60 if defaults.continuous_driving_hours else None
    )
    min_minutes = minutes_for(RuleKind.MIN_SHIFT_LENGTH, defaults.min_shift_hours * 60)
    max_minutes = minutes_for(RuleKind.MAX_SHIFT_LENGTH, defaults.max_shift_hours * 60)
    ideal_minutes = minutes_for(RuleKind.IDEAL_SHIFT_LENGTH, defaults.ideal_shift_hours * 60)
    threshold = minutes_for(RuleKind.MEAL_BREAK_THRESHOLD, defaults.meal_break_threshold_hours * 60)
    latest = minutes_for(RuleKind.MEAL_BREAK_LATEST_START, defaults.meal_break_latest_start_hours * 60)
    duration = minutes_for(RuleKind.MEAL_BREAK_DURATION, defaults.meal_break_minutes)
    continuous = minutes_for(RuleKind.CONTINUOUS_DRIVING, continuous_default)
    return RuleLimits(
        min_shift_minutes=max(INTERVAL_MINUTES, int(round(min_minutes))),
        max_shift_minutes=max(INTERVAL_MINUTES, int(round(max_minutes))),
        ideal_shift_minutes=int(round(ideal_minutes)),
        break_threshold_minutes=int(round(threshold)),
        break_latest_start_minutes=int(round(latest)),
        break_duration_minutes=int(round(duration)),
        continuous_driving_minutes=int(round(continuous)) if continuous else None,
        matched=matched,
    )


def rule_set_issues(
    rules: Iterable[LaborRule],
    defaults: EngineDefaults = DEFAULT_ENGINE_DEFAULTS,
) -> List[Dict[str, Any]]:
    """Return structured findings for rule sets that cannot be satisfied together."""
    limits = resolve_rule_limits(rules, defaults)
    issues: List[Dict[str, Any]] = []
    if limits.min_shift_minutes > limits.max_shift_minutes:
        issues.append(
            {
                "type": "shift_length_inverted",
                "severity": "error",
                "message": (
                    f"Minimum shift length {limits.min_shift_hours:.2f}h exceeds "
                    f"maximum {limits.max_shift_hours:.2f}h."
                ),
            }
        )
    if limits.break_threshold_minutes > limits.max_shift_minutes:
        issues.append(
            {
                "type": "break_threshold_unreachable",
                "severity": "warning",
                "message": "Meal break threshold is longer than the maximum shift; breaks will never be required.",
            }
        )
    if limits.break_latest_start_minutes + limits.break_duration_minutes > limits.max_shift_minutes:
        issues.append(
            {
                "type": "break_window_outside_shift",
                "severity": "warning",
                "message": "Latest meal break start plus its duration runs past the maximum shift length.",
            }
        )
    return issues
