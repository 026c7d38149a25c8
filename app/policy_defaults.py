from __future__ import annotations

import copy
from typing import Any, Dict, List

from database import list_labor_rules, replace_labor_rules
from logger import logger
from policy import LaborRule, RuleCategory, RuleKind, RuleType


def _rule_config(
    rule_id: int,
    name: str,
    kind: RuleKind,
    category: RuleCategory,
    *,
    min_value: float | None = None,
    max_value: float | None = None,
    unit: str = "hours",
    rule_type: RuleType = RuleType.REQUIRED,
    description: str = "",
) -> Dict[str, Any]:
    return {
        "id": rule_id,
        "ruleName": name,
        "ruleType": rule_type.value,
        "category": category.value,
        "minValue": min_value,
        "maxValue": max_value,
        "unit": unit,
        "isActive": True,
        "kind": kind.value,
        "description": description,
    }


BASELINE_RULES: List[Dict[str, Any]] = [
    _rule_config(
        1,
        "Minimum Shift Length",
        RuleKind.MIN_SHIFT_LENGTH,
        RuleCategory.SHIFT_LENGTH,
        min_value=5,
        description="Shifts must be at least 5 hours long.",
    ),
    _rule_config(
        2,
        "Maximum Shift Length",
        RuleKind.MAX_SHIFT_LENGTH,
        RuleCategory.SHIFT_LENGTH,
        max_value=9.75,
        description="Shifts cannot exceed 9.75 hours on duty.",
    ),
    _rule_config(
        3,
        "Meal Break Requirement Threshold",
        RuleKind.MEAL_BREAK_THRESHOLD,
        RuleCategory.BREAKS,
        min_value=7.5,
        description="Shifts longer than 7.5 hours need a meal break.",
    ),
    _rule_config(
        4,
        "Meal Break Latest Start",
        RuleKind.MEAL_BREAK_LATEST_START,
        RuleCategory.BREAKS,
        max_value=4.75,
        description="Meal break must start within 4.75 hours of the shift start.",
    ),
    _rule_config(
        5,
        "Meal Break Duration",
        RuleKind.MEAL_BREAK_DURATION,
        RuleCategory.BREAKS,
        min_value=40,
        unit="minutes",
        description="Meal breaks last at least 40 minutes.",
    ),
    _rule_config(
        6,
        "Ideal Shift Length",
        RuleKind.IDEAL_SHIFT_LENGTH,
        RuleCategory.SHIFT_LENGTH,
        min_value=7.2,
        rule_type=RuleType.PREFERRED,
        description="Recommended new shifts aim for roughly 7.2 hours.",
    ),
]


def build_default_rules() -> List[LaborRule]:
    """Return fresh LaborRule objects for the baseline rule set."""
    return [LaborRule.from_dict(payload) for payload in copy.deepcopy(BASELINE_RULES)]


def ensure_default_rules(session_factory) -> None:
    """Seed the baseline rule set exactly once so generation can run end-to-end."""

    with session_factory() as session:
        if list_labor_rules(session):
            return
        replace_labor_rules(session, build_default_rules(), edited_by="system")
        logger.info("[rules] seeded %d baseline labor rules", len(BASELINE_RULES))
