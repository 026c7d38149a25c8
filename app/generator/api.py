from __future__ import annotations

import datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from .engine import AutoShiftGenerator
from coverage_timeline import compute_coverage, excess_vehicle_hours
from database import create_run, record_audit_log
from logger import logger
from models import DAY_TYPE_ORDER, CoverageInterval, Shift, serialize_timeline
from policy import DEFAULT_ENGINE_DEFAULTS, EngineDefaults, LaborRule, rule_set_issues


def build_optimization_report(
    shifts: Sequence[Shift],
    coverage: Mapping[Any, Sequence[CoverageInterval]],
    warnings: Iterable[Any],
    *,
    strategy: str = "heuristic",
    solver_warnings: Optional[List[str]] = None,
) -> Dict[str, Any]:
    deficit_by_day = {day.value: 0 for day in DAY_TYPE_ORDER}
    for day_type, rows in coverage.items():
        key = getattr(day_type, "value", day_type)
        deficit_by_day[key] = sum(1 for row in rows if row.status == "deficit")
    messages: List[str] = []
    for entry in warnings:
        if isinstance(entry, dict):
            messages.extend(f"{entry.get('shiftCode')}: {message}" for message in entry.get("messages", []))
        else:
            messages.append(str(entry))
    compliant = sum(1 for shift in shifts if shift.union_compliant)
    report: Dict[str, Any] = {
        "generatedAt": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        "totalShifts": len(shifts),
        "compliantShifts": compliant,
        "warningShifts": len(shifts) - compliant,
        "deficitIntervals": sum(deficit_by_day.values()),
        "deficitByDayType": deficit_by_day,
        "warnings": messages,
        "strategy": strategy,
    }
    if solver_warnings:
        report["solverWarnings"] = list(solver_warnings)
    return report


def generate_shifts(
    requirement_timeline: Mapping[Any, Sequence[Any]],
    rules: Iterable[LaborRule],
    *,
    defaults: EngineDefaults = DEFAULT_ENGINE_DEFAULTS,
    session_factory: Optional[Callable] = None,
    actor: str = "system",
    label: str = "",
) -> Dict[str, Any]:
    """Generate shifts for every day type and summarise the resulting coverage."""
    if not requirement_timeline:
        raise ValueError("requirement_timeline is required.")
    rule_list = list(rules or [])
    issues = rule_set_issues(rule_list, defaults)
    for issue in issues:
        logger.warning("[generator] rule set: %s", issue["message"])

    result = AutoShiftGenerator(rule_list, defaults).generate(requirement_timeline)
    coverage = compute_coverage(requirement_timeline, result.operational_timeline)
    report = build_optimization_report(result.shifts, coverage.timeline, result.warnings)
    summary: Dict[str, Any] = {
        "shifts": [shift.to_dict() for shift in result.shifts],
        "operationalTimeline": serialize_timeline(result.operational_timeline),
        "coverageTimeline": serialize_timeline(coverage.timeline),
        "colorScale": coverage.color_scale.to_dict(),
        "excessVehicleHours": excess_vehicle_hours(coverage.timeline),
        "warnings": result.warnings,
        "ruleIssues": issues,
        "report": report,
        "shifts_created": result.shifts_created,
    }
    logger.info(
        "[generator] created %d shifts (%d with warnings)",
        result.shifts_created,
        report["warningShifts"],
    )
    if session_factory is None:
        return summary
    with session_factory() as session:
        run = create_run(
            session,
            {
                "requirements": serialize_timeline(requirement_timeline),
                "shifts": summary["shifts"],
                "coverage": summary["coverageTimeline"],
                "colorScale": summary["colorScale"],
                "report": report,
            },
            created_by=actor or "system",
            label=label,
        )
        record_audit_log(
            session,
            user_id=actor or "system",
            action="GENERATE_SHIFTS",
            target_id=run.id,
            payload={"shifts": result.shifts_created, "warnings": len(result.warnings)},
        )
        summary["runId"] = run.id
    return summary
