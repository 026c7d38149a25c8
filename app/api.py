"""FastAPI surface over the shift coverage engine.

Rules and run history live in the SQLite store from ``database``; every other
endpoint is a pure transform over the timelines and shifts in the request.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

# Keep the flat module imports ("import database") working under uvicorn.
APP_DIR = Path(__file__).resolve().parent
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from coverage_timeline import (  # noqa: E402
    break_relief_summary,
    build_operational_timeline,
    compute_coverage,
    excess_vehicle_hours,
)
from database import (  # noqa: E402
    SessionLocal,
    create_run,
    get_most_recent_run,
    get_run,
    init_database,
    list_labor_rules,
    record_audit_log,
    replace_labor_rules,
    update_run,
)
from errors import CUSTOM_ERRORS  # noqa: E402
from generator.api import build_optimization_report, generate_shifts  # noqa: E402
from insights import apply_recommendations, compute_insights  # noqa: E402
from logger import logger  # noqa: E402
from models import (  # noqa: E402
    Shift,
    normalize_day_type,
    parse_operational_timeline,
    parse_requirement_timeline,
    serialize_timeline,
)
from policy import DEFAULT_ENGINE_DEFAULTS, LaborRule, rule_set_issues  # noqa: E402
from policy_defaults import ensure_default_rules  # noqa: E402
from solver.api import run_solver_mode  # noqa: E402
from trimmer import trim_shifts  # noqa: E402


@asynccontextmanager
async def lifespan(_: FastAPI):
    init_database()
    ensure_default_rules(SessionLocal)
    yield


app = FastAPI(title="Shift Coverage Engine API", version="0.1", lifespan=lifespan)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _http_error(exc: Exception) -> HTTPException:
    return HTTPException(status_code=CUSTOM_ERRORS.get(type(exc), 400), detail=str(exc))


def _actor(payload: Dict[str, Any]) -> str:
    return (str(payload.get("actor") or "api")).strip() or "api"


def _rules_for(payload: Dict[str, Any], db: Session) -> List[LaborRule]:
    if payload.get("rules") is not None:
        return [LaborRule.from_dict(item) for item in payload["rules"]]
    return list_labor_rules(db)


def _shifts_from(payload: Dict[str, Any]) -> List[Shift]:
    return [Shift.from_dict(item) for item in payload.get("shifts") or []]


def _coverage_for(payload: Dict[str, Any], shifts: List[Shift]):
    requirements = parse_requirement_timeline(payload.get("requirementTimeline") or {})
    if not requirements:
        raise HTTPException(status_code=400, detail="requirementTimeline is required")
    if payload.get("operationalTimeline"):
        operational = parse_operational_timeline(payload["operationalTimeline"])
    else:
        operational = build_operational_timeline(shifts)
    return requirements, operational, compute_coverage(requirements, operational)


def _audit(db: Session, actor: str, action: str, target_id: Optional[int], payload: Optional[Dict[str, Any]] = None) -> None:
    record_audit_log(db, user_id=actor, action=action, target_type="ShiftRun", target_id=target_id, payload=payload)


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/api/v1/rules")
def get_rules(db=Depends(get_db)) -> JSONResponse:
    rules = list_labor_rules(db)
    return JSONResponse(content=jsonable_encoder({"rules": [rule.to_dict() for rule in rules]}))


@app.put("/api/v1/rules")
def put_rules(payload: Dict[str, Any], db=Depends(get_db)) -> JSONResponse:
    items = payload.get("rules")
    if not isinstance(items, list):
        raise HTTPException(status_code=400, detail="rules must be a list")
    actor = _actor(payload)
    try:
        rules = [LaborRule.from_dict(item) for item in items]
    except (ValueError, KeyError) as exc:
        raise _http_error(exc) from exc
    stored = replace_labor_rules(db, rules, edited_by=actor)
    _audit(db, actor, "RULES_REPLACED", None, {"count": len(stored)})
    issues = rule_set_issues(stored, DEFAULT_ENGINE_DEFAULTS)
    logger.info("[api] %s replaced %d labor rules", actor, len(stored))
    return JSONResponse(
        content=jsonable_encoder({"rules": [rule.to_dict() for rule in stored], "issues": issues})
    )


@app.get("/api/v1/rules/issues")
def get_rule_issues(db=Depends(get_db)) -> JSONResponse:
    issues = rule_set_issues(list_labor_rules(db), DEFAULT_ENGINE_DEFAULTS)
    return JSONResponse(content=jsonable_encoder({"issues": issues}))


@app.post("/api/v1/coverage")
def coverage(payload: Dict[str, Any]) -> JSONResponse:
    try:
        _, operational, result = _coverage_for(payload, _shifts_from(payload))
    except ValueError as exc:
        raise _http_error(exc) from exc
    return JSONResponse(
        content=jsonable_encoder(
            {
                "coverageTimeline": serialize_timeline(result.timeline),
                "colorScale": result.color_scale.to_dict(),
                "excessVehicleHours": excess_vehicle_hours(result.timeline),
                "breakRelief": break_relief_summary(operational),
            }
        )
    )


@app.post("/api/v1/generate")
def generate(payload: Dict[str, Any], db=Depends(get_db)) -> JSONResponse:
    try:
        requirements = parse_requirement_timeline(payload.get("requirementTimeline") or {})
        rules = _rules_for(payload, db)
        summary = generate_shifts(
            requirements,
            rules,
            defaults=DEFAULT_ENGINE_DEFAULTS,
            session_factory=SessionLocal,
            actor=_actor(payload),
            label=str(payload.get("label") or ""),
        )
    except ValueError as exc:
        raise _http_error(exc) from exc
    return JSONResponse(content=jsonable_encoder(summary))


@app.post("/api/v1/trim")
def trim(payload: Dict[str, Any], db=Depends(get_db)) -> JSONResponse:
    try:
        shifts = _shifts_from(payload)
        requirements, _, result = _coverage_for(payload, shifts)
        trimmed = trim_shifts(shifts, result.timeline, _rules_for(payload, db), DEFAULT_ENGINE_DEFAULTS)
        after = compute_coverage(requirements, build_operational_timeline(trimmed.shifts))
        run_id = payload.get("runId")
        content: Dict[str, Any] = {
            "shifts": [shift.to_dict() for shift in trimmed.shifts],
            "coverageTimeline": serialize_timeline(after.timeline),
            "colorScale": after.color_scale.to_dict(),
            **trimmed.summary(),
        }
        if run_id is not None:
            run = update_run(
                db,
                int(run_id),
                {"shifts": content["shifts"], "coverage": content["coverageTimeline"], "colorScale": content["colorScale"]},
            )
            _audit(db, _actor(payload), "TRIM_SHIFTS", run.id, trimmed.summary())
            content["runId"] = run.id
    except (ValueError, LookupError) as exc:
        raise _http_error(exc) from exc
    return JSONResponse(content=jsonable_encoder(content))


def _insights_by_day(payload: Dict[str, Any], db: Session):
    shifts = _shifts_from(payload)
    _, _, result = _coverage_for(payload, shifts)
    rules = _rules_for(payload, db)
    wanted = payload.get("dayType")
    days = [normalize_day_type(wanted)] if wanted else list(result.timeline)
    insights = {
        day: compute_insights(day, result.timeline.get(day, []), shifts, rules, DEFAULT_ENGINE_DEFAULTS)
        for day in days
    }
    return result, insights


@app.post("/api/v1/insights")
def insights(payload: Dict[str, Any], db=Depends(get_db)) -> JSONResponse:
    try:
        _, by_day = _insights_by_day(payload, db)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return JSONResponse(
        content=jsonable_encoder({"insights": [insight.to_dict() for insight in by_day.values()]})
    )


@app.post("/api/v1/insights/preview")
def insights_preview(payload: Dict[str, Any], db=Depends(get_db)) -> JSONResponse:
    try:
        result, by_day = _insights_by_day(payload, db)
    except ValueError as exc:
        raise _http_error(exc) from exc
    selected = payload.get("recommendationIds")
    chosen = [
        recommendation
        for insight in by_day.values()
        for recommendation in insight.recommendations
        if selected is None or recommendation.id in selected
    ]
    preview = apply_recommendations(result.timeline, chosen)
    return JSONResponse(
        content=jsonable_encoder(
            {
                "appliedRecommendationIds": [recommendation.id for recommendation in chosen],
                "coverageTimeline": serialize_timeline(preview),
                "excessVehicleHours": excess_vehicle_hours(preview),
            }
        )
    )


@app.post("/api/v1/solve")
def solve(payload: Dict[str, Any], db=Depends(get_db)) -> JSONResponse:
    if not payload.get("dayType"):
        raise HTTPException(status_code=400, detail="dayType is required")
    actor = _actor(payload)
    try:
        shifts = _shifts_from(payload)
        requirements, _, result = _coverage_for(payload, shifts)
        outcome = run_solver_mode(
            payload["dayType"],
            result.timeline,
            shifts,
            _rules_for(payload, db),
            defaults=DEFAULT_ENGINE_DEFAULTS,
            enable_variants=bool(payload.get("enableVariants", False)),
        )
    except ValueError as exc:
        raise _http_error(exc) from exc

    selected = [Shift.from_dict(item) for item in outcome["shifts"]]
    after = compute_coverage(requirements, build_operational_timeline(selected))
    report = build_optimization_report(
        selected,
        after.timeline,
        [],
        strategy="solver",
        solver_warnings=[f"Unmet demand at {key}" for key in outcome["unmetConstraints"]],
    )
    run = create_run(
        db,
        {
            "requirements": serialize_timeline(requirements),
            "shifts": outcome["shifts"],
            "coverage": serialize_timeline(after.timeline),
            "colorScale": after.color_scale.to_dict(),
            "report": report,
        },
        created_by=actor,
        label=str(payload.get("label") or ""),
        strategy="solver",
    )
    _audit(db, actor, "SOLVE_SHIFTS", run.id, {"selected": len(selected), "unmet": len(outcome["unmetConstraints"])})
    outcome["runId"] = run.id
    outcome["report"] = report
    return JSONResponse(content=jsonable_encoder(outcome))


@app.get("/api/v1/runs/latest")
def latest_run(db=Depends(get_db)) -> JSONResponse:
    run = get_most_recent_run(db)
    if not run:
        raise HTTPException(status_code=404, detail="No runs recorded yet")
    return JSONResponse(content=jsonable_encoder(run.payload_dict()))


@app.get("/api/v1/runs/{run_id}")
def run_detail(run_id: int, db=Depends(get_db)) -> JSONResponse:
    try:
        run = get_run(db, run_id)
    except LookupError as exc:
        raise _http_error(exc) from exc
    return JSONResponse(content=jsonable_encoder(run.payload_dict()))


if __name__ == "__main__":  # pragma: no cover
    import uvicorn

    uvicorn.run("api:app", host="127.0.0.1", port=8001, reload=False)
