from __future__ import annotations

import datetime
import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    Integer,
    String,
    Text,
    create_engine,
    delete,
    select,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker

from errors import RunNotFoundError
from logger import logger
from policy import LaborRule


DATA_DIR = Path(__file__).resolve().parent / "data"
DATA_DIR.mkdir(parents=True, exist_ok=True)
SCHEDULE_DATABASE_URL = f"sqlite:///{(DATA_DIR / 'shift_engine.db').as_posix()}"
RUN_PAYLOAD_FIELDS = {
    "requirements": "requirementsJSON",
    "shifts": "shiftsJSON",
    "coverage": "coverageJSON",
    "colorScale": "colorScaleJSON",
    "report": "reportJSON",
}


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class Base(DeclarativeBase):
    """Metadata for rule, run and audit tables living in shift_engine.db."""

    pass


class LaborRuleRecord(Base):
    __tablename__ = "labor_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rule_name: Mapped[str] = mapped_column(String(120), nullable=False)
    rule_type: Mapped[str] = mapped_column(String(16), nullable=False, default="required")
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    kind: Mapped[str | None] = mapped_column(String(40), nullable=True)
    min_value: Mapped[float | None] = mapped_column(Float, nullable=True)
    max_value: Mapped[float | None] = mapped_column(Float, nullable=True)
    unit: Mapped[str] = mapped_column(String(16), nullable=False, default="hours")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    description: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    lastEditedBy: Mapped[str] = mapped_column(String(60), nullable=False, default="system")
    updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_rule(self) -> LaborRule:
        # Rows saved before kinds existed are tagged on the way out.
        return LaborRule.from_dict(
            {
                "id": self.id,
                "ruleName": self.rule_name,
                "ruleType": self.rule_type,
                "category": self.category,
                "kind": self.kind,
                "minValue": self.min_value,
                "maxValue": self.max_value,
                "unit": self.unit,
                "isActive": self.is_active,
                "description": self.description,
            }
        )


class ShiftRun(Base):
    __tablename__ = "shift_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    label: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    strategy: Mapped[str] = mapped_column(String(20), nullable=False, default="heuristic")
    created_by: Mapped[str] = mapped_column(String(60), nullable=False, default="system")
    requirementsJSON: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    shiftsJSON: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    coverageJSON: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    colorScaleJSON: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    reportJSON: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def payload_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "label": self.label,
            "strategy": self.strategy,
            "createdBy": self.created_by,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }
        for key, column in RUN_PAYLOAD_FIELDS.items():
            try:
                payload[key] = json.loads(getattr(self, column) or "null")
            except json.JSONDecodeError:
                logger.warning("[database] run %s has unreadable %s payload", self.id, key)
                payload[key] = None
        return payload


class AuditLog(Base):
    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(60), nullable=False)
    action: Mapped[str] = mapped_column(String(60), nullable=False)
    target_type: Mapped[str] = mapped_column(String(32), nullable=False, default="ShiftRun")
    target_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    payloadJSON: Mapped[str] = mapped_column(String(2000), nullable=False, default="{}")
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


schedule_engine = create_engine(
    SCHEDULE_DATABASE_URL,
    echo=False,
    future=True,
)
SessionLocal = sessionmaker(bind=schedule_engine, expire_on_commit=False, future=True)


def init_database() -> None:
    Base.metadata.create_all(schedule_engine)


def list_labor_rules(session) -> List[LaborRule]:
    stmt = select(LaborRuleRecord).order_by(LaborRuleRecord.position.asc(), LaborRuleRecord.id.asc())
    return [record.to_rule() for record in session.scalars(stmt)]


def replace_labor_rules(session, rules: Iterable[LaborRule], *, edited_by: str = "system") -> List[LaborRule]:
    """Store ``rules`` as the complete active rule set, preserving their order."""
    session.execute(delete(LaborRuleRecord))
    for position, rule in enumerate(rules):
        session.add(
            LaborRuleRecord(
                id=rule.id,
                position=position,
                rule_name=rule.name,
                rule_type=rule.rule_type.value,
                category=rule.category.value,
                kind=rule.kind.value if rule.kind else None,
                min_value=rule.min_value,
                max_value=rule.max_value,
                unit=rule.unit,
                is_active=rule.active,
                description=rule.description,
                lastEditedBy=edited_by,
            )
        )
    session.commit()
    return list_labor_rules(session)


def _dump(value: Any, fallback: str) -> str:
    if value is None:
        return fallback
    return json.dumps(value)


def create_run(
    session,
    payload: Dict[str, Any],
    *,
    created_by: str = "system",
    label: str = "",
    strategy: str = "heuristic",
) -> ShiftRun:
    run = ShiftRun(label=label, strategy=strategy, created_by=created_by)
    for key, column in RUN_PAYLOAD_FIELDS.items():
        setattr(run, column, _dump(payload.get(key), "[]" if key == "shifts" else "{}"))
    session.add(run)
    session.commit()
    session.refresh(run)
    return run


def get_run(session, run_id: int) -> ShiftRun:
    run = session.get(ShiftRun, run_id)
    if run is None:
        raise RunNotFoundError(run_id)
    return run


def update_run(session, run_id: int, updates: Dict[str, Any]) -> ShiftRun:
    run = get_run(session, run_id)
    for key, value in (updates or {}).items():
        column = RUN_PAYLOAD_FIELDS.get(key)
        if column:
            setattr(run, column, json.dumps(value))
        elif key in {"label", "strategy"}:
            setattr(run, key, str(value))
    run.updated_at = _utcnow()
    session.commit()
    session.refresh(run)
    return run


def get_most_recent_run(session) -> Optional[ShiftRun]:
    stmt = select(ShiftRun).order_by(ShiftRun.created_at.desc(), ShiftRun.id.desc())
    return session.scalars(stmt).first()


def record_audit_log(
    session,
    user_id: str,
    action: str,
    target_type: str = "ShiftRun",
    target_id: Optional[int] = None,
    payload: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    log = AuditLog(
        user_id=user_id,
        action=action,
        target_type=target_type,
        target_id=target_id,
        payloadJSON=json.dumps(payload or {}),
    )
    session.add(log)
    session.commit()
    return log
