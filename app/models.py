from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from errors import UnknownDayTypeError, UnknownZoneError
from intervals import format_time, parse_time, time_range


class Zone(str, Enum):
    NORTH = "North"
    SOUTH = "South"
    FLOATER = "Floater"

    @property
    def letter(self) -> str:
        return self.value[0]


class DayType(str, Enum):
    WEEKDAY = "weekday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"

    @property
    def code(self) -> str:
        return self.value[:3].upper()


class ShiftOrigin(str, Enum):
    IMPORTED = "imported"
    MANUAL = "manual"
    OPTIMIZED = "optimized"


ZONE_ORDER: Tuple[Zone, ...] = (Zone.NORTH, Zone.SOUTH, Zone.FLOATER)
DAY_TYPE_ORDER: Tuple[DayType, ...] = (DayType.WEEKDAY, DayType.SATURDAY, DayType.SUNDAY)
SEVERITY_ERROR = "error"
SEVERITY_WARNING = "warning"


def normalize_day_type(value: Any) -> DayType:
    if isinstance(value, DayType):
        return value
    label = str(value or "").strip().lower()
    try:
        return DayType(label)
    except ValueError:
        raise UnknownDayTypeError(value) from None


def normalize_zone(value: Any) -> Zone:
    if isinstance(value, Zone):
        return value
    label = str(value or "").strip().lower()
    for zone in ZONE_ORDER:
        if zone.value.lower() == label:
            return zone
    raise UnknownZoneError(value)


def _pick(payload: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in payload and payload[key] is not None:
            return payload[key]
    return default


def _number(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


@dataclass
class RequirementInterval:
    day_type: DayType
    start_time: str
    end_time: str
    north_required: float = 0.0
    south_required: float = 0.0
    floater_required: float = 0.0

    @property
    def start_minutes(self) -> int:
        return parse_time(self.start_time)

    def required(self, zone: Zone) -> float:
        if zone is Zone.NORTH:
            return self.north_required
        if zone is Zone.SOUTH:
            return self.south_required
        return self.floater_required

    @classmethod
    def from_dict(cls, payload: Dict[str, Any], day_type: Any = None) -> "RequirementInterval":
        return cls(
            day_type=normalize_day_type(day_type or _pick(payload, "dayType", "day_type")),
            start_time=_pick(payload, "startTime", "start_time"),
            end_time=_pick(payload, "endTime", "end_time"),
            north_required=_number(_pick(payload, "northRequired", "north_required", default=0)),
            south_required=_number(_pick(payload, "southRequired", "south_required", default=0)),
            floater_required=_number(_pick(payload, "floaterRequired", "floater_required", default=0)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dayType": self.day_type.value,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "northRequired": self.north_required,
            "southRequired": self.south_required,
            "floaterRequired": self.floater_required,
        }


@dataclass
class OperationalInterval:
    day_type: DayType
    start_time: str
    end_time: str
    north_operational: float = 0.0
    south_operational: float = 0.0
    floater_operational: float = 0.0
    break_count: int = 0

    @property
    def start_minutes(self) -> int:
        return parse_time(self.start_time)

    def operational(self, zone: Zone) -> float:
        if zone is Zone.NORTH:
            return self.north_operational
        if zone is Zone.SOUTH:
            return self.south_operational
        return self.floater_operational

    @classmethod
    def from_dict(cls, payload: Dict[str, Any], day_type: Any = None) -> "OperationalInterval":
        return cls(
            day_type=normalize_day_type(day_type or _pick(payload, "dayType", "day_type")),
            start_time=_pick(payload, "startTime", "start_time"),
            end_time=_pick(payload, "endTime", "end_time"),
            north_operational=_number(_pick(payload, "northOperational", "north_operational", default=0)),
            south_operational=_number(_pick(payload, "southOperational", "south_operational", default=0)),
            floater_operational=_number(_pick(payload, "floaterOperational", "floater_operational", default=0)),
            break_count=int(_number(_pick(payload, "breakCount", "break_count", default=0))),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dayType": self.day_type.value,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "northOperational": self.north_operational,
            "southOperational": self.south_operational,
            "floaterOperational": self.floater_operational,
            "breakCount": self.break_count,
        }


@dataclass(frozen=True)
class CoverageInterval:
    day_type: DayType
    start_time: str
    end_time: str
    north_required: float
    south_required: float
    floater_required: float
    north_operational: float
    south_operational: float
    floater_operational: float
    floater_to_north: float
    floater_to_south: float
    north_excess: float
    south_excess: float
    floater_excess: float
    total_excess: float
    status: str

    @property
    def start_minutes(self) -> int:
        return parse_time(self.start_time)

    @property
    def window(self) -> Tuple[int, int]:
        return time_range(self.start_time, self.end_time)

    def required(self, zone: Zone) -> float:
        return {
            Zone.NORTH: self.north_required,
            Zone.SOUTH: self.south_required,
            Zone.FLOATER: self.floater_required,
        }[zone]

    def operational(self, zone: Zone) -> float:
        return {
            Zone.NORTH: self.north_operational,
            Zone.SOUTH: self.south_operational,
            Zone.FLOATER: self.floater_operational,
        }[zone]

    def excess(self, zone: Zone) -> float:
        return {
            Zone.NORTH: self.north_excess,
            Zone.SOUTH: self.south_excess,
            Zone.FLOATER: self.floater_excess,
        }[zone]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dayType": self.day_type.value,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "northRequired": self.north_required,
            "southRequired": self.south_required,
            "floaterRequired": self.floater_required,
            "northOperational": self.north_operational,
            "southOperational": self.south_operational,
            "floaterOperational": self.floater_operational,
            "floaterAllocatedNorth": self.floater_to_north,
            "floaterAllocatedSouth": self.floater_to_south,
            "northExcess": self.north_excess,
            "southExcess": self.south_excess,
            "floaterExcess": self.floater_excess,
            "totalExcess": self.total_excess,
            "status": self.status,
        }


@dataclass
class Shift:
    shift_code: str
    zone: Zone
    day_type: DayType
    start_time: str
    end_time: str
    total_hours: float = 0.0
    break_start: Optional[str] = None
    break_end: Optional[str] = None
    break_duration: Optional[int] = None
    meal_break_start: Optional[str] = None
    meal_break_end: Optional[str] = None
    is_split_shift: bool = False
    union_compliant: bool = True
    compliance_warnings: List[str] = field(default_factory=list)
    origin: ShiftOrigin = ShiftOrigin.MANUAL
    vehicle_count: int = 1
    id: Optional[str] = None

    @property
    def window(self) -> Tuple[int, int]:
        return time_range(self.start_time, self.end_time)

    @property
    def duration_minutes(self) -> int:
        start, end = self.window
        return end - start

    def break_window(self) -> Optional[Tuple[int, int]]:
        if not self.break_start or not self.break_end:
            return None
        return time_range(self.break_start, self.break_end)

    def meal_window(self) -> Optional[Tuple[int, int]]:
        if not self.meal_break_start or not self.meal_break_end:
            return None
        return time_range(self.meal_break_start, self.meal_break_end)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Shift":
        origin = _pick(payload, "origin", default=ShiftOrigin.IMPORTED.value)
        break_duration = _pick(payload, "breakDuration", "break_duration")
        shift = cls(
            shift_code=str(_pick(payload, "shiftCode", "shift_code", default="")),
            zone=normalize_zone(_pick(payload, "zone")),
            day_type=normalize_day_type(_pick(payload, "dayType", "scheduleType", "day_type")),
            start_time=_pick(payload, "startTime", "start_time"),
            end_time=_pick(payload, "endTime", "end_time"),
            break_start=_pick(payload, "breakStart", "break_start"),
            break_end=_pick(payload, "breakEnd", "break_end"),
            break_duration=int(break_duration) if break_duration is not None else None,
            meal_break_start=_pick(payload, "mealBreakStart", "meal_break_start"),
            meal_break_end=_pick(payload, "mealBreakEnd", "meal_break_end"),
            is_split_shift=bool(_pick(payload, "isSplitShift", "is_split_shift", default=False)),
            union_compliant=bool(_pick(payload, "unionCompliant", "union_compliant", default=True)),
            compliance_warnings=list(_pick(payload, "complianceWarnings", "compliance_warnings", default=[])),
            origin=ShiftOrigin(str(origin).lower()),
            vehicle_count=max(1, int(_number(_pick(payload, "vehicleCount", "vehicle_count", default=1), 1))),
            id=_pick(payload, "id"),
        )
        total = _pick(payload, "totalHours", "total_hours")
        shift.total_hours = round(_number(total), 2) if total is not None else round(shift.duration_minutes / 60, 2)
        return shift

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "shiftCode": self.shift_code,
            "scheduleType": self.day_type.value,
            "zone": self.zone.value,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "totalHours": self.total_hours,
            "breakStart": self.break_start,
            "breakEnd": self.break_end,
            "breakDuration": self.break_duration,
            "mealBreakStart": self.meal_break_start,
            "mealBreakEnd": self.meal_break_end,
            "isSplitShift": self.is_split_shift,
            "unionCompliant": self.union_compliant,
            "complianceWarnings": list(self.compliance_warnings),
            "origin": self.origin.value,
            "vehicleCount": self.vehicle_count,
        }


@dataclass(frozen=True)
class Violation:
    rule_id: Optional[int]
    rule_name: str
    severity: str
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ruleId": self.rule_id,
            "ruleName": self.rule_name,
            "violationType": self.severity,
            "violationMessage": self.message,
        }


@dataclass
class DeficitBlock:
    id: str
    day_type: DayType
    zone: Zone
    start_minutes: int
    end_minutes: int
    vehicle_hours: float
    peak_shortfall: float
    intervals: List[CoverageInterval] = field(default_factory=list)

    @property
    def start_time(self) -> str:
        return format_time(self.start_minutes)

    @property
    def end_time(self) -> str:
        return format_time(self.end_minutes)

    @property
    def duration_minutes(self) -> int:
        return self.end_minutes - self.start_minutes

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "dayType": self.day_type.value,
            "zone": self.zone.value,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "startMinutes": self.start_minutes,
            "endMinutes": self.end_minutes,
            "durationMinutes": self.duration_minutes,
            "totalVehicleHours": self.vehicle_hours,
            "peakShortfall": self.peak_shortfall,
        }


@dataclass(frozen=True)
class CoverageImpact:
    interval_key: str
    zone: Zone
    coverage_gain: float

    def to_dict(self) -> Dict[str, Any]:
        return {"intervalKey": self.interval_key, "zone": self.zone.value, "coverageGain": self.coverage_gain}


@dataclass
class Recommendation:
    id: str
    type: str
    zone: Zone
    title: str
    summary: str
    priority: str
    deficit: DeficitBlock
    detail_items: List[str] = field(default_factory=list)
    affected_shift_codes: List[str] = field(default_factory=list)
    impact: List[CoverageImpact] = field(default_factory=list)
    proposed_start: Optional[str] = None
    proposed_end: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            "id": self.id,
            "type": self.type,
            "zone": self.zone.value,
            "title": self.title,
            "summary": self.summary,
            "detailItems": list(self.detail_items),
            "affectedShiftCodes": list(self.affected_shift_codes),
            "priority": self.priority,
            "deficit": self.deficit.to_dict(),
            "impact": [entry.to_dict() for entry in self.impact],
        }
        if self.proposed_start and self.proposed_end:
            payload["proposedStartTime"] = self.proposed_start
            payload["proposedEndTime"] = self.proposed_end
        return payload


@dataclass
class SolverCandidateShift:
    shift: Shift
    solver_id: str
    existing: bool

    @property
    def duration_minutes(self) -> int:
        return self.shift.duration_minutes

    def to_dict(self) -> Dict[str, Any]:
        payload = self.shift.to_dict()
        payload["solverId"] = self.solver_id
        payload["existing"] = self.existing
        return payload


def serialize_timeline(timeline: Dict[Any, List[Any]]) -> Dict[str, List[Dict[str, Any]]]:
    return {normalize_day_type(day).value: [row.to_dict() for row in rows] for day, rows in timeline.items()}


def parse_requirement_timeline(payload: Dict[str, Any]) -> Dict[DayType, List[RequirementInterval]]:
    return {
        normalize_day_type(day): [RequirementInterval.from_dict(row, day) for row in rows or []]
        for day, rows in (payload or {}).items()
    }


def parse_operational_timeline(payload: Dict[str, Any]) -> Dict[DayType, List[OperationalInterval]]:
    return {
        normalize_day_type(day): [OperationalInterval.from_dict(row, day) for row in rows or []]
        for day, rows in (payload or {}).items()
    }
