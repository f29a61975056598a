"""
Project pay configuration: validation of rates and allowances, status derivation.
"""
import re
import uuid
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

import pytz
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import NotFoundError, ValidationError
from ..models.models import Attendance, PayrollRecord, Project
from . import audit
from .payroll_compute import round_money
from .time_rules import ensure_utc, parse_range, utc_to_local


PAY_TYPES = ("monthly", "weekly", "daily", "hourly")
ALLOWANCE_NAME_RE = re.compile(r"^[a-z][a-z0-9_]{0,49}$")
# Set by an operator; derivation never overrides these
MANUAL_STATUSES = ("on_hold", "cancelled")


def to_decimal(value, field: str) -> Decimal:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number")
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    return amount


def parse_uuid(value, field: str = "id") -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {field}")


def validate_pay_type(pay_type: str) -> str:
    if pay_type not in PAY_TYPES:
        raise ValidationError(f"pay_type must be one of {', '.join(PAY_TYPES)}")
    return pay_type


def validate_pay_rate(pay_rate) -> Optional[Decimal]:
    if pay_rate is None:
        return None
    amount = to_decimal(pay_rate, "pay_rate")
    if amount < 0:
        raise ValidationError("pay_rate must be >= 0")
    return amount


def validate_allowances(raw) -> Dict[str, Decimal]:
    """
    Validate an allowances payload into {name: non-negative Decimal}.

    Names are lowercase identifiers; when ALLOWANCE_NAMES is configured the
    vocabulary is closed to that list.
    """
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ValidationError("allowances must be an object of name -> amount")

    allowed = settings.allowed_allowance_names()
    result: Dict[str, Decimal] = {}
    for name, value in raw.items():
        if not isinstance(name, str) or not ALLOWANCE_NAME_RE.match(name):
            raise ValidationError(f"Invalid allowance name '{name}'")
        if allowed is not None and name not in allowed:
            raise ValidationError(f"Unknown allowance '{name}'")
        if isinstance(value, (dict, list)) or value is None:
            raise ValidationError(f"Allowance '{name}' must be a number")
        amount = to_decimal(value, f"allowance '{name}'")
        if amount < 0:
            raise ValidationError(f"Allowance '{name}' must be >= 0")
        result[name] = amount
    return result


def _parse_stored_allowances(raw) -> Dict[str, Decimal]:
    """Stored allowances were validated on write; only coerce amounts here."""
    result: Dict[str, Decimal] = {}
    for name, value in (raw or {}).items():
        result[name] = to_decimal(value, f"allowance '{name}'")
    return result


def project_allowances(project: Project) -> Dict[str, Decimal]:
    return _parse_stored_allowances(project.allowances)


def validate_location(lat, lng):
    if lat is None and lng is None:
        return None, None
    if lat is None or lng is None:
        raise ValidationError("location_lat and location_lng must be provided together")
    lat_d = to_decimal(lat, "location_lat")
    lng_d = to_decimal(lng, "location_lng")
    if not (-90 <= lat_d <= 90) or not (-180 <= lng_d <= 180):
        raise ValidationError("Location is out of range")
    return lat_d, lng_d


def derive_status(project: Project, today: Optional[date] = None) -> str:
    """Status from the project dates unless an operator has put it on hold or cancelled it."""
    if project.status in MANUAL_STATUSES:
        return project.status
    today = today or date.today()
    if project.start_date and today < project.start_date:
        return "upcoming"
    if project.end_date and today > project.end_date:
        return "completed"
    return "active"


def get_project(db: Session, project_id) -> Project:
    try:
        pid = parse_uuid(project_id, "project_id")
    except ValidationError:
        raise NotFoundError("Project not found")
    project = db.query(Project).filter(Project.id == pid).first()
    if not project:
        raise NotFoundError("Project not found")
    return project


def require_project(db: Session, project_id) -> Project:
    """Like get_project, but an unknown project is a caller input error."""
    try:
        return get_project(db, project_id)
    except NotFoundError:
        raise ValidationError("Unknown project")


def create_project(db: Session, payload: dict, actor_id=None) -> Project:
    name = (payload.get("name") or "").strip()
    if not name:
        raise ValidationError("name is required")
    pay_type = validate_pay_type(payload.get("pay_type") or "monthly")
    pay_rate = validate_pay_rate(payload.get("pay_rate"))
    allowances = validate_allowances(payload.get("allowances"))
    lat, lng = validate_location(payload.get("location_lat"), payload.get("location_lng"))

    radius = payload.get("radius")
    if radius is None:
        radius = settings.geo_radius_m_default
    radius = to_decimal(radius, "radius")
    if radius <= 0:
        raise ValidationError("radius must be > 0")

    start_date = payload.get("start_date")
    end_date = payload.get("end_date")
    if start_date and end_date and end_date < start_date:
        raise ValidationError("end_date must not be before start_date")

    status = payload.get("status")
    if status is not None and status not in MANUAL_STATUSES:
        raise ValidationError(f"status can only be set to {', '.join(MANUAL_STATUSES)}")

    project = Project(
        name=name,
        pay_type=pay_type,
        pay_rate=pay_rate,
        allowances={k: str(v) for k, v in allowances.items()},
        location_lat=lat,
        location_lng=lng,
        radius=int(radius),
        start_date=start_date,
        end_date=end_date,
        status=status,
    )
    db.add(project)
    db.flush()
    project.status = status or derive_status(project)
    audit.append(
        db,
        actor_id=actor_id,
        action="create",
        entity_type="project",
        entity_id=project.id,
        details=f"Project '{name}' created",
        context={"pay_type": pay_type},
        commit=False,
    )
    db.commit()
    db.refresh(project)
    return project


def project_summary(db: Session, project_id, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Overview tiles for a project: check-ins over the last 7 days, the current
    month's live payroll total and the number of workers who ever checked in.
    """
    project = get_project(db, project_id)
    now_utc = ensure_utc(now or datetime.now(pytz.UTC))
    start, end = parse_range("7d", now=now_utc)
    month = utc_to_local(now_utc, settings.payroll_tz).strftime("%Y-%m")

    attendance_last7 = (
        db.query(func.count(Attendance.id))
        .filter(
            Attendance.project_id == project.id,
            Attendance.timestamp >= start,
            Attendance.timestamp < end,
        )
        .scalar()
    )
    payroll_total = (
        db.query(func.sum(PayrollRecord.total_amount))
        .filter(
            PayrollRecord.project_id == project.id,
            PayrollRecord.month == month,
            PayrollRecord.approved != "rejected",
        )
        .scalar()
    )
    team_count = (
        db.query(func.count(func.distinct(Attendance.user_id)))
        .filter(Attendance.project_id == project.id)
        .scalar()
    )
    return {
        "project_id": project.id,
        "month": month,
        "attendance_last7": int(attendance_last7 or 0),
        "payroll_month_total": round_money(Decimal(str(payroll_total or 0))),
        "team_count": int(team_count or 0),
    }
