"""
Payroll generation.

Turns preview rows into persisted PayrollRecords exactly once per
(user, project, month). The partial unique index on payroll_records is the
enforcement point; the pre-check below only saves round trips.
"""
from decimal import Decimal
from typing import Dict, List, Optional, Set, Tuple
from dataclasses import dataclass, field

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import ValidationError
from ..models.models import Attendance, PayrollRecord, Project, User
from . import audit
from .payroll_compute import PayConfig, PreviewRow, compute
from .projects import parse_uuid, project_allowances, require_project
from .time_rules import MonthPeriod, month_bounds_utc, parse_month


logger = structlog.get_logger(__name__)

RECORD_STATUSES = ("pending", "approved", "rejected")


@dataclass
class GenerateResult:
    month: str
    created: int = 0
    skipped: int = 0
    warnings: List[dict] = field(default_factory=list)


def pay_config(project: Project) -> PayConfig:
    return PayConfig(
        project_id=project.id,
        pay_type=project.pay_type,
        pay_rate=Decimal(str(project.pay_rate)) if project.pay_rate is not None else None,
        allowances=project_allowances(project),
        name=project.name,
    )


def _scope_projects(db: Session, project_id=None) -> List[Project]:
    if project_id:
        return [require_project(db, project_id)]
    return db.query(Project).order_by(Project.name.asc()).all()


def _approved_check_ins(db: Session, project: Project, period: MonthPeriod):
    start, end = month_bounds_utc(period)
    return (
        db.query(Attendance)
        .filter(
            Attendance.project_id == project.id,
            Attendance.status == "approved",
            Attendance.check_type == "check_in",
            Attendance.timestamp >= start,
            Attendance.timestamp < end,
        )
        .yield_per(500)
    )


def _attach_names(db: Session, rows: List[PreviewRow]) -> None:
    user_ids = {r.user_id for r in rows}
    if not user_ids:
        return
    names = {u.id: u.display_name for u in db.query(User).filter(User.id.in_(user_ids)).all()}
    for row in rows:
        row.user_name = names.get(row.user_id)


def preview(db: Session, month: str, project_id=None) -> List[PreviewRow]:
    """Compute the month's payroll without writing anything."""
    period = parse_month(month)
    rows: List[PreviewRow] = []
    for project in _scope_projects(db, project_id):
        rows.extend(compute(pay_config(project), _approved_check_ins(db, project, period), period, settings.payroll_tz))
    _attach_names(db, rows)
    rows.sort(key=lambda r: (-r.total_amount, str(r.user_id), str(r.project_id)))
    return rows


def _live_keys(db: Session, month: str, project_ids: List) -> Set[Tuple]:
    query = db.query(PayrollRecord.user_id, PayrollRecord.project_id).filter(
        PayrollRecord.month == month,
        PayrollRecord.approved != "rejected",
    )
    if project_ids:
        query = query.filter(PayrollRecord.project_id.in_(project_ids))
    return {(u, p) for u, p in query.all()}


def _insert_row(db: Session, row: PreviewRow, actor_id) -> Optional[PayrollRecord]:
    """Insert inside a SAVEPOINT; None means the key is already taken."""
    try:
        with db.begin_nested():
            record = PayrollRecord(
                user_id=row.user_id,
                project_id=row.project_id,
                month=row.month,
                pay_type=row.pay_type,
                days_present=row.days_present,
                base_rate=row.base_rate,
                base_amount=row.base_amount,
                allowances_total=row.allowances_total,
                total_amount=row.total_amount,
                approved="pending",
                created_by=actor_id,
            )
            db.add(record)
            db.flush()
    except IntegrityError:
        return None
    return record


def generate(db: Session, month: str, project_id=None, actor_id=None) -> GenerateResult:
    """
    Persist the month's payroll for one project or all projects.

    Existing pending/approved records are skipped, never overwritten; rejected
    ones do not block a fresh record. All inserts and their audit events
    commit together or not at all.
    """
    period = parse_month(month)
    actor_id = parse_uuid(actor_id, "actor_id") if actor_id else None
    projects = _scope_projects(db, project_id)
    rows = preview(db, period.key, project_id)
    result = GenerateResult(month=period.key)

    for row in rows:
        for warning in row.warnings:
            result.warnings.append({"user_id": str(row.user_id), "project_id": str(row.project_id), "warning": warning})
            logger.warning("payroll_pay_rate_missing", project_id=str(row.project_id), user_id=str(row.user_id), month=period.key)

    try:
        live = _live_keys(db, period.key, [p.id for p in projects])
        for row in rows:
            if (row.user_id, row.project_id) in live:
                result.skipped += 1
                continue
            record = _insert_row(db, row, actor_id)
            if record is None:
                # Lost a race against a concurrent run
                result.skipped += 1
                logger.info("payroll_row_skipped", user_id=str(row.user_id), project_id=str(row.project_id), month=period.key)
                continue
            audit.append(
                db,
                actor_id=actor_id,
                action="generate",
                entity_type="payroll_record",
                entity_id=record.id,
                details=f"Payroll {period.key} created ({row.days_present} days, total {row.total_amount})",
                context={
                    "user_id": str(row.user_id),
                    "project_id": str(row.project_id),
                    "month": period.key,
                    "total_amount": str(row.total_amount),
                },
                commit=False,
            )
            result.created += 1

        if result.created:
            audit.append(
                db,
                actor_id=actor_id,
                action="generate",
                entity_type="payroll_run",
                entity_id=f"{period.key}:{project_id or 'all'}",
                details=f"Payroll run {period.key}: {result.created} created, {result.skipped} skipped",
                context={"month": period.key, "project_id": str(project_id) if project_id else None},
                commit=False,
            )
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("payroll_generate_failed", month=period.key, project_id=str(project_id) if project_id else None)
        raise

    logger.info("payroll_generated", month=period.key, project_id=str(project_id) if project_id else None,
                created=result.created, skipped=result.skipped)
    return result


def list_records(
    db: Session,
    month: Optional[str] = None,
    project_id=None,
    user_id=None,
    status: Optional[str] = None,
) -> List[PayrollRecord]:
    query = db.query(PayrollRecord)
    if month:
        query = query.filter(PayrollRecord.month == parse_month(month).key)
    if project_id:
        query = query.filter(PayrollRecord.project_id == parse_uuid(project_id, "project_id"))
    if user_id:
        query = query.filter(PayrollRecord.user_id == parse_uuid(user_id, "user_id"))
    if status:
        if status not in RECORD_STATUSES:
            raise ValidationError(f"status must be one of {', '.join(RECORD_STATUSES)}")
        query = query.filter(PayrollRecord.approved == status)
    return query.order_by(PayrollRecord.created_at.desc(), PayrollRecord.id.asc()).all()


def record_names(db: Session, records: List[PayrollRecord]) -> Dict[str, Dict]:
    """User and project display names for a batch of records."""
    user_ids = {r.user_id for r in records}
    project_ids = {r.project_id for r in records}
    users = {u.id: u.display_name for u in db.query(User).filter(User.id.in_(user_ids)).all()} if user_ids else {}
    projects = {p.id: p.name for p in db.query(Project).filter(Project.id.in_(project_ids)).all()} if project_ids else {}
    return {"users": users, "projects": projects}
