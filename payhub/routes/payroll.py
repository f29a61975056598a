"""
Payroll API routes.
Preview, generation and approval of monthly payroll records.
"""
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..models.models import PayrollRecord, User
from ..auth.security import get_current_user, require_roles
from ..schemas.payroll import (
    ApprovalStatus,
    GenerateRequest,
    GenerateResponse,
    PayrollPreviewResponse,
    PayrollRecordResponse,
    PayrollReview,
    PreviewRowResponse,
)
from ..services import approval, payroll as payroll_service
from ..services.permissions import can_review
from ..services.time_rules import parse_month

router = APIRouter(prefix="/payroll", tags=["payroll"])


def _records_out(db: Session, records: List[PayrollRecord]) -> List[PayrollRecordResponse]:
    names = payroll_service.record_names(db, records)
    out = []
    for record in records:
        item = PayrollRecordResponse.model_validate(record)
        item.user_name = names["users"].get(record.user_id)
        item.project_name = names["projects"].get(record.project_id)
        out.append(item)
    return out


@router.get("/compute", response_model=PayrollPreviewResponse)
def compute_payroll(
    month: str = Query(...),
    project_id: Optional[str] = Query(default=None),
    db: Session = Depends(get_db),
    _: User = Depends(require_roles("supervisor")),
):
    """Preview the month's payroll; nothing is saved."""
    period = parse_month(month)
    rows = payroll_service.preview(db, period.key, project_id)
    return PayrollPreviewResponse(
        month=period.key,
        records=[PreviewRowResponse.model_validate(r) for r in rows],
    )


@router.get("/records", response_model=List[PayrollRecordResponse])
def list_payroll_records(
    month: Optional[str] = Query(default=None),
    project_id: Optional[str] = Query(default=None),
    status: Optional[ApprovalStatus] = Query(default=None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Persisted records; workers only see their own lines."""
    user_id = None if can_review(user) else user.id
    records = payroll_service.list_records(
        db,
        month=month,
        project_id=project_id,
        user_id=user_id,
        status=status.value if status else None,
    )
    return _records_out(db, records)


@router.post("/generate", response_model=GenerateResponse)
def generate_payroll(
    payload: GenerateRequest,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("supervisor")),
):
    """
    Persist the month's payroll.
    Safe to repeat: existing pending/approved records are reported as skipped.
    """
    result = payroll_service.generate(db, payload.month, payload.project_id, actor_id=user.id)
    return GenerateResponse(
        month=result.month,
        created=result.created,
        skipped=result.skipped,
        warnings=result.warnings,
    )


@router.put("/records/{record_id}/approve", response_model=PayrollRecordResponse)
def approve_payroll_record(
    record_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("supervisor")),
):
    record = approval.approve(db, record_id, reviewer_id=user.id)
    return _records_out(db, [record])[0]


@router.put("/records/{record_id}/reject", response_model=PayrollRecordResponse)
def reject_payroll_record(
    record_id: str,
    payload: Optional[PayrollReview] = Body(default=None),
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("supervisor")),
):
    record = approval.reject(db, record_id, reviewer_id=user.id, reason=payload.reason if payload else None)
    return _records_out(db, [record])[0]
