"""
Attendance API routes.
Handles check-in/check-out events and supervisor review.
"""
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..models.models import User
from ..auth.security import get_current_user, require_roles
from ..schemas.attendance import (
    AttendanceCreate,
    AttendanceResponse,
    AttendanceReview,
    AttendanceStatus,
)
from ..services import attendance as ledger
from ..services.permissions import can_record_for, can_view_attendance
from ..services.time_rules import parse_range

router = APIRouter(prefix="/attendance", tags=["attendance"])


@router.post("", response_model=AttendanceResponse, status_code=201)
def create_attendance(
    payload: AttendanceCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """
    Record a check-in or check-out.
    Events outside the project geofence are stored as pending, never dropped.
    """
    target_user_id = payload.user_id or user.id
    if not can_record_for(user, target_user_id):
        raise HTTPException(status_code=403, detail="You can only record attendance for yourself")

    return ledger.record_event(
        db,
        user_id=target_user_id,
        project_id=payload.project_id,
        check_type=payload.check_type.value,
        timestamp=payload.timestamp,
        coords=(payload.latitude, payload.longitude),
        evidence_url=payload.evidence_url,
        actor_id=user.id,
    )


@router.get("", response_model=List[AttendanceResponse])
def list_attendance(
    range_: Optional[str] = Query(default=None, alias="range"),
    user_id: Optional[str] = Query(default=None),
    project_id: Optional[str] = Query(default=None),
    status: Optional[AttendanceStatus] = Query(default=None),
    limit: int = Query(default=1000, ge=1, le=10000),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """List attendance events; non-reviewers only see their own."""
    if not can_view_attendance(user, user_id):
        if user_id:
            raise HTTPException(status_code=403, detail="Access denied")
        user_id = str(user.id)

    start, end = parse_range(range_)
    view = ledger.list_for_range(
        db,
        user_id=user_id,
        project_id=project_id,
        status=status.value if status else None,
        start=start,
        end=end,
    )
    out = []
    for record in view:
        out.append(record)
        if len(out) >= limit:
            break
    return out


@router.post("/{attendance_id}/approve", response_model=AttendanceResponse)
def approve_attendance(
    attendance_id: str,
    payload: Optional[AttendanceReview] = Body(default=None),
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("supervisor")),
):
    """Approve an attendance event (also overrides an earlier rejection)."""
    note = payload.note if payload else None
    return ledger.set_status(db, attendance_id, "approved", reviewer_id=user.id, note=note)


@router.post("/{attendance_id}/reject", response_model=AttendanceResponse)
def reject_attendance(
    attendance_id: str,
    payload: Optional[AttendanceReview] = Body(default=None),
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("supervisor")),
):
    """Reject an attendance event (also overrides an earlier approval)."""
    note = payload.note if payload else None
    return ledger.set_status(db, attendance_id, "rejected", reviewer_id=user.id, note=note)
