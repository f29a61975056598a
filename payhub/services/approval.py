"""
Payroll record approval workflow.

pending --approve--> approved
pending --reject--> rejected
approved --reject--> rejected
rejected is terminal; a later generate run creates a fresh record instead.
"""
from datetime import datetime
from typing import Optional

import pytz
import structlog
from sqlalchemy import update
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import ConflictError, InvalidTransition, NotFoundError, ValidationError
from ..models.models import PayrollRecord
from . import audit
from .projects import parse_uuid


logger = structlog.get_logger(__name__)

TRANSITIONS = {
    ("pending", "approved"),
    ("pending", "rejected"),
    ("approved", "rejected"),
}


def get_record(db: Session, record_id) -> PayrollRecord:
    try:
        rid = parse_uuid(record_id, "payroll record id")
    except ValidationError:
        raise NotFoundError("Payroll record not found")
    record = db.query(PayrollRecord).filter(PayrollRecord.id == rid).first()
    if not record:
        raise NotFoundError("Payroll record not found")
    return record


def _try_transition(db: Session, record_id, observed: str, target: str, reviewer_id, note: Optional[str]) -> None:
    """
    Compare-and-set on the observed state; raises ConflictError when another
    reviewer moved it first. A no-op (observed == target) still runs the guarded
    UPDATE so it only succeeds if the record is still in that state.
    """
    values = {"approved": target}
    if observed != target:
        values.update(
            reviewed_by=reviewer_id,
            reviewed_at=datetime.now(pytz.UTC),
            review_note=note,
        )
    result = db.execute(
        update(PayrollRecord)
        .where(PayrollRecord.id == record_id, PayrollRecord.approved == observed)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConflictError(f"Payroll record {record_id} changed concurrently")


def transition(db: Session, record_id, target: str, reviewer_id, note: Optional[str] = None) -> PayrollRecord:
    """
    Move a payroll record to `target`, serialized per record.

    Re-applying the current state is a no-op success. Every call appends
    exactly one audit event describing what happened.
    """
    if target not in ("approved", "rejected"):
        raise ValidationError("target must be 'approved' or 'rejected'")
    if reviewer_id is None:
        raise ValidationError("reviewer is required")
    reviewer_id = parse_uuid(reviewer_id, "reviewer_id")

    attempts = max(1, settings.approval_max_retries)
    for attempt in range(attempts):
        record = get_record(db, record_id)
        before = record.approved
        changed = before != target
        if changed and (before, target) not in TRANSITIONS:
            db.rollback()
            raise InvalidTransition(before, target)

        try:
            _try_transition(db, record.id, before, target, reviewer_id, note)
            audit.append(
                db,
                actor_id=reviewer_id,
                action="approve" if target == "approved" else "reject",
                entity_type="payroll_record",
                entity_id=record.id,
                details=f"payroll {before} -> {target}" if changed else f"payroll already {target}",
                changes=audit.compute_diff({"approved": before}, {"approved": target}),
                context={
                    "user_id": str(record.user_id),
                    "project_id": str(record.project_id),
                    "month": record.month,
                    "note": note,
                    "noop": not changed,
                },
                commit=False,
            )
            db.commit()
        except ConflictError:
            db.rollback()
            logger.info("payroll_transition_retry", record_id=str(record.id), attempt=attempt + 1, target=target)
            continue
        except Exception:
            db.rollback()
            raise

        db.expire_all()
        record = get_record(db, record.id)
        logger.info("payroll_transition", record_id=str(record.id), before=before, after=target, noop=not changed)
        return record

    # Still contended after every retry; report the state as it stands now
    record = get_record(db, record_id)
    if record.approved == target:
        return record
    raise InvalidTransition(record.approved, target)


def approve(db: Session, record_id, reviewer_id, note: Optional[str] = None) -> PayrollRecord:
    return transition(db, record_id, "approved", reviewer_id, note)


def reject(db: Session, record_id, reviewer_id, reason: Optional[str] = None) -> PayrollRecord:
    return transition(db, record_id, "rejected", reviewer_id, reason)
