import uuid

import pytest
from sqlalchemy import update

from payhub.errors import ConflictError, InvalidTransition, NotFoundError, ValidationError
from payhub.models.models import AuditLog, PayrollRecord
from payhub.services import approval, payroll

from conftest import check_in, utc


@pytest.fixture
def record(db, worker, supervisor, project):
    check_in(db, worker, project, utc(2024, 5, 1, 8))
    payroll.generate(db, "2024-05", project.id, actor_id=supervisor.id)
    return db.query(PayrollRecord).one()


def audit_count(db, record_id):
    return (
        db.query(AuditLog)
        .filter(AuditLog.entity_type == "payroll_record", AuditLog.entity_id == str(record_id))
        .filter(AuditLog.event.in_(("approve", "reject")))
        .count()
    )


def test_pending_to_approved(db, supervisor, record):
    updated = approval.approve(db, record.id, reviewer_id=supervisor.id)
    assert updated.approved == "approved"
    assert updated.reviewed_by == supervisor.id
    assert updated.reviewed_at is not None
    assert audit_count(db, record.id) == 1


def test_approve_is_idempotent_with_one_audit_per_call(db, supervisor, record):
    first = approval.approve(db, record.id, reviewer_id=supervisor.id)
    reviewed_at = first.reviewed_at
    second = approval.approve(db, record.id, reviewer_id=supervisor.id)

    assert second.id == first.id
    assert second.approved == "approved"
    assert second.reviewed_at == reviewed_at
    assert audit_count(db, record.id) == 2
    noop = (
        db.query(AuditLog)
        .filter(AuditLog.entity_id == str(record.id), AuditLog.event == "approve")
        .order_by(AuditLog.created_at.desc())
        .first()
    )
    assert noop.context["noop"] is True


def test_approved_can_be_rejected(db, supervisor, record):
    approval.approve(db, record.id, reviewer_id=supervisor.id)
    updated = approval.reject(db, record.id, reviewer_id=supervisor.id, reason="finance correction")
    assert updated.approved == "rejected"
    assert updated.review_note == "finance correction"


def test_rejected_is_terminal(db, supervisor, record):
    approval.reject(db, record.id, reviewer_id=supervisor.id)
    with pytest.raises(InvalidTransition):
        approval.approve(db, record.id, reviewer_id=supervisor.id)
    # rejecting again is a no-op
    assert approval.reject(db, record.id, reviewer_id=supervisor.id).approved == "rejected"


def test_reviewer_is_required(db, record):
    with pytest.raises(ValidationError):
        approval.approve(db, record.id, reviewer_id=None)


def test_unknown_record(db, supervisor):
    with pytest.raises(NotFoundError):
        approval.approve(db, uuid.uuid4(), reviewer_id=supervisor.id)
    with pytest.raises(NotFoundError):
        approval.reject(db, "garbage", reviewer_id=supervisor.id)


def test_concurrent_change_is_retried(db, supervisor, record, monkeypatch):
    real = approval._try_transition
    calls = {"n": 0}

    def lose_once(*args):
        calls["n"] += 1
        if calls["n"] == 1:
            raise ConflictError("moved underneath us")
        return real(*args)

    monkeypatch.setattr(approval, "_try_transition", lose_once)

    updated = approval.approve(db, record.id, reviewer_id=supervisor.id)

    assert updated.approved == "approved"
    assert calls["n"] == 2
    assert audit_count(db, record.id) == 1


def test_retries_exhausted_reports_current_state(db, supervisor, record, monkeypatch):
    def always_lose(*args, **kwargs):
        raise ConflictError("contended")

    monkeypatch.setattr(approval, "_try_transition", always_lose)

    with pytest.raises(InvalidTransition):
        approval.approve(db, record.id, reviewer_id=supervisor.id)
    assert db.get(PayrollRecord, record.id).approved == "pending"


def test_noop_approve_loses_to_concurrent_reject(db, supervisor, admin, record, monkeypatch):
    approval.approve(db, record.id, reviewer_id=supervisor.id)
    real = approval._try_transition
    calls = {"n": 0}

    def reject_lands_first(db_, record_id, observed, target, reviewer_id, note):
        calls["n"] += 1
        if calls["n"] == 1:
            # another reviewer commits a rejection after our read
            db_.execute(update(PayrollRecord).where(PayrollRecord.id == record_id).values(approved="rejected"))
            db_.commit()
        return real(db_, record_id, observed, target, reviewer_id, note)

    monkeypatch.setattr(approval, "_try_transition", reject_lands_first)

    with pytest.raises(InvalidTransition):
        approval.approve(db, record.id, reviewer_id=admin.id)
    assert db.get(PayrollRecord, record.id).approved == "rejected"
    # the lost no-op attempt left no "already approved" event behind
    assert audit_count(db, record.id) == 1
