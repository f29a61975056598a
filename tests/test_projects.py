from datetime import date
from decimal import Decimal
from types import SimpleNamespace

import pytest

from payhub.config import settings
from payhub.errors import NotFoundError, ValidationError
from payhub.models.models import AuditLog, PayrollRecord
from payhub.services import approval, payroll, projects

from conftest import check_in, make_project, utc


def test_validate_allowances_accepts_numbers_and_strings():
    result = projects.validate_allowances({"housing": 50, "transport": "12.5"})
    assert result == {"housing": Decimal("50"), "transport": Decimal("12.5")}


@pytest.mark.parametrize(
    "raw",
    [
        ["housing", 50],
        {"Housing": 50},
        {"house rent": 50},
        {"housing": -1},
        {"housing": "lots"},
        {"housing": None},
        {"housing": {"amount": 50}},
        {"housing": True},
        {"housing": "NaN"},
    ],
)
def test_validate_allowances_rejects_bad_shapes(raw):
    with pytest.raises(ValidationError):
        projects.validate_allowances(raw)


def test_closed_allowance_vocabulary(monkeypatch):
    monkeypatch.setattr(settings, "allowance_names", "housing, transport")
    assert projects.validate_allowances({"housing": 1}) == {"housing": Decimal("1")}
    with pytest.raises(ValidationError):
        projects.validate_allowances({"meals": 1})


def test_negative_rate_rejected():
    with pytest.raises(ValidationError):
        projects.validate_pay_rate("-0.01")
    assert projects.validate_pay_rate(None) is None


def test_derive_status():
    p = SimpleNamespace(status=None, start_date=date(2024, 5, 1), end_date=date(2024, 5, 31))
    assert projects.derive_status(p, today=date(2024, 4, 30)) == "upcoming"
    assert projects.derive_status(p, today=date(2024, 5, 15)) == "active"
    assert projects.derive_status(p, today=date(2024, 6, 1)) == "completed"
    p.status = "on_hold"
    assert projects.derive_status(p, today=date(2024, 5, 15)) == "on_hold"


def test_create_project_persists_and_audits(db, admin):
    project = projects.create_project(
        db,
        {
            "name": "Tower",
            "pay_type": "weekly",
            "pay_rate": "700",
            "allowances": {"housing": 50},
            "location_lat": 24.71,
            "location_lng": 46.67,
        },
        actor_id=admin.id,
    )
    assert project.radius == settings.geo_radius_m_default
    assert project.allowances == {"housing": "50"}
    assert db.query(AuditLog).filter(AuditLog.entity_id == str(project.id)).count() == 1


@pytest.mark.parametrize(
    "payload",
    [
        {"name": ""},
        {"name": "X", "pay_type": "yearly"},
        {"name": "X", "location_lat": 24.71},
        {"name": "X", "location_lat": 95, "location_lng": 0},
        {"name": "X", "radius": 0},
        {"name": "X", "start_date": date(2024, 5, 2), "end_date": date(2024, 5, 1)},
        {"name": "X", "status": "completed"},
    ],
)
def test_create_project_rejects_invalid_payloads(db, payload):
    with pytest.raises(ValidationError):
        projects.create_project(db, payload)
    assert db.query(AuditLog).count() == 0


def test_get_project_not_found(db):
    with pytest.raises(NotFoundError):
        projects.get_project(db, "00000000-0000-0000-0000-000000000000")
    with pytest.raises(ValidationError):
        projects.require_project(db, "nope")


def test_stored_allowances_survive_a_narrowed_vocabulary(db, worker, supervisor, monkeypatch):
    legacy = make_project(db, name="Legacy")
    fresh = make_project(db, name="Fresh", allowances={"transport": "20"})
    check_in(db, worker, fresh, utc(2024, 5, 1, 8))

    monkeypatch.setattr(settings, "allowance_names", "transport")

    assert projects.project_allowances(legacy) == {"housing": Decimal("50")}
    result = payroll.generate(db, "2024-05", actor_id=supervisor.id)
    assert result.created == 1
    record = db.query(PayrollRecord).one()
    assert record.project_id == fresh.id
    assert record.total_amount == Decimal("120.00")
    # new writes still honour the closed vocabulary
    with pytest.raises(ValidationError):
        projects.create_project(db, {"name": "New", "allowances": {"housing": 5}})


def test_project_summary(db, worker, other_worker, supervisor, project):
    check_in(db, worker, project, utc(2024, 5, 18, 8))
    check_in(db, worker, project, utc(2024, 5, 20, 8))
    check_in(db, other_worker, project, utc(2024, 5, 2, 8))
    payroll.generate(db, "2024-05", project.id, actor_id=supervisor.id)
    dropped = db.query(PayrollRecord).filter(PayrollRecord.user_id == other_worker.id).one()
    approval.reject(db, dropped.id, reviewer_id=supervisor.id)

    summary = projects.project_summary(db, project.id, now=utc(2024, 5, 20, 12))

    assert summary["month"] == "2024-05"
    assert summary["attendance_last7"] == 2
    assert summary["team_count"] == 2
    # worker: 2 days x 100 + 50 housing; the rejected record is left out
    assert summary["payroll_month_total"] == Decimal("250.00")


def test_project_summary_for_an_idle_project(db, project):
    summary = projects.project_summary(db, project.id, now=utc(2024, 5, 20, 12))
    assert (summary["attendance_last7"], summary["team_count"]) == (0, 0)
    assert summary["payroll_month_total"] == Decimal("0.00")
    with pytest.raises(NotFoundError):
        projects.project_summary(db, "nope")
