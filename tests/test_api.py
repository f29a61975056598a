import uuid

import pytest

from payhub.config import settings
from payhub.logging import add_service_context

from conftest import auth_headers, check_in, utc


@pytest.fixture
def project_p(client, admin):
    resp = client.post(
        "/projects",
        json={
            "name": "Project P",
            "pay_type": "daily",
            "pay_rate": "100",
            "radius": 200,
            "location_lat": 24.71,
            "location_lng": 46.67,
            "allowances": {"housing": 50},
        },
        headers=auth_headers(admin),
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


def post_check_in(client, user, project_id, when, lat=24.71, lng=46.67):
    return client.post(
        "/attendance",
        json={
            "project_id": project_id,
            "check_type": "check_in",
            "timestamp": when,
            "latitude": lat,
            "longitude": lng,
        },
        headers=auth_headers(user),
    )


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_requires_token(client):
    assert client.get("/projects").status_code == 401
    assert client.get("/projects", headers={"Authorization": "Bearer nope"}).status_code == 401


def test_project_round_trip(client, worker, project_p):
    resp = client.get(f"/projects/{project_p['id']}", headers=auth_headers(worker))
    assert resp.status_code == 200
    body = resp.json()
    assert body["pay_type"] == "daily"
    assert body["radius"] == 200
    assert float(body["allowances"]["housing"]) == 50
    assert client.get(f"/projects/{uuid.uuid4()}", headers=auth_headers(worker)).status_code == 404


def test_only_admins_create_projects(client, supervisor):
    resp = client.post("/projects", json={"name": "X"}, headers=auth_headers(supervisor))
    assert resp.status_code == 403


def test_invalid_allowances_are_400(client, admin):
    resp = client.post(
        "/projects",
        json={"name": "X", "allowances": {"Bad Name": 5}},
        headers=auth_headers(admin),
    )
    assert resp.status_code == 400
    assert resp.json()["code"] == "validation_error"


def test_payroll_scenario_end_to_end(client, worker, supervisor, project_p):
    for day in ("2024-05-01", "2024-05-02", "2024-05-03"):
        resp = post_check_in(client, worker, project_p["id"], f"{day}T08:00:00Z")
        assert resp.status_code == 201, resp.text
        assert resp.json()["status"] == "approved"

    headers = auth_headers(supervisor)
    preview = client.get("/payroll/compute", params={"month": "2024-05", "project_id": project_p["id"]}, headers=headers)
    assert preview.status_code == 200
    rows = preview.json()["records"]
    assert len(rows) == 1
    assert rows[0]["user_id"] == str(worker.id)
    assert rows[0]["days_present"] == 3
    assert float(rows[0]["base_rate"]) == 100
    assert float(rows[0]["allowances_total"]) == 50
    assert float(rows[0]["total_amount"]) == 350

    first = client.post("/payroll/generate", json={"month": "2024-05", "project_id": project_p["id"]}, headers=headers)
    assert first.status_code == 200
    assert (first.json()["created"], first.json()["skipped"]) == (1, 0)

    second = client.post("/payroll/generate", json={"month": "2024-05", "project_id": project_p["id"]}, headers=headers)
    assert (second.json()["created"], second.json()["skipped"]) == (0, 1)

    records = client.get("/payroll/records", params={"month": "2024-05"}, headers=headers).json()
    assert len(records) == 1
    assert records[0]["user_name"] == "Worker"
    assert records[0]["project_name"] == "Project P"

    approved = client.put(f"/payroll/records/{records[0]['id']}/approve", headers=headers)
    assert approved.status_code == 200
    assert approved.json()["approved"] == "approved"

    again = client.put(f"/payroll/records/{records[0]['id']}/approve", headers=headers)
    assert again.json()["approved"] == "approved"

    rejected = client.put(
        f"/payroll/records/{records[0]['id']}/reject",
        json={"reason": "rate changed"},
        headers=headers,
    )
    assert rejected.json()["approved"] == "rejected"
    assert rejected.json()["review_note"] == "rate changed"

    back = client.put(f"/payroll/records/{records[0]['id']}/approve", headers=headers)
    assert back.status_code == 400
    assert back.json()["code"] == "invalid_transition"


def test_out_of_radius_check_in_needs_review(client, worker, supervisor, project_p):
    resp = post_check_in(client, worker, project_p["id"], "2024-05-01T08:00:00Z", lat=24.72)
    assert resp.status_code == 201
    body = resp.json()
    assert body["status"] == "pending"
    assert body["geofence_flag"] == "outside_radius"

    assert client.post(f"/attendance/{body['id']}/approve", headers=auth_headers(worker)).status_code == 403

    reviewed = client.post(
        f"/attendance/{body['id']}/approve",
        json={"note": "verified by foreman"},
        headers=auth_headers(supervisor),
    )
    assert reviewed.status_code == 200
    assert reviewed.json()["status"] == "approved"


def test_workers_only_see_their_own_attendance(client, db, worker, other_worker, project_p):
    post_check_in(client, worker, project_p["id"], "2024-05-01T08:00:00Z")
    post_check_in(client, other_worker, project_p["id"], "2024-05-01T08:05:00Z")

    mine = client.get("/attendance", headers=auth_headers(worker))
    assert mine.status_code == 200
    assert {r["user_id"] for r in mine.json()} == {str(worker.id)}

    theirs = client.get("/attendance", params={"user_id": str(other_worker.id)}, headers=auth_headers(worker))
    assert theirs.status_code == 403


def test_worker_cannot_record_for_someone_else(client, worker, other_worker, project_p):
    resp = client.post(
        "/attendance",
        json={"project_id": project_p["id"], "check_type": "check_in", "user_id": str(other_worker.id)},
        headers=auth_headers(worker),
    )
    assert resp.status_code == 403


def test_bad_month_is_400(client, supervisor):
    resp = client.get("/payroll/compute", params={"month": "May 2024"}, headers=auth_headers(supervisor))
    assert resp.status_code == 400
    assert resp.json()["code"] == "invalid_month"


def test_unknown_payroll_record_is_404(client, supervisor):
    resp = client.put(f"/payroll/records/{uuid.uuid4()}/approve", headers=auth_headers(supervisor))
    assert resp.status_code == 404


def test_workers_cannot_generate_or_read_logs(client, worker):
    headers = auth_headers(worker)
    assert client.post("/payroll/generate", json={"month": "2024-05"}, headers=headers).status_code == 403
    assert client.get("/logs", headers=headers).status_code == 403


def test_logs_and_summary(client, db, worker, supervisor, project):
    check_in(db, worker, project, utc(2024, 5, 1, 8))
    headers = auth_headers(supervisor)

    logs = client.get("/logs", params={"range": "all", "limit": 10}, headers=headers)
    assert logs.status_code == 200
    assert logs.json()[0]["event"] == "check_in"
    assert logs.json()[0]["user_name"] == "Worker"

    summary = client.get("/logs/summary", params={"range": "all"}, headers=headers).json()
    assert [item["type"] for item in summary] == ["create", "otp", "update", "delete", "other"]
    assert summary[0]["count"] == 1

    assert client.get("/logs", params={"range": "fortnight"}, headers=headers).status_code == 400


def test_request_id_is_echoed(client):
    resp = client.get("/health", headers={"X-Request-ID": "abc-123"})
    assert resp.headers["X-Request-ID"] == "abc-123"


def test_project_summary_endpoint(client, worker, supervisor, project_p):
    headers = auth_headers(supervisor)
    resp = client.post(
        "/attendance",
        json={"project_id": project_p["id"], "check_type": "check_in", "latitude": 24.71, "longitude": 46.67},
        headers=auth_headers(worker),
    )
    assert resp.status_code == 201, resp.text

    summary = client.get(f"/projects/{project_p['id']}/summary", headers=auth_headers(worker))
    assert summary.status_code == 200
    body = summary.json()
    assert body["project_id"] == project_p["id"]
    assert body["attendance_last7"] == 1
    assert body["team_count"] == 1
    assert float(body["payroll_month_total"]) == 0

    generated = client.post("/payroll/generate", json={"month": body["month"], "project_id": project_p["id"]}, headers=headers)
    assert generated.json()["created"] == 1
    after = client.get(f"/projects/{project_p['id']}/summary", headers=headers).json()
    assert float(after["payroll_month_total"]) == 150

    assert client.get(f"/projects/{uuid.uuid4()}/summary", headers=headers).status_code == 404


def test_projects_list_tolerates_retired_allowance_names(client, db, admin, project_p, monkeypatch):
    monkeypatch.setattr(settings, "allowance_names", "transport")
    resp = client.get("/projects", headers=auth_headers(admin))
    assert resp.status_code == 200
    assert float(resp.json()[0]["allowances"]["housing"]) == 50


def test_request_id_is_generated_when_missing(client):
    resp = client.get("/health")
    assert uuid.UUID(resp.headers["X-Request-ID"])


def test_log_events_carry_service_context():
    event = add_service_context(None, "info", {"event": "payroll_generated"})
    assert event["service"] == settings.app_name
    assert event["environment"] == settings.environment
    assert add_service_context(None, "info", {"event": "x", "service": "worker"})["service"] == "worker"
