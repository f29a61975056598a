"""
Seed the local database with demo roles, users, a project and a month of check-ins.

Usage:
  python scripts/seed_demo_data.py [YYYY-MM]

This script is idempotent: users and roles are upserted by name, the project
by name, and attendance is only added when the worker has none for the month.
Access tokens for the demo users are printed at the end.
"""

import sys
from datetime import datetime, timedelta
from decimal import Decimal

from payhub.auth.security import create_access_token
from payhub.db import SessionLocal, Base, engine
from payhub.models.models import Attendance, Project, Role, User
from payhub.services import attendance as ledger
from payhub.services import projects as project_service
from payhub.services.time_rules import month_bounds_utc, parse_month


SITE = {"lat": Decimal("43.6532000"), "lng": Decimal("-79.3832000")}


def ensure_role(session, name: str, description: str = "") -> Role:
    role = session.query(Role).filter(Role.name == name).first()
    if role:
        if description and role.description != description:
            role.description = description
            session.add(role)
        return role
    role = Role(name=name, description=description or name.title())
    session.add(role)
    session.flush()
    return role


def ensure_user(session, username: str, email: str, full_name: str, roles: list) -> User:
    user = session.query(User).filter((User.username == username) | (User.email == email)).first()
    if not user:
        user = User(username=username, email=email, full_name=full_name, is_active=True)
        session.add(user)
        session.flush()
    user.full_name = full_name
    user.roles = session.query(Role).filter(Role.name.in_(roles)).all()
    session.add(user)
    session.flush()
    return user


def ensure_project(session, admin: User) -> Project:
    project = session.query(Project).filter(Project.name == "Harbourfront Tower").first()
    if project:
        return project
    return project_service.create_project(
        session,
        {
            "name": "Harbourfront Tower",
            "pay_type": "daily",
            "pay_rate": "50.00",
            "allowances": {"transport": "100.00"},
            "location_lat": SITE["lat"],
            "location_lng": SITE["lng"],
            "radius": 200,
        },
        actor_id=admin.id,
    )


def seed_attendance(session, worker: User, project: Project, month: str) -> int:
    period = parse_month(month)
    start, end = month_bounds_utc(period)
    existing = (
        session.query(Attendance)
        .filter(Attendance.user_id == worker.id)
        .filter(Attendance.timestamp >= start, Attendance.timestamp < end)
        .count()
    )
    if existing:
        return 0

    created = 0
    day = start + timedelta(hours=8)
    while day < end:
        if day.weekday() < 5:
            ledger.record_event(
                session,
                user_id=worker.id,
                project_id=project.id,
                check_type="check_in",
                timestamp=day,
                coords=(SITE["lat"], SITE["lng"]),
                actor_id=worker.id,
            )
            ledger.record_event(
                session,
                user_id=worker.id,
                project_id=project.id,
                check_type="check_out",
                timestamp=day + timedelta(hours=9),
                coords=(SITE["lat"], SITE["lng"]),
                actor_id=worker.id,
            )
            created += 2
        day += timedelta(days=1)
    return created


def main():
    month = sys.argv[1] if len(sys.argv) > 1 else datetime.utcnow().strftime("%Y-%m")
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        ensure_role(session, "admin", "Full access")
        ensure_role(session, "supervisor", "Reviews attendance and payroll")
        ensure_role(session, "worker", "Records own attendance")

        admin = ensure_user(session, "admin", "admin@example.com", "Site Admin", ["admin"])
        supervisor = ensure_user(session, "sam.supervisor", "sam@example.com", "Sam Supervisor", ["supervisor"])
        worker = ensure_user(session, "wendy.worker", "wendy@example.com", "Wendy Worker", ["worker"])
        session.commit()

        project = ensure_project(session, admin)
        events = seed_attendance(session, worker, project, month)
        print(f"Seeded project '{project.name}' and {events} attendance events for {month}")

        for user in (admin, supervisor, worker):
            roles = [r.name for r in user.roles]
            print(f"{user.username}: {create_access_token(str(user.id), roles)}")
    finally:
        session.close()


if __name__ == "__main__":
    main()
