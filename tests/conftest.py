import os

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["AUTO_CREATE_DB"] = "0"
os.environ["ENABLE_METRICS"] = "0"
os.environ["RATE_LIMIT"] = "10000/minute"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["PAYROLL_TZ"] = "UTC"

from datetime import datetime
from decimal import Decimal

import pytest
import pytz
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from payhub.auth.security import create_access_token
from payhub.db import Base, build_engine, get_db
from payhub.main import app
from payhub.models.models import Project, Role, User
from payhub.services import attendance as ledger


SITE_LAT = Decimal("24.7100000")
SITE_LNG = Decimal("46.6700000")


@pytest.fixture
def db():
    engine = build_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(bind=engine, autoflush=False, future=True)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def roles(db):
    out = {}
    for name in ("admin", "supervisor", "worker"):
        role = Role(name=name, description=name.title())
        db.add(role)
        out[name] = role
    db.commit()
    return out


def make_user(db, username, role=None, is_active=True):
    user = User(username=username, email=f"{username}@example.com", full_name=username.title(), is_active=is_active)
    if role is not None:
        user.roles = [role]
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def admin(db, roles):
    return make_user(db, "admin", roles["admin"])


@pytest.fixture
def supervisor(db, roles):
    return make_user(db, "supervisor", roles["supervisor"])


@pytest.fixture
def worker(db, roles):
    return make_user(db, "worker", roles["worker"])


@pytest.fixture
def other_worker(db, roles):
    return make_user(db, "other", roles["worker"])


def make_project(db, **overrides):
    values = dict(
        name="Project P",
        pay_type="daily",
        pay_rate=Decimal("100.00"),
        allowances={"housing": "50"},
        location_lat=SITE_LAT,
        location_lng=SITE_LNG,
        radius=200,
    )
    values.update(overrides)
    project = Project(**values)
    db.add(project)
    db.commit()
    return project


@pytest.fixture
def project(db):
    return make_project(db)


def utc(*args):
    return datetime(*args, tzinfo=pytz.UTC)


def check_in(db, user, project, when, lat=SITE_LAT, lng=SITE_LNG, check_type="check_in"):
    return ledger.record_event(
        db,
        user_id=user.id,
        project_id=project.id,
        check_type=check_type,
        timestamp=when,
        coords=(lat, lng),
        actor_id=user.id,
    )


def auth_headers(user):
    roles = [r.name for r in user.roles]
    return {"Authorization": f"Bearer {create_access_token(str(user.id), roles)}"}


@pytest.fixture
def client(db):
    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
