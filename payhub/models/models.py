import uuid
from datetime import date, datetime
from typing import Optional

from sqlalchemy import (
    Column,
    String,
    DateTime,
    Date,
    Boolean,
    ForeignKey,
    Table,
    Integer,
    Numeric,
    JSON,
    UniqueConstraint,
    Text,
    Index,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship, Mapped, mapped_column

from ..db import Base


def uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)


# Association table for many-to-many User<->Role
user_roles = Table(
    "user_roles",
    Base.metadata,
    Column("user_id", UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("role_id", UUID(as_uuid=True), ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    UniqueConstraint("user_id", "role_id", name="uq_user_role"),
)


class Role(Base):
    __tablename__ = "roles"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)  # admin|supervisor|worker
    description: Mapped[Optional[str]] = mapped_column(String(255))

    users = relationship("User", secondary=user_roles, back_populates="roles")


class User(Base):
    """Local mirror of the staff directory; accounts are managed by the auth service."""
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = uuid_pk()
    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), unique=True, index=True)
    full_name: Mapped[Optional[str]] = mapped_column(String(255))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    roles = relationship("Role", secondary=user_roles, back_populates="users")

    @property
    def display_name(self) -> str:
        return self.full_name or self.username


class Project(Base):
    __tablename__ = "projects"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    pay_type: Mapped[str] = mapped_column(String(20), nullable=False, default="monthly")  # monthly|weekly|daily|hourly
    pay_rate: Mapped[Optional[float]] = mapped_column(Numeric(12, 2))
    allowances: Mapped[Optional[dict]] = mapped_column(JSON)  # {name: "amount"} stored as decimal strings
    location_lat: Mapped[Optional[float]] = mapped_column(Numeric(10, 7))  # Latitude for geofence
    location_lng: Mapped[Optional[float]] = mapped_column(Numeric(10, 7))  # Longitude for geofence
    radius: Mapped[Optional[int]] = mapped_column(Integer, default=200)  # Geofence radius in meters
    start_date: Mapped[Optional[date]] = mapped_column(Date)
    end_date: Mapped[Optional[date]] = mapped_column(Date)
    status: Mapped[Optional[str]] = mapped_column(String(50))  # upcoming|active|completed|on_hold|cancelled
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)


class Attendance(Base):
    """Worker check-in/out events. Append-only: rows are reviewed, never deleted."""
    __tablename__ = "attendance"

    id: Mapped[uuid.UUID] = uuid_pk()
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    project_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    check_type: Mapped[str] = mapped_column(String(10), nullable=False)  # check_in|check_out
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)  # UTC instant
    latitude: Mapped[Optional[float]] = mapped_column(Numeric(10, 7))
    longitude: Mapped[Optional[float]] = mapped_column(Numeric(10, 7))
    distance_m: Mapped[Optional[float]] = mapped_column(Numeric(12, 2))  # Distance from project site
    geofence_flag: Mapped[Optional[str]] = mapped_column(String(30))  # outside_radius|missing_location
    status: Mapped[str] = mapped_column(String(20), default="pending")  # approved|pending|rejected
    evidence_url: Mapped[Optional[str]] = mapped_column(String(1000))
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    reviewed_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    review_note: Mapped[Optional[str]] = mapped_column(Text)

    # Indexes for queries
    __table_args__ = (
        Index('idx_attendance_user_time', 'user_id', 'timestamp'),
        Index('idx_attendance_project_time', 'project_id', 'timestamp'),
        Index('idx_attendance_status', 'status'),
    )


class PayrollRecord(Base):
    """Persisted monthly payroll line, one live row per (user, project, month)."""
    __tablename__ = "payroll_records"

    id: Mapped[uuid.UUID] = uuid_pk()
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    project_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    month: Mapped[str] = mapped_column(String(7), nullable=False, index=True)  # YYYY-MM
    pay_type: Mapped[Optional[str]] = mapped_column(String(20))  # Snapshot of project pay type
    days_present: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    base_rate: Mapped[float] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    base_amount: Mapped[float] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    allowances_total: Mapped[float] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    total_amount: Mapped[float] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    approved: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")  # pending|approved|rejected
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    reviewed_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    review_note: Mapped[Optional[str]] = mapped_column(Text)

    # Idempotency key: rejected rows stay for audit and do not block regeneration
    __table_args__ = (
        Index(
            'uq_payroll_active_key', 'user_id', 'project_id', 'month',
            unique=True,
            sqlite_where=text("approved != 'rejected'"),
            postgresql_where=text("approved != 'rejected'"),
        ),
        Index('idx_payroll_month_project', 'month', 'project_id'),
    )


class AuditLog(Base):
    """Append-only audit log for attendance and payroll actions"""
    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = uuid_pk()
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), index=True)
    action: Mapped[str] = mapped_column(String(20), nullable=False, index=True)  # create|update|delete|otp|other
    event: Mapped[Optional[str]] = mapped_column(String(50))  # check_in|approve|reject|generate|...
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)  # attendance|payroll_record|payroll_run|project
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    details: Mapped[Optional[str]] = mapped_column(Text)
    changes_json: Mapped[Optional[dict]] = mapped_column(JSON)  # Before/after diff
    context: Mapped[Optional[dict]] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False, index=True)
    integrity_hash: Mapped[Optional[str]] = mapped_column(String(64))  # SHA256 hash for integrity verification

    # Indexes for common queries
    __table_args__ = (
        Index('idx_audit_entity', 'entity_type', 'entity_id'),
        Index('idx_audit_actor', 'actor_id', 'created_at'),
    )
