"""
Attendance ledger.

Check-in/check-out events are appended with a geofence verdict and are never
edited or deleted afterwards; supervisors only move their review status.
"""
from datetime import datetime
from typing import Iterator, Optional, Tuple

import pytz
import structlog
from sqlalchemy.orm import Session

from ..errors import GeofenceWarning, NotFoundError, ValidationError
from ..models.models import Attendance, User
from . import audit, geofence
from .projects import parse_uuid, require_project
from .time_rules import ensure_utc


logger = structlog.get_logger(__name__)

CHECK_TYPES = ("check_in", "check_out")
STATUSES = ("pending", "approved", "rejected")
REVIEW_STATUSES = ("approved", "rejected")


class AttendanceView:
    """
    Lazy, restartable view over the ledger.

    Nothing is read until iteration; every iteration re-runs the query and
    streams rows in batches.
    """

    def __init__(self, db: Session, filters: dict, batch_size: int = 500):
        self._db = db
        self.filters = filters
        self.batch_size = batch_size

    def _query(self):
        f = self.filters
        query = self._db.query(Attendance)
        if f.get("user_id"):
            query = query.filter(Attendance.user_id == f["user_id"])
        if f.get("project_id"):
            query = query.filter(Attendance.project_id == f["project_id"])
        if f.get("status"):
            query = query.filter(Attendance.status == f["status"])
        if f.get("check_type"):
            query = query.filter(Attendance.check_type == f["check_type"])
        if f.get("start") is not None:
            query = query.filter(Attendance.timestamp >= f["start"])
        if f.get("end") is not None:
            query = query.filter(Attendance.timestamp < f["end"])
        return query.order_by(Attendance.timestamp.asc(), Attendance.id.asc())

    def __iter__(self) -> Iterator[Attendance]:
        return iter(self._query().yield_per(self.batch_size))

    def count(self) -> int:
        return self._query().count()


def _require_user(db: Session, user_id) -> User:
    user = db.query(User).filter(User.id == parse_uuid(user_id, "user_id")).first()
    if not user or not user.is_active:
        raise ValidationError("Unknown user")
    return user


def _coerce_coords(coords) -> Tuple[Optional[float], Optional[float]]:
    if coords is None:
        return None, None
    lat, lng = coords
    if lat is None or lng is None:
        return None, None
    try:
        lat, lng = float(lat), float(lng)
    except (TypeError, ValueError):
        raise ValidationError("Invalid coordinates")
    if not (-90 <= lat <= 90) or not (-180 <= lng <= 180):
        raise ValidationError("Coordinates out of range")
    return lat, lng


def record_event(
    db: Session,
    user_id,
    project_id,
    check_type: str,
    timestamp: Optional[datetime] = None,
    coords: Optional[Tuple[Optional[float], Optional[float]]] = None,
    evidence_url: Optional[str] = None,
    actor_id=None,
) -> Attendance:
    """
    Append a check-in or check-out event.

    The event is approved straight away when it falls inside the project's
    geofence (or the project has none). Out-of-radius and location-less events
    are stored as pending with a geofence flag for a supervisor to review.
    """
    if check_type not in CHECK_TYPES:
        raise ValidationError("check_type must be 'check_in' or 'check_out'")
    user = _require_user(db, user_id)
    project = require_project(db, project_id)
    lat, lng = _coerce_coords(coords)
    actor_id = parse_uuid(actor_id, "actor_id") if actor_id else None
    ts = ensure_utc(timestamp) if timestamp else datetime.now(pytz.UTC)

    status = "approved"
    flag = None
    distance_m = None
    try:
        result = geofence.validate(lat, lng, project)
        distance_m = result.distance_m
        if not result.ok:
            status = "pending"
            flag = GeofenceWarning.flag
    except GeofenceWarning as warning:
        status = "pending"
        flag = warning.flag

    record = Attendance(
        user_id=user.id,
        project_id=project.id,
        check_type=check_type,
        timestamp=ts,
        latitude=lat,
        longitude=lng,
        distance_m=round(distance_m, 2) if distance_m is not None else None,
        geofence_flag=flag,
        status=status,
        evidence_url=evidence_url,
        created_by=actor_id or user.id,
    )
    try:
        db.add(record)
        db.flush()
        audit.append(
            db,
            actor_id=actor_id or user.id,
            action=check_type,
            entity_type="attendance",
            entity_id=record.id,
            details=f"{check_type} recorded as {status}",
            context={
                "user_id": str(user.id),
                "project_id": str(project.id),
                "geofence_flag": flag,
                "distance_m": round(distance_m, 2) if distance_m is not None else None,
            },
            commit=False,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(record)

    if flag:
        logger.warning("attendance_geofence_flagged", attendance_id=str(record.id), flag=flag, distance_m=distance_m)
    logger.info("attendance_recorded", attendance_id=str(record.id), check_type=check_type, status=status)
    return record


def list_for_range(
    db: Session,
    user_id=None,
    project_id=None,
    status: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    check_type: Optional[str] = None,
) -> AttendanceView:
    if status is not None and status not in STATUSES:
        raise ValidationError(f"status must be one of {', '.join(STATUSES)}")
    filters = {
        "user_id": parse_uuid(user_id, "user_id") if user_id else None,
        "project_id": parse_uuid(project_id, "project_id") if project_id else None,
        "status": status,
        "check_type": check_type,
        "start": ensure_utc(start) if start else None,
        "end": ensure_utc(end) if end else None,
    }
    return AttendanceView(db, filters)


def get_record(db: Session, record_id) -> Attendance:
    try:
        rid = parse_uuid(record_id, "attendance id")
    except ValidationError:
        raise NotFoundError("Attendance not found")
    record = db.query(Attendance).filter(Attendance.id == rid).first()
    if not record:
        raise NotFoundError("Attendance not found")
    return record


def set_status(
    db: Session,
    record_id,
    new_status: str,
    reviewer_id,
    note: Optional[str] = None,
) -> Attendance:
    """
    Review an attendance event.

    pending -> approved|rejected, and supervisor overrides between approved
    and rejected. Re-applying the current status is a no-op that is still
    audited. Payroll records already generated from this event are not touched.
    """
    if new_status not in REVIEW_STATUSES:
        raise ValidationError("status must be 'approved' or 'rejected'")
    if reviewer_id is None:
        raise ValidationError("reviewer is required")
    reviewer_id = parse_uuid(reviewer_id, "reviewer_id")

    try:
        rid = parse_uuid(record_id, "attendance id")
    except ValidationError:
        raise NotFoundError("Attendance not found")

    try:
        # Row lock for the read-modify-write; concurrent reviewers queue up here
        record = (
            db.query(Attendance)
            .filter(Attendance.id == rid)
            .with_for_update()
            .first()
        )
        if not record:
            raise NotFoundError("Attendance not found")

        before = record.status
        changed = before != new_status
        if changed:
            record.status = new_status
            record.reviewed_by = reviewer_id
            record.reviewed_at = datetime.now(pytz.UTC)
            record.review_note = note

        audit.append(
            db,
            actor_id=reviewer_id,
            action="approve" if new_status == "approved" else "reject",
            entity_type="attendance",
            entity_id=record.id,
            details=f"attendance {before} -> {new_status}" if changed else f"attendance already {new_status}",
            changes=audit.compute_diff({"status": before}, {"status": new_status}),
            context={
                "user_id": str(record.user_id),
                "project_id": str(record.project_id),
                "note": note,
                "noop": not changed,
            },
            commit=False,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(record)

    logger.info("attendance_reviewed", attendance_id=str(record.id), before=before, after=new_status, noop=not changed)
    return record
