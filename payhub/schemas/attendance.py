import uuid
from datetime import datetime
from typing import Optional
from enum import Enum

from pydantic import BaseModel


class CheckType(str, Enum):
    check_in = "check_in"
    check_out = "check_out"


class AttendanceStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class AttendanceCreate(BaseModel):
    project_id: uuid.UUID
    check_type: CheckType
    user_id: Optional[uuid.UUID] = None  # defaults to the caller
    timestamp: Optional[datetime] = None  # defaults to now (UTC)
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    evidence_url: Optional[str] = None


class AttendanceReview(BaseModel):
    note: Optional[str] = None


class AttendanceResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    project_id: uuid.UUID
    check_type: CheckType
    timestamp: datetime
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    distance_m: Optional[float] = None
    geofence_flag: Optional[str] = None
    status: AttendanceStatus
    evidence_url: Optional[str] = None
    reviewed_by: Optional[uuid.UUID] = None
    reviewed_at: Optional[datetime] = None
    review_note: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
