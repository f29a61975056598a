import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, Optional
from enum import Enum

from pydantic import BaseModel


class PayType(str, Enum):
    monthly = "monthly"
    weekly = "weekly"
    daily = "daily"
    hourly = "hourly"


class ProjectCreate(BaseModel):
    name: str
    pay_type: PayType = PayType.monthly
    pay_rate: Optional[Decimal] = None
    allowances: Optional[Dict[str, Decimal]] = None
    location_lat: Optional[float] = None
    location_lng: Optional[float] = None
    radius: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    status: Optional[str] = None  # on_hold|cancelled; anything else is derived


class ProjectResponse(BaseModel):
    id: uuid.UUID
    name: str
    pay_type: PayType
    pay_rate: Optional[Decimal] = None
    allowances: Dict[str, Decimal] = {}
    location_lat: Optional[float] = None
    location_lng: Optional[float] = None
    radius: int
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    status: str
    created_at: Optional[datetime] = None


class ProjectSummary(BaseModel):
    project_id: uuid.UUID
    month: str
    attendance_last7: int
    payroll_month_total: Decimal
    team_count: int
