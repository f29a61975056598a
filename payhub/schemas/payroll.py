import uuid
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from enum import Enum

from pydantic import BaseModel


class ApprovalStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class PreviewRowResponse(BaseModel):
    user_id: uuid.UUID
    project_id: uuid.UUID
    month: str
    pay_type: str
    days_present: int
    base_rate: Decimal
    base_amount: Decimal
    allowances_total: Decimal
    total_amount: Decimal
    warnings: List[str] = []
    user_name: Optional[str] = None
    project_name: Optional[str] = None

    class Config:
        from_attributes = True


class PayrollPreviewResponse(BaseModel):
    month: str
    records: List[PreviewRowResponse]


class GenerateRequest(BaseModel):
    month: str
    project_id: Optional[uuid.UUID] = None


class GenerateWarning(BaseModel):
    user_id: str
    project_id: str
    warning: str


class GenerateResponse(BaseModel):
    month: str
    created: int
    skipped: int
    warnings: List[GenerateWarning] = []


class PayrollReview(BaseModel):
    reason: Optional[str] = None


class PayrollRecordResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    project_id: uuid.UUID
    month: str
    pay_type: Optional[str] = None
    days_present: int
    base_rate: Decimal
    base_amount: Decimal
    allowances_total: Decimal
    total_amount: Decimal
    approved: ApprovalStatus
    created_at: Optional[datetime] = None
    reviewed_by: Optional[uuid.UUID] = None
    reviewed_at: Optional[datetime] = None
    review_note: Optional[str] = None
    user_name: Optional[str] = None
    project_name: Optional[str] = None

    class Config:
        from_attributes = True
