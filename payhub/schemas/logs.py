import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel


class AuditEventResponse(BaseModel):
    id: uuid.UUID
    actor_id: Optional[uuid.UUID] = None
    user_name: Optional[str] = None
    action: str
    event: Optional[str] = None
    entity_type: str
    entity_id: str
    details: Optional[str] = None
    changes_json: Optional[Dict[str, Any]] = None
    context: Optional[Dict[str, Any]] = None
    created_at: datetime

    class Config:
        from_attributes = True


class SummaryItem(BaseModel):
    type: str
    count: int
