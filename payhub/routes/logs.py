from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..models.models import User
from ..auth.security import require_roles
from ..schemas.logs import AuditEventResponse, SummaryItem
from ..services import audit

router = APIRouter(prefix="/logs", tags=["logs"])


@router.get("", response_model=List[AuditEventResponse])
def list_logs(
    range_: Optional[str] = Query(default=None, alias="range"),
    entity_type: Optional[str] = Query(default=None),
    entity_id: Optional[str] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=1000),
    db: Session = Depends(get_db),
    _: User = Depends(require_roles("supervisor")),
):
    """Activity feed, most recent first."""
    events = audit.list_events(
        db,
        range_value=range_,
        limit=limit,
        entity_type=entity_type,
        entity_id=entity_id,
    )
    actor_ids = {e.actor_id for e in events if e.actor_id}
    names = {}
    if actor_ids:
        for u in db.query(User).filter(User.id.in_(actor_ids)).all():
            names[u.id] = u.display_name

    out = []
    for event in events:
        item = AuditEventResponse.model_validate(event)
        item.user_name = names.get(event.actor_id)
        out.append(item)
    return out


@router.get("/summary", response_model=List[SummaryItem])
def logs_summary(
    range_: Optional[str] = Query(default=None, alias="range"),
    db: Session = Depends(get_db),
    _: User = Depends(require_roles("supervisor")),
):
    counts = audit.summarize(db, range_value=range_)
    return [SummaryItem(type=category, count=counts[category]) for category in audit.CATEGORIES]
