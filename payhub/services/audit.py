"""
Audit logging service.
Append-only activity log with integrity hashing, summaries and timelines.
"""
import hashlib
import json
from datetime import datetime
from typing import Optional, Dict, Any, List

import structlog
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..models.models import AuditLog
from ..config import settings
from .time_rules import ensure_utc, parse_range


logger = structlog.get_logger(__name__)

CATEGORIES = ("create", "otp", "update", "delete", "other")

# Checked in order; first keyword found in the verb wins
_CATEGORY_KEYWORDS = (
    ("create", ("create", "register", "generate", "check_in", "check_out")),
    ("update", ("update", "reset", "approve", "reject")),
    ("delete", ("delete", "remove")),
    ("otp", ("otp", "email")),
)


def classify_action(verb: str) -> str:
    """Map a free-form verb (e.g. "approve") onto a summary category."""
    normalized = (verb or "").lower()
    if normalized in CATEGORIES:
        return normalized
    for category, keywords in _CATEGORY_KEYWORDS:
        if any(k in normalized for k in keywords):
            return category
    return "other"


def _integrity_hash(data: Dict[str, Any], secret: Optional[str]) -> Optional[str]:
    if not secret:
        return None
    # Remove None values and sort keys for consistency
    canonical_data = {k: v for k, v in data.items() if v is not None}
    canonical_json = json.dumps(canonical_data, sort_keys=True, default=str)
    hash_input = f"{canonical_json}:{secret}"
    return hashlib.sha256(hash_input.encode()).hexdigest()


def _canonical(log: AuditLog) -> Dict[str, Any]:
    created_at = ensure_utc(log.created_at).replace(tzinfo=None) if log.created_at else None
    return {
        "actor_id": str(log.actor_id) if log.actor_id else None,
        "action": log.action,
        "event": log.event,
        "entity_type": log.entity_type,
        "entity_id": str(log.entity_id),
        "details": log.details,
        "created_at": created_at.isoformat() if created_at else None,
        "changes": log.changes_json,
        "context": log.context,
    }


def _secret() -> str:
    return settings.audit_integrity_secret or settings.jwt_secret


def append(
    db: Session,
    actor_id,
    action: str,
    entity_type: str,
    entity_id,
    details: Optional[str] = None,
    changes: Optional[Dict] = None,
    context: Optional[Dict] = None,
    commit: bool = True,
) -> AuditLog:
    """
    Append an audit event.

    Args:
        db: Database session
        actor_id: User who performed the action (None for system)
        action: Category (create|update|delete|otp|other) or a verb such as
            "approve", which is stored as the event and classified
        entity_type: attendance|payroll_record|payroll_run|project
        entity_id: Entity ID
        details: Short human-readable description
        changes: Before/after diff
        context: Additional context (project_id, user_id, month, ...)
        commit: When False the event joins the caller's transaction and becomes
            durable together with the mutation it describes

    Returns:
        Created AuditLog object
    """
    category = classify_action(action)
    event = None if action in CATEGORIES else action

    audit_log = AuditLog(
        actor_id=actor_id,
        action=category,
        event=event,
        entity_type=entity_type,
        entity_id=str(entity_id),
        details=details,
        changes_json=changes,
        context=context,
        created_at=datetime.utcnow(),
    )
    audit_log.integrity_hash = _integrity_hash(_canonical(audit_log), _secret())

    db.add(audit_log)
    if commit:
        db.commit()
        db.refresh(audit_log)
    else:
        db.flush()

    logger.debug("audit_appended", action=category, audit_event=event, entity_type=entity_type, entity_id=str(entity_id))
    return audit_log


def verify_integrity(log: AuditLog) -> bool:
    """Recompute the hash of a stored event and compare."""
    expected = _integrity_hash(_canonical(log), _secret())
    return expected is not None and expected == log.integrity_hash


def _apply_range(query, range_value: Optional[str], now: Optional[datetime] = None):
    start, end = parse_range(range_value, now=now)
    if start is not None:
        query = query.filter(AuditLog.created_at >= start)
    if end is not None:
        query = query.filter(AuditLog.created_at < end)
    return query


def list_events(
    db: Session,
    range_value: Optional[str] = None,
    limit: int = 100,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> List[AuditLog]:
    """Most-recent-first audit events within a dashboard range."""
    query = db.query(AuditLog)

    if entity_type:
        query = query.filter(AuditLog.entity_type == entity_type)

    if entity_id:
        query = query.filter(AuditLog.entity_id == str(entity_id))

    query = _apply_range(query, range_value, now=now)
    query = query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
    return query.limit(limit).all()


def summarize(db: Session, range_value: Optional[str] = None, now: Optional[datetime] = None) -> Dict[str, int]:
    """Count events per category; every category is present."""
    query = db.query(AuditLog.action, func.count(AuditLog.id))
    query = _apply_range(query, range_value, now=now)
    counts = {category: 0 for category in CATEGORIES}
    for action, count in query.group_by(AuditLog.action).all():
        counts[classify_action(action)] += int(count)
    return counts


def compute_diff(before: Dict, after: Dict) -> Dict:
    """
    Compute a diff between two dictionaries.

    Args:
        before: Before state
        after: After state

    Returns:
        Dict with before/after values for changed fields
    """
    diff = {}
    all_keys = set(before.keys()) | set(after.keys())

    for key in all_keys:
        before_val = before.get(key)
        after_val = after.get(key)

        if before_val != after_val:
            diff[key] = {
                "before": before_val,
                "after": after_val,
            }

    return diff
