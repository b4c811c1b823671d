"""
Audit logging service.
Append-only audit log with integrity hashing.
Entries are added to the caller's transaction; they commit or roll back with the mutation they describe.
"""
import hashlib
import json
from typing import Optional, Dict

from sqlalchemy.orm import Session

from ..models.models import AuditLog, User
from ..config import settings
from .time_rules import utcnow


def create_audit_log(
    db: Session,
    entity_type: str,
    entity_id,
    action: str,
    actor: Optional[User] = None,
    changes_json: Optional[Dict] = None,
    context: Optional[Dict] = None,
    integrity_secret: Optional[str] = None
) -> AuditLog:
    """
    Stage an append-only audit log entry in the current transaction.

    Args:
        db: Database session
        entity_type: Type of entity (assignment|time_entry|timesheet|requirement|permission)
        entity_id: Entity ID
        action: Action performed (ASSIGN|CLAIM|DROP|CLOCK_IN|CLOCK_OUT|FINALIZE|APPROVE|REJECT|UNLOCK|...)
        actor: User who performed the action (None for system actions)
        changes_json: Before/after diff
        context: Additional context (shift_id, user_id, reason, ...)
        integrity_secret: Secret for integrity hash (defaults to JWT_SECRET)

    Returns:
        The pending AuditLog object
    """
    timestamp_utc = utcnow()
    actor_id = actor.id if actor is not None else None
    actor_role = actor.role if actor is not None else "system"

    integrity_hash = None
    if integrity_secret is None:
        integrity_secret = settings.jwt_secret

    if integrity_secret:
        canonical_data = {
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "action": action,
            "actor_id": str(actor_id) if actor_id else None,
            "actor_role": actor_role,
            "timestamp_utc": timestamp_utc.isoformat(),
            "changes": changes_json,
            "context": context,
        }
        canonical_data = {k: v for k, v in canonical_data.items() if v is not None}
        canonical_json = json.dumps(canonical_data, sort_keys=True, default=str)
        hash_input = f"{canonical_json}:{integrity_secret}"
        integrity_hash = hashlib.sha256(hash_input.encode()).hexdigest()

    audit_log = AuditLog(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        actor_id=actor_id,
        actor_role=actor_role,
        changes_json=_jsonable(changes_json),
        timestamp_utc=timestamp_utc,
        context=_jsonable(context),
        integrity_hash=integrity_hash,
    )
    db.add(audit_log)
    return audit_log


def _jsonable(value: Optional[Dict]) -> Optional[Dict]:
    # UUIDs and datetimes are not JSON column friendly
    if value is None:
        return None
    return json.loads(json.dumps(value, default=str))
