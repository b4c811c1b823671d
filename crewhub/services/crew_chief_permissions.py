"""
Delegation grants: give a user management rights over a shift, a job, or a client company.
Only admins create or revoke grants.
"""
from typing import List, Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models.enums import PermissionScope
from ..models.models import CrewChiefPermission, Shift, Job, Company, User
from .audit import create_audit_log
from .errors import ConflictError, NotFoundError
from .lookup import get_user
from .permissions import require_admin


logger = structlog.get_logger(__name__)

_SCOPE_MODELS = {
    PermissionScope.shift: Shift,
    PermissionScope.job: Job,
    PermissionScope.client: Company,
}


def grant_permission(db: Session, admin: User, user_id, scope_type, scope_id) -> CrewChiefPermission:
    require_admin(admin, "grant crew chief permissions")
    scope = PermissionScope.normalize(scope_type)
    get_user(db, user_id)
    target_model = _SCOPE_MODELS[scope]
    if db.query(target_model.id).filter(target_model.id == scope_id).first() is None:
        raise NotFoundError(f"{scope.value.capitalize()} not found")

    existing = db.query(CrewChiefPermission).filter(
        CrewChiefPermission.user_id == user_id,
        CrewChiefPermission.scope_type == scope.value,
        CrewChiefPermission.scope_id == scope_id,
    ).first()
    if existing:
        raise ConflictError("User already holds this permission")

    grant = CrewChiefPermission(
        user_id=user_id,
        scope_type=scope.value,
        scope_id=scope_id,
        granted_by=admin.id,
    )
    db.add(grant)
    try:
        db.flush()
        create_audit_log(
            db,
            entity_type="permission",
            entity_id=grant.id,
            action="GRANT",
            actor=admin,
            changes_json={"after": {"user_id": user_id, "scope_type": scope.value, "scope_id": scope_id}},
        )
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("User already holds this permission")
    db.refresh(grant)
    logger.info("crew_chief_permission_granted", grant_id=str(grant.id), scope_type=scope.value)
    return grant


def revoke_permission(db: Session, admin: User, permission_id) -> None:
    require_admin(admin, "revoke crew chief permissions")
    grant = db.query(CrewChiefPermission).filter(CrewChiefPermission.id == permission_id).first()
    if not grant:
        raise NotFoundError("Permission not found")
    before = {"user_id": grant.user_id, "scope_type": grant.scope_type, "scope_id": grant.scope_id}
    db.delete(grant)
    create_audit_log(
        db,
        entity_type="permission",
        entity_id=permission_id,
        action="REVOKE",
        actor=admin,
        changes_json={"before": before},
    )
    db.commit()
    logger.info("crew_chief_permission_revoked", grant_id=str(permission_id))


def list_permissions(
    db: Session,
    admin: User,
    user_id=None,
    scope_type: Optional[str] = None,
) -> List[CrewChiefPermission]:
    require_admin(admin, "list crew chief permissions")
    query = db.query(CrewChiefPermission)
    if user_id:
        query = query.filter(CrewChiefPermission.user_id == user_id)
    if scope_type:
        query = query.filter(CrewChiefPermission.scope_type == PermissionScope.normalize(scope_type).value)
    return query.order_by(CrewChiefPermission.created_at.desc()).all()
