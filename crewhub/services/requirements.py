"""
Worker requirement ledger.
Declares how many workers of each role a shift needs and reports the fill ratio.
Requirements never gate assignment; over-assignment is allowed and simply shows up in the ratio.
"""
from dataclasses import dataclass, field
from typing import Dict, List

import structlog
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models.models import WorkerRequirement, AssignedPersonnel, User
from .audit import create_audit_log
from .errors import ConflictError, NotFoundError, ValidationError
from .lookup import get_shift
from .permissions import require_manage_shift
from .time_rules import utcnow


logger = structlog.get_logger(__name__)

ROLE_NAMES = {
    "CC": "Crew Chief",
    "SH": "Stage Hand",
    "FO": "Fork Operator",
    "RFO": "Reach Fork Operator",
    "RG": "Rigger",
    "GL": "General Labor",
}


@dataclass
class RoleFill:
    role_code: str
    required: int
    assigned: int


@dataclass
class FillState:
    assigned_count: int
    required_count: int
    roles: List[RoleFill] = field(default_factory=list)

    @property
    def fill_percentage(self) -> int:
        if self.required_count <= 0:
            return 100 if self.assigned_count else 0
        return round(self.assigned_count * 100 / self.required_count)


def normalize_role_code(role_code: str) -> str:
    code = (role_code or "").strip().upper()
    if not code or len(code) > 10:
        raise ValidationError("Role code must be 1-10 characters")
    return code


def role_name(role_code: str) -> str:
    return ROLE_NAMES.get(role_code, role_code)


def set_requirement(
    db: Session,
    actor: User,
    shift_id,
    role_code: str,
    count: int,
    replace: bool = False,
) -> WorkerRequirement:
    """
    Declare the head-count for one role on a shift.

    Args:
        replace: update an existing (shift, role) row instead of failing with Conflict
    """
    if not isinstance(count, int) or isinstance(count, bool) or count < 0:
        raise ValidationError("Required count must be a non-negative integer")
    code = normalize_role_code(role_code)
    shift = get_shift(db, shift_id, for_update=True)
    require_manage_shift(db, actor, shift, "edit worker requirements on this shift")

    requirement = db.query(WorkerRequirement).filter(
        WorkerRequirement.shift_id == shift.id,
        WorkerRequirement.role_code == code,
    ).first()

    if requirement and not replace:
        raise ConflictError(f"A requirement for role {code} already exists on this shift")

    if requirement:
        before = requirement.required_count
        requirement.required_count = count
        requirement.updated_at = utcnow()
        action = "UPDATE"
    else:
        before = None
        requirement = WorkerRequirement(shift_id=shift.id, role_code=code, required_count=count)
        db.add(requirement)
        action = "CREATE"

    try:
        db.flush()
        create_audit_log(
            db,
            entity_type="requirement",
            entity_id=requirement.id,
            action=action,
            actor=actor,
            changes_json={"before": {"required_count": before}, "after": {"required_count": count}},
            context={"shift_id": shift.id, "role_code": code},
        )
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError(f"A requirement for role {code} already exists on this shift")

    db.refresh(requirement)
    logger.info("requirement_set", shift_id=str(shift.id), role_code=code, required_count=count)
    return requirement


def delete_requirement(db: Session, actor: User, requirement_id) -> None:
    requirement = db.query(WorkerRequirement).filter(WorkerRequirement.id == requirement_id).first()
    if not requirement:
        raise NotFoundError("Worker requirement not found")
    shift = get_shift(db, requirement.shift_id)
    require_manage_shift(db, actor, shift, "edit worker requirements on this shift")
    create_audit_log(
        db,
        entity_type="requirement",
        entity_id=requirement.id,
        action="DELETE",
        actor=actor,
        changes_json={"before": {"role_code": requirement.role_code, "required_count": requirement.required_count}},
        context={"shift_id": shift.id},
    )
    db.delete(requirement)
    db.commit()


def get_requirements(db: Session, shift_id) -> List[WorkerRequirement]:
    shift = get_shift(db, shift_id)
    return db.query(WorkerRequirement).filter(
        WorkerRequirement.shift_id == shift.id
    ).order_by(WorkerRequirement.role_code).all()


def get_fill_state(db: Session, shift_id) -> FillState:
    """
    Assigned vs required head-count for a shift.
    Only slots with a worker count as assigned. Shifts without per-role rows
    fall back to the legacy requested_workers figure.
    """
    shift = get_shift(db, shift_id)
    requirements = get_requirements(db, shift.id)

    assigned_by_role: Dict[str, int] = dict(
        db.query(AssignedPersonnel.role_code, func.count(AssignedPersonnel.id))
        .filter(AssignedPersonnel.shift_id == shift.id, AssignedPersonnel.user_id.isnot(None))
        .group_by(AssignedPersonnel.role_code)
        .all()
    )
    assigned_count = sum(assigned_by_role.values())

    if requirements:
        required_count = sum(r.required_count for r in requirements)
        codes = [r.role_code for r in requirements]
        required_by_role = {r.role_code: r.required_count for r in requirements}
    else:
        required_count = shift.requested_workers or 0
        codes = []
        required_by_role = {}

    codes += sorted(c for c in assigned_by_role if c not in required_by_role)
    roles = [
        RoleFill(role_code=c, required=required_by_role.get(c, 0), assigned=assigned_by_role.get(c, 0))
        for c in codes
    ]
    return FillState(assigned_count=assigned_count, required_count=required_count, roles=roles)
