"""
Permission checks for staffing operations.
Every mutating service calls one of the ``require_*`` helpers before touching data.
"""
from sqlalchemy import or_, and_
from sqlalchemy.orm import Session

from ..models.enums import UserRole, PermissionScope
from ..models.models import User, Shift, Job, AssignedPersonnel, CrewChiefPermission
from .errors import ForbiddenError
from .lookup import get_shift


CREW_CHIEF_ROLE_CODE = "CC"


def is_admin(user: User) -> bool:
    return user.user_role == UserRole.admin


def is_staff_or_admin(user: User) -> bool:
    return user.user_role in (UserRole.admin, UserRole.staff)


def is_company_user_for(user: User, shift: Shift) -> bool:
    if user.user_role != UserRole.company_user or user.company_id is None:
        return False
    return shift.job is not None and shift.job.company_id == user.company_id


def has_delegated_grant(db: Session, user: User, shift: Shift) -> bool:
    """True if a grant covers this shift, its job, or its client company."""
    job: Job = shift.job
    scopes = [and_(CrewChiefPermission.scope_type == PermissionScope.shift.value, CrewChiefPermission.scope_id == shift.id)]
    if job is not None:
        scopes.append(and_(CrewChiefPermission.scope_type == PermissionScope.job.value, CrewChiefPermission.scope_id == job.id))
        scopes.append(and_(CrewChiefPermission.scope_type == PermissionScope.client.value, CrewChiefPermission.scope_id == job.company_id))
    grant = db.query(CrewChiefPermission.id).filter(
        CrewChiefPermission.user_id == user.id,
        or_(*scopes),
    ).first()
    return grant is not None


def is_shift_crew_chief(db: Session, user: User, shift: Shift) -> bool:
    """A Crew Chief holding the CC slot on the shift runs that shift."""
    if user.user_role != UserRole.crew_chief:
        return False
    row = db.query(AssignedPersonnel.id).filter(
        AssignedPersonnel.shift_id == shift.id,
        AssignedPersonnel.user_id == user.id,
        AssignedPersonnel.role_code == CREW_CHIEF_ROLE_CODE,
    ).first()
    return row is not None


def is_assigned_to_shift(db: Session, user: User, shift: Shift) -> bool:
    row = db.query(AssignedPersonnel.id).filter(
        AssignedPersonnel.shift_id == shift.id,
        AssignedPersonnel.user_id == user.id,
    ).first()
    return row is not None


def can_manage_shift(db: Session, user: User, shift) -> bool:
    """
    Check if user can manage a shift (a Shift row or a shift id).
    - Admin and Staff can manage any shift
    - Company users can manage shifts on their own company's jobs
    - Crew Chiefs can manage shifts they run (CC slot)
    - Anyone holding a delegated grant over the shift, its job or its client
    """
    if user is None or not user.is_active:
        return False
    if not isinstance(shift, Shift):
        shift = get_shift(db, shift)
    if is_staff_or_admin(user):
        return True
    if is_company_user_for(user, shift):
        return True
    if is_shift_crew_chief(db, user, shift):
        return True
    return has_delegated_grant(db, user, shift)


def require_manage_shift(db: Session, user: User, shift: Shift, action: str = "manage this shift") -> None:
    if not can_manage_shift(db, user, shift):
        raise ForbiddenError(f"You do not have permission to {action}.")


def can_view_shift(db: Session, user: User, shift) -> bool:
    """
    Rosters and head-counts are visible to the whole internal workforce, so the
    pool can find open slots. Company users only see their own company's shifts.
    """
    if user is None or not user.is_active:
        return False
    if not isinstance(shift, Shift):
        shift = get_shift(db, shift)
    if user.user_role == UserRole.company_user:
        return is_company_user_for(user, shift)
    return True


def require_view_shift(db: Session, user: User, shift, action: str = "view this shift") -> None:
    if not can_view_shift(db, user, shift):
        raise ForbiddenError(f"You do not have permission to {action}.")


def require_admin(user: User, action: str = "perform this action") -> None:
    if user is None or not is_admin(user):
        raise ForbiddenError(f"Admin access required to {action}.")


def can_approve_for_company(db: Session, user: User, shift: Shift) -> bool:
    """Company-stage sign-off: the client, an admin, or the crew chief on site."""
    if is_admin(user) or is_company_user_for(user, shift):
        return True
    if user.user_role == UserRole.crew_chief:
        return can_manage_shift(db, user, shift) or is_assigned_to_shift(db, user, shift)
    return False


def can_reject_timesheet(db: Session, user: User, shift: Shift) -> bool:
    if is_admin(user) or is_company_user_for(user, shift):
        return True
    return user.user_role == UserRole.crew_chief and can_manage_shift(db, user, shift)
