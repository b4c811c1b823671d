"""
Assignment manager.
Owns the lifecycle of a worker slot on a shift: assign, replace, unassign,
claim, drop and no-show. Every mutation is one transaction that also stages
its audit entry; notification fan-out happens after commit.
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models.enums import ShiftStatus, UserRole, WorkerStatus
from ..models.models import AssignedPersonnel, Shift, User
from .audit import create_audit_log
from .conflicts import ConflictInfo, safe_check_conflicts
from .errors import (
    ConflictError,
    ForbiddenError,
    GoneError,
    InvalidStateError,
    ValidationError,
)
from .lookup import get_assignment, get_shift, get_user
from .notifications import SHIFT_UP_FOR_GRABS, notify_users, pool_user_ids, run_after_commit
from .permissions import can_manage_shift, require_manage_shift
from .realtime import broadcast
from .requirements import normalize_role_code, role_name
from .slots import ClaimedSlot, OpenSlot, SlotRef, is_placeholder, slot_state_of
from .time_rules import ensure_utc, format_local, utcnow
from .time_tracking import count_time_entries, get_active_entry


logger = structlog.get_logger(__name__)

# Drops further out than this free the slot entirely; closer drops open it to the pool
DROP_RELEASE_WINDOW = timedelta(hours=24)

DROP_DELETED = "deleted"
DROP_UP_FOR_GRABS = "up_for_grabs"

CLAIMANT_ROLES = (UserRole.employee, UserRole.crew_chief)


@dataclass
class AssignResult:
    assignment: AssignedPersonnel
    conflicts: List[ConflictInfo] = field(default_factory=list)


@dataclass
class DropResult:
    assignment_id: uuid.UUID
    outcome: str
    notified: int = 0


def _user_on_shift(db: Session, shift_id, user_id) -> Optional[AssignedPersonnel]:
    return db.query(AssignedPersonnel).filter(
        AssignedPersonnel.shift_id == shift_id,
        AssignedPersonnel.user_id == user_id,
    ).first()


def _require_assignable(user: User) -> None:
    if not user.is_active:
        raise ValidationError("Cannot assign an inactive user")


def list_assignments(db: Session, shift_id) -> List[AssignedPersonnel]:
    shift = get_shift(db, shift_id)
    return db.query(AssignedPersonnel).filter(
        AssignedPersonnel.shift_id == shift.id
    ).order_by(AssignedPersonnel.role_code, AssignedPersonnel.created_at).all()


def list_open_slots(db: Session, shift_id) -> List[AssignedPersonnel]:
    shift = get_shift(db, shift_id)
    return db.query(AssignedPersonnel).filter(
        AssignedPersonnel.shift_id == shift.id,
        AssignedPersonnel.user_id.is_(None),
        AssignedPersonnel.status == WorkerStatus.up_for_grabs.value,
    ).order_by(AssignedPersonnel.created_at).all()


def assign(
    db: Session,
    actor: User,
    shift_id,
    user_id,
    role_code: str,
    ignore_conflicts: bool = False,
) -> AssignResult:
    """
    Put a worker on a shift in the given role.

    Requirement counts are not enforced; over-assignment shows up in the fill ratio.
    Overlapping assignments elsewhere are returned as warnings unless ignore_conflicts is set.
    """
    code = normalize_role_code(role_code)
    shift = get_shift(db, shift_id, for_update=True)
    require_manage_shift(db, actor, shift, "assign workers to this shift")
    worker = get_user(db, user_id)
    _require_assignable(worker)

    existing = _user_on_shift(db, shift.id, worker.id)
    if existing is not None:
        raise ConflictError(
            "User is already assigned to this shift",
            {"assignment_id": str(existing.id), "role_code": existing.role_code},
        )

    conflicts = [] if ignore_conflicts else safe_check_conflicts(db, shift.id, worker.id)

    assignment = AssignedPersonnel(
        shift_id=shift.id,
        user_id=worker.id,
        role_code=code,
        status=WorkerStatus.assigned.value,
    )
    db.add(assignment)
    try:
        db.flush()
        create_audit_log(
            db,
            entity_type="assignment",
            entity_id=assignment.id,
            action="ASSIGN",
            actor=actor,
            changes_json={"after": {"user_id": worker.id, "role_code": code, "status": assignment.status}},
            context={"shift_id": shift.id, "conflicts": len(conflicts), "ignore_conflicts": ignore_conflicts},
        )
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("User is already assigned to this shift")

    db.refresh(assignment)
    if conflicts:
        logger.warning("assignment_has_conflicts", assignment_id=str(assignment.id), conflicts=len(conflicts))
    logger.info("worker_assigned", shift_id=str(shift.id), user_id=str(worker.id), role_code=code)
    return AssignResult(assignment=assignment, conflicts=conflicts)


def replace(db: Session, actor: User, shift_id, slot: SlotRef, new_user_id, role_code: str) -> AssignedPersonnel:
    """
    Swap the worker in a slot: delete the old row and create the new one atomically.
    A placeholder slot has no stored row, so only the create happens.
    """
    code = normalize_role_code(role_code)
    shift = get_shift(db, shift_id, for_update=True)
    require_manage_shift(db, actor, shift, "change assignments on this shift")
    worker = get_user(db, new_user_id)
    _require_assignable(worker)

    old = None
    if not is_placeholder(slot):
        old = get_assignment(db, slot, shift_id=shift.id, for_update=True)
        if count_time_entries(db, old.id) > 0:
            raise InvalidStateError("Cannot replace assignment with existing time entries")

    existing = _user_on_shift(db, shift.id, worker.id)
    if existing is not None and (old is None or existing.id != old.id):
        raise ConflictError(
            "User is already assigned to this shift",
            {"assignment_id": str(existing.id), "role_code": existing.role_code},
        )

    before = None
    if old is not None:
        before = {"assignment_id": old.id, "user_id": old.user_id, "role_code": old.role_code, "status": old.status}
        db.delete(old)
        # Deletes flush after inserts within one flush, so free the (shift, user) slot first
        db.flush()

    assignment = AssignedPersonnel(
        shift_id=shift.id,
        user_id=worker.id,
        role_code=code,
        status=WorkerStatus.assigned.value,
    )
    db.add(assignment)
    try:
        db.flush()
        create_audit_log(
            db,
            entity_type="assignment",
            entity_id=assignment.id,
            action="REPLACE",
            actor=actor,
            changes_json={"before": before, "after": {"user_id": worker.id, "role_code": code}},
            context={"shift_id": shift.id, "placeholder": old is None},
        )
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("User is already assigned to this shift")

    db.refresh(assignment)
    logger.info("worker_replaced", shift_id=str(shift.id), assignment_id=str(assignment.id))
    return assignment


def unassign(db: Session, actor: User, shift_id, slot: SlotRef) -> None:
    """
    Remove a slot from the shift.
    Placeholders are a no-op. Closed time entries survive with their assignment link cleared.
    """
    if is_placeholder(slot):
        return None

    shift = get_shift(db, shift_id)
    assignment = get_assignment(db, slot, shift_id=shift.id, for_update=True)
    require_manage_shift(db, actor, shift, "remove workers from this shift")

    if get_active_entry(db, assignment.id) is not None:
        raise InvalidStateError(
            "Cannot unassign worker who is currently clocked in. Please clock them out first."
        )

    create_audit_log(
        db,
        entity_type="assignment",
        entity_id=assignment.id,
        action="UNASSIGN",
        actor=actor,
        changes_json={"before": {"user_id": assignment.user_id, "role_code": assignment.role_code, "status": assignment.status}},
        context={"shift_id": shift.id, "retained_entries": count_time_entries(db, assignment.id)},
    )
    db.delete(assignment)
    db.commit()
    logger.info("worker_unassigned", shift_id=str(shift.id), assignment_id=str(slot))
    return None


def claim(db: Session, actor: User, shift_id, assignment_id, claiming_user_id=None) -> AssignedPersonnel:
    """
    Take an up-for-grabs slot.

    The slot is taken with a compare-and-swap on (status, user_id), so of two
    concurrent claimants exactly one wins; the other gets Gone.
    """
    shift = get_shift(db, shift_id)
    if claiming_user_id is None or claiming_user_id == actor.id:
        claimant = actor
    else:
        if not can_manage_shift(db, actor, shift):
            raise ForbiddenError("You can only claim open shifts for yourself.")
        claimant = get_user(db, claiming_user_id)

    if not claimant.is_active or claimant.user_role not in CLAIMANT_ROLES:
        raise ForbiddenError("Only active employees and crew chiefs can claim open shifts.")

    assignment = get_assignment(db, assignment_id, shift_id=shift.id)
    state = slot_state_of(assignment)
    if not isinstance(state, OpenSlot) or not state.up_for_grabs:
        raise GoneError("This shift is no longer available")
    if shift.status in (ShiftStatus.completed.value, ShiftStatus.cancelled.value):
        raise GoneError("This shift is no longer available")

    if _user_on_shift(db, shift.id, claimant.id) is not None:
        raise ConflictError("You are already assigned to this shift")

    now = utcnow()
    try:
        updated = db.query(AssignedPersonnel).filter(
            AssignedPersonnel.id == assignment.id,
            AssignedPersonnel.user_id.is_(None),
            AssignedPersonnel.status == WorkerStatus.up_for_grabs.value,
        ).update(
            {"user_id": claimant.id, "status": WorkerStatus.assigned.value, "updated_at": now},
            synchronize_session=False,
        )
        if updated != 1:
            db.rollback()
            raise GoneError("This shift is no longer available")
        create_audit_log(
            db,
            entity_type="assignment",
            entity_id=assignment.id,
            action="CLAIM",
            actor=actor,
            changes_json={"before": {"user_id": None, "status": WorkerStatus.up_for_grabs.value}, "after": {"user_id": claimant.id, "status": WorkerStatus.assigned.value}},
            context={"shift_id": shift.id},
        )
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("You are already assigned to this shift")

    db.refresh(assignment)
    logger.info("slot_claimed", shift_id=str(shift.id), assignment_id=str(assignment.id), user_id=str(claimant.id))
    return assignment


def drop(db: Session, actor: User, shift_id, assignment_id, now: Optional[datetime] = None) -> DropResult:
    """
    Give up one's own assignment.

    More than 24 hours before start the row is deleted. Inside that window the
    slot becomes up for grabs and every active employee and crew chief is told.
    """
    now = ensure_utc(now) if now else utcnow()
    shift = get_shift(db, shift_id)
    assignment = get_assignment(db, assignment_id, shift_id=shift.id, for_update=True)

    state = slot_state_of(assignment)
    if not isinstance(state, ClaimedSlot) or state.user_id != actor.id:
        raise ForbiddenError("You can only drop your own assignments.")
    if state.status != WorkerStatus.assigned or count_time_entries(db, assignment.id) > 0:
        raise InvalidStateError("Cannot drop a shift after clocking in")

    remaining = ensure_utc(shift.start_time) - now
    before = {"user_id": assignment.user_id, "status": assignment.status}

    if remaining > DROP_RELEASE_WINDOW:
        create_audit_log(
            db,
            entity_type="assignment",
            entity_id=assignment.id,
            action="DROP",
            actor=actor,
            changes_json={"before": before, "after": None},
            context={"shift_id": shift.id, "outcome": DROP_DELETED},
        )
        db.delete(assignment)
        db.commit()
        logger.info("assignment_dropped", assignment_id=str(assignment_id), outcome=DROP_DELETED)
        return DropResult(assignment_id=assignment_id, outcome=DROP_DELETED)

    assignment.user_id = None
    assignment.status = WorkerStatus.up_for_grabs.value
    assignment.updated_at = now
    create_audit_log(
        db,
        entity_type="assignment",
        entity_id=assignment.id,
        action="DROP",
        actor=actor,
        changes_json={"before": before, "after": {"user_id": None, "status": assignment.status}},
        context={"shift_id": shift.id, "outcome": DROP_UP_FOR_GRABS},
    )
    db.commit()
    logger.info("assignment_dropped", assignment_id=str(assignment.id), outcome=DROP_UP_FOR_GRABS)

    notified = run_after_commit(db, "drop", _announce_open_slot, db, shift, assignment) or 0
    return DropResult(assignment_id=assignment_id, outcome=DROP_UP_FOR_GRABS, notified=notified)


def _announce_open_slot(db: Session, shift: Shift, assignment: AssignedPersonnel) -> int:
    job = shift.job
    company = job.company if job is not None else None
    tz_name = company.timezone if company is not None else None
    company_name = company.name if company is not None else "Unknown company"
    location = shift.location or (job.location if job is not None else None) or "TBD"
    starts = format_local(shift.start_time, tz_name)
    message = f"A {role_name(assignment.role_code)} shift is available at {company_name} ({location}) starting {starts}."

    notified = notify_users(
        db,
        pool_user_ids(db),
        SHIFT_UP_FOR_GRABS,
        "Shift Up for Grabs",
        message,
        related_shift_id=shift.id,
    )
    broadcast(
        "shift_up_for_grabs",
        {
            "shift_id": str(shift.id),
            "assignment_id": str(assignment.id),
            "role_code": assignment.role_code,
            "start_time": ensure_utc(shift.start_time).isoformat(),
        },
    )
    return notified


def mark_no_show(db: Session, actor: User, shift_id, assignment_id) -> AssignedPersonnel:
    shift = get_shift(db, shift_id)
    assignment = get_assignment(db, assignment_id, shift_id=shift.id, for_update=True)
    require_manage_shift(db, actor, shift, "mark workers as no-show on this shift")

    state = slot_state_of(assignment)
    if isinstance(state, OpenSlot):
        raise InvalidStateError("Cannot mark an open slot as no-show")
    status = state.status
    if status == WorkerStatus.no_show:
        raise InvalidStateError("Worker is already marked as no-show")
    if status == WorkerStatus.shift_ended or count_time_entries(db, assignment.id) > 0:
        raise InvalidStateError("Cannot mark a worker as no-show after they have clocked in")

    before = assignment.status
    assignment.status = WorkerStatus.no_show.value
    assignment.updated_at = utcnow()
    create_audit_log(
        db,
        entity_type="assignment",
        entity_id=assignment.id,
        action="NO_SHOW",
        actor=actor,
        changes_json={"before": {"status": before}, "after": {"status": assignment.status}},
        context={"shift_id": shift.id, "user_id": assignment.user_id},
    )
    db.commit()
    db.refresh(assignment)
    return assignment
