"""
Time tracking engine.
Each clock-in opens a numbered TimeEntry; clock-out closes it. Breaks are simply
the gaps between entries, so the full history is preserved and never rewritten.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

import structlog
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import settings
from ..models.enums import ShiftStatus, WorkerStatus
from ..models.models import AssignedPersonnel, Shift, TimeEntry, User
from .audit import create_audit_log
from .errors import ConflictError, ForbiddenError, InvalidStateError, ValidationError
from .lookup import get_assignment, get_shift
from .permissions import can_manage_shift
from .slots import ClaimedSlot, slot_state_of
from .time_rules import (
    MIN_WORK_PERIOD,
    ensure_utc,
    minutes_to_hours,
    rounded_minutes,
    utcnow,
)


logger = structlog.get_logger(__name__)


@dataclass
class HoursSummary:
    assignment_id: object
    user_id: object
    total_minutes: int
    total_hours: float
    entries: List[TimeEntry] = field(default_factory=list)
    clocked_in: bool = False


def get_active_entry(db: Session, assignment_id) -> Optional[TimeEntry]:
    return db.query(TimeEntry).filter(
        TimeEntry.assigned_personnel_id == assignment_id,
        TimeEntry.is_active.is_(True),
    ).first()


def count_time_entries(db: Session, assignment_id) -> int:
    return db.query(func.count(TimeEntry.id)).filter(
        TimeEntry.assigned_personnel_id == assignment_id
    ).scalar() or 0


def _require_clock_permission(db: Session, actor: User, shift: Shift, assignment: AssignedPersonnel) -> None:
    # Workers may clock themselves; anyone else needs management rights on the shift
    if assignment.user_id is not None and actor.id == assignment.user_id and actor.is_active:
        return
    if not can_manage_shift(db, actor, shift):
        raise ForbiddenError("You do not have permission to record time on this shift.")


def _close_entry(db: Session, entry: TimeEntry, now: datetime) -> bool:
    """Compare-and-swap close; False when someone else closed it first."""
    updated = db.query(TimeEntry).filter(
        TimeEntry.id == entry.id,
        TimeEntry.is_active.is_(True),
    ).update(
        {"clock_out": now, "is_active": False, "updated_at": now},
        synchronize_session=False,
    )
    return updated == 1


def clock_in(db: Session, actor: User, shift_id, assignment_id, now: Optional[datetime] = None) -> TimeEntry:
    now = ensure_utc(now) if now else utcnow()
    shift = get_shift(db, shift_id)
    assignment = get_assignment(db, assignment_id, shift_id=shift.id, for_update=True)
    _require_clock_permission(db, actor, shift, assignment)

    state = slot_state_of(assignment)
    if not isinstance(state, ClaimedSlot) or state.status == WorkerStatus.up_for_grabs:
        raise InvalidStateError("Cannot clock in an open slot. Assign a worker first.")
    status = state.status
    if status == WorkerStatus.no_show:
        raise InvalidStateError("Cannot clock in a worker marked as no-show")
    if status == WorkerStatus.shift_ended:
        raise InvalidStateError("Cannot clock in after the worker's shift has ended")

    if get_active_entry(db, assignment.id) is not None:
        raise ConflictError("Worker is already clocked in")

    existing = count_time_entries(db, assignment.id)
    if existing >= settings.max_time_entries:
        raise InvalidStateError(
            f"Maximum of {settings.max_time_entries} time entries per shift reached",
            {"entry_count": existing},
        )

    last_number = db.query(func.max(TimeEntry.entry_number)).filter(
        TimeEntry.assigned_personnel_id == assignment.id
    ).scalar() or 0

    entry = TimeEntry(
        assigned_personnel_id=assignment.id,
        shift_id=shift.id,
        user_id=assignment.user_id,
        entry_number=last_number + 1,
        clock_in=now,
        is_active=True,
    )
    db.add(entry)
    before = assignment.status
    assignment.status = WorkerStatus.clocked_in.value
    assignment.updated_at = now
    if shift.status == ShiftStatus.pending.value:
        shift.status = ShiftStatus.active.value
        shift.updated_at = now

    try:
        db.flush()
        create_audit_log(
            db,
            entity_type="time_entry",
            entity_id=entry.id,
            action="CLOCK_IN",
            actor=actor,
            changes_json={"before": {"status": before}, "after": {"status": assignment.status, "entry_number": entry.entry_number}},
            context={"shift_id": shift.id, "assignment_id": assignment.id, "user_id": assignment.user_id},
        )
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Worker is already clocked in")

    db.refresh(entry)
    logger.info("clock_in", assignment_id=str(assignment.id), entry_number=entry.entry_number)
    return entry


def clock_out(db: Session, actor: User, shift_id, assignment_id, now: Optional[datetime] = None) -> TimeEntry:
    now = ensure_utc(now) if now else utcnow()
    shift = get_shift(db, shift_id)
    assignment = get_assignment(db, assignment_id, shift_id=shift.id, for_update=True)
    _require_clock_permission(db, actor, shift, assignment)

    entry = get_active_entry(db, assignment.id)
    if entry is None:
        raise InvalidStateError("No active clock-in found")

    started = ensure_utc(entry.clock_in)
    if now <= started:
        raise ValidationError("Clock-out time must be after clock-in time")
    if now - started < MIN_WORK_PERIOD:
        raise ValidationError("Minimum work period of 1 minute required")

    if not _close_entry(db, entry, now):
        db.rollback()
        raise InvalidStateError("No active clock-in found")

    before = assignment.status
    assignment.status = WorkerStatus.clocked_out.value
    assignment.updated_at = now
    create_audit_log(
        db,
        entity_type="time_entry",
        entity_id=entry.id,
        action="CLOCK_OUT",
        actor=actor,
        changes_json={"before": {"status": before}, "after": {"status": assignment.status, "clock_out": now}},
        context={"shift_id": shift.id, "assignment_id": assignment.id, "user_id": assignment.user_id},
    )
    db.commit()
    db.refresh(entry)
    logger.info("clock_out", assignment_id=str(assignment.id), entry_number=entry.entry_number)
    return entry


def end_shift(db: Session, actor: User, shift_id, assignment_id, now: Optional[datetime] = None) -> AssignedPersonnel:
    """
    Move a worker to ShiftEnded, closing any open entry at ``now``.
    Already-ended assignments are returned unchanged.
    """
    now = ensure_utc(now) if now else utcnow()
    shift = get_shift(db, shift_id)
    assignment = get_assignment(db, assignment_id, shift_id=shift.id, for_update=True)
    _require_clock_permission(db, actor, shift, assignment)

    state = slot_state_of(assignment)
    if isinstance(state, ClaimedSlot) and state.status == WorkerStatus.shift_ended:
        return assignment
    if not isinstance(state, ClaimedSlot) or state.status == WorkerStatus.up_for_grabs:
        raise InvalidStateError("Cannot end the shift for an open slot")
    if state.status == WorkerStatus.no_show:
        raise InvalidStateError("Cannot end the shift for a worker marked as no-show")

    entry = get_active_entry(db, assignment.id)
    if entry is not None:
        _close_entry(db, entry, now)

    before = assignment.status
    assignment.status = WorkerStatus.shift_ended.value
    assignment.updated_at = now
    create_audit_log(
        db,
        entity_type="assignment",
        entity_id=assignment.id,
        action="END_SHIFT",
        actor=actor,
        changes_json={"before": {"status": before}, "after": {"status": assignment.status}},
        context={"shift_id": shift.id, "user_id": assignment.user_id, "closed_entry": entry is not None},
    )
    db.commit()
    db.refresh(assignment)
    logger.info("shift_ended_for_worker", assignment_id=str(assignment.id))
    return assignment


def _non_terminal_assignments(db: Session, shift_id) -> List[AssignedPersonnel]:
    rows = db.query(AssignedPersonnel).filter(
        AssignedPersonnel.shift_id == shift_id,
        AssignedPersonnel.user_id.isnot(None),
    ).with_for_update().all()
    return [a for a in rows if not a.worker_status.is_terminal and a.worker_status != WorkerStatus.up_for_grabs]


def master_start_break(db: Session, actor: User, shift_id, now: Optional[datetime] = None) -> List[AssignedPersonnel]:
    """Clock out every worker currently on the clock, in one transaction."""
    now = ensure_utc(now) if now else utcnow()
    shift = get_shift(db, shift_id, for_update=True)
    if not can_manage_shift(db, actor, shift):
        raise ForbiddenError("You do not have permission to start a break for this shift.")

    affected = []
    for assignment in _non_terminal_assignments(db, shift.id):
        entry = get_active_entry(db, assignment.id)
        if entry is None or not _close_entry(db, entry, now):
            continue
        assignment.status = WorkerStatus.clocked_out.value
        assignment.updated_at = now
        affected.append(assignment)

    create_audit_log(
        db,
        entity_type="shift",
        entity_id=shift.id,
        action="MASTER_START_BREAK",
        actor=actor,
        context={"assignment_ids": [a.id for a in affected]},
    )
    db.commit()
    logger.info("master_start_break", shift_id=str(shift.id), affected=len(affected))
    return affected


def master_end_shift(db: Session, actor: User, shift_id, now: Optional[datetime] = None) -> List[AssignedPersonnel]:
    """End the shift for every worker who has clocked in at least once."""
    now = ensure_utc(now) if now else utcnow()
    shift = get_shift(db, shift_id, for_update=True)
    if not can_manage_shift(db, actor, shift):
        raise ForbiddenError("You do not have permission to end this shift.")

    affected = []
    for assignment in _non_terminal_assignments(db, shift.id):
        if count_time_entries(db, assignment.id) == 0:
            continue
        entry = get_active_entry(db, assignment.id)
        if entry is not None:
            _close_entry(db, entry, now)
        assignment.status = WorkerStatus.shift_ended.value
        assignment.updated_at = now
        affected.append(assignment)

    if not affected:
        db.rollback()
        raise InvalidStateError("No workers on this shift have clocked in")

    create_audit_log(
        db,
        entity_type="shift",
        entity_id=shift.id,
        action="MASTER_END_SHIFT",
        actor=actor,
        context={"assignment_ids": [a.id for a in affected]},
    )
    db.commit()
    logger.info("master_end_shift", shift_id=str(shift.id), affected=len(affected))
    return affected


def assignment_hours(db: Session, actor: User, shift_id, assignment_id) -> HoursSummary:
    """Rounded worked time for one assignment. Open entries are not counted."""
    shift = get_shift(db, shift_id)
    assignment = get_assignment(db, assignment_id, shift_id=shift.id)
    _require_clock_permission(db, actor, shift, assignment)
    entries = db.query(TimeEntry).filter(
        TimeEntry.assigned_personnel_id == assignment.id
    ).order_by(TimeEntry.entry_number).all()

    total = sum(rounded_minutes(e.clock_in, e.clock_out) for e in entries if e.clock_out is not None)
    return HoursSummary(
        assignment_id=assignment.id,
        user_id=assignment.user_id,
        total_minutes=total,
        total_hours=minutes_to_hours(total),
        entries=entries,
        clocked_in=any(e.is_active for e in entries),
    )
