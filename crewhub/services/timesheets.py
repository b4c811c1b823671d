"""
Timesheet lifecycle.

DRAFT -> PENDING_COMPANY_APPROVAL -> PENDING_MANAGER_APPROVAL -> COMPLETED,
REJECTED from either pending state, COMPLETED -> DRAFT only through an admin unlock.
Finalizing snapshots the shift's time entries so the timesheet survives later roster edits.
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..document_creator.timesheet_pdf import build_timesheet_pdf
from ..models.enums import ApprovalType, ShiftStatus, TimesheetStatus, UserRole
from ..models.models import AssignedPersonnel, Shift, TimeEntry, Timesheet, TimesheetEntry, User
from ..storage.local_provider import get_storage
from .audit import create_audit_log
from .errors import ForbiddenError, InvalidStateError, ValidationError
from .lookup import get_shift, get_timesheet
from .notifications import (
    TIMESHEET_APPROVAL_NEEDED,
    TIMESHEET_REJECTED,
    TIMESHEET_UNLOCKED,
    company_user_ids,
    manager_user_ids,
    notify_users,
    run_after_commit,
)
from .permissions import (
    can_approve_for_company,
    can_manage_shift,
    can_reject_timesheet,
    is_assigned_to_shift,
    require_admin,
    require_manage_shift,
)
from .time_rules import ensure_utc, minutes_to_hours, rounded_minutes, utcnow


logger = structlog.get_logger(__name__)

ADMIN_OVERRIDE_SIGNATURE = "Admin Override"


@dataclass
class WorkerHours:
    user_id: Optional[uuid.UUID]
    user_name: str
    role_code: str
    entries: List[TimesheetEntry] = field(default_factory=list)
    total_minutes: int = 0

    @property
    def total_hours(self) -> float:
        return minutes_to_hours(self.total_minutes)


@dataclass
class TimesheetSummary:
    timesheet_id: uuid.UUID
    shift_id: uuid.UUID
    status: str
    workers: List[WorkerHours] = field(default_factory=list)

    @property
    def total_minutes(self) -> int:
        return sum(w.total_minutes for w in self.workers)

    @property
    def total_hours(self) -> float:
        return minutes_to_hours(self.total_minutes)


def _shift_timezone(shift: Shift) -> Optional[str]:
    job = shift.job
    if job is not None and job.company is not None:
        return job.company.timezone
    return None


def _company_id(shift: Shift):
    return shift.job.company_id if shift.job is not None else None


def _unfinished_workers(db: Session, shift_id) -> int:
    rows = db.query(AssignedPersonnel).filter(
        AssignedPersonnel.shift_id == shift_id,
        AssignedPersonnel.user_id.isnot(None),
    ).all()
    return sum(1 for a in rows if not a.worker_status.is_terminal)


def _require_finished(db: Session, shift: Shift) -> None:
    active = _unfinished_workers(db, shift.id)
    if active:
        raise InvalidStateError(
            f"Cannot finalize timesheet. {active} worker(s) have not finished their shift.",
            {"active_workers": active},
        )


def _snapshot_entries(db: Session, timesheet: Timesheet, shift_id) -> int:
    timesheet.entries.clear()
    rows = (
        db.query(TimeEntry, AssignedPersonnel, User)
        .join(AssignedPersonnel, TimeEntry.assigned_personnel_id == AssignedPersonnel.id)
        .outerjoin(User, AssignedPersonnel.user_id == User.id)
        .filter(TimeEntry.shift_id == shift_id)
        .order_by(User.name, TimeEntry.entry_number)
        .all()
    )
    for entry, assignment, user in rows:
        timesheet.entries.append(TimesheetEntry(
            user_id=assignment.user_id,
            user_name=user.name if user is not None else "Unknown worker",
            role_code=assignment.role_code,
            entry_number=entry.entry_number,
            clock_in=entry.clock_in,
            clock_out=entry.clock_out,
        ))
    return len(rows)


def _require_view(db: Session, actor: User, shift: Shift) -> None:
    if can_manage_shift(db, actor, shift) or is_assigned_to_shift(db, actor, shift):
        return
    raise ForbiddenError("You do not have permission to view this timesheet.")


def get_timesheet_for_user(db: Session, actor: User, timesheet_id) -> Timesheet:
    timesheet = get_timesheet(db, timesheet_id)
    _require_view(db, actor, timesheet.shift)
    return timesheet


def _job_name(shift: Shift) -> str:
    return shift.job.name if shift.job is not None else "your shift"


def _notify_company(
    db: Session,
    shift: Shift,
    timesheet: Timesheet,
    message: str,
    notification_type: str = TIMESHEET_APPROVAL_NEEDED,
    title: str = "Timesheet Ready for Approval",
) -> int:
    return notify_users(
        db,
        company_user_ids(db, _company_id(shift)),
        notification_type,
        title,
        message,
        related_shift_id=shift.id,
        related_timesheet_id=timesheet.id,
    )


def _notify_managers(db: Session, actor: User, shift: Shift, timesheet: Timesheet) -> int:
    return notify_users(
        db,
        [uid for uid in manager_user_ids(db) if uid != actor.id],
        TIMESHEET_APPROVAL_NEEDED,
        "Timesheet Awaiting Final Approval",
        "A client-approved timesheet is waiting for manager approval.",
        related_shift_id=shift.id,
        related_timesheet_id=timesheet.id,
    )


def _notify_rejected(db: Session, actor: User, shift: Shift, timesheet: Timesheet) -> int:
    # Workers on the roster always hear; managers too when the client rejected
    recipients = [
        row[0] for row in db.query(AssignedPersonnel.user_id).filter(
            AssignedPersonnel.shift_id == shift.id,
            AssignedPersonnel.user_id.isnot(None),
        ).all()
    ]
    if actor.user_role == UserRole.company_user:
        recipients += manager_user_ids(db)
    return notify_users(
        db,
        recipients,
        TIMESHEET_REJECTED,
        "Timesheet Rejected",
        f"The timesheet for {_job_name(shift)} was rejected by {actor.name}. Reason: {timesheet.rejection_reason}",
        related_shift_id=shift.id,
        related_timesheet_id=timesheet.id,
    )


def finalize(db: Session, actor: User, shift_id, now: Optional[datetime] = None) -> Timesheet:
    """
    Create the shift's timesheet and send it for company approval.

    Idempotent: an existing timesheet is returned unchanged.
    Fails with InvalidState while any assigned worker is not ShiftEnded or NoShow.
    """
    now = ensure_utc(now) if now else utcnow()
    shift = get_shift(db, shift_id, for_update=True)
    require_manage_shift(db, actor, shift, "finalize the timesheet for this shift")

    existing = db.query(Timesheet).filter(Timesheet.shift_id == shift.id).first()
    if existing is not None:
        return existing

    _require_finished(db, shift)

    timesheet = Timesheet(
        shift_id=shift.id,
        status=TimesheetStatus.pending_company_approval.value,
        submitted_by=actor.id,
        submitted_at=now,
    )
    db.add(timesheet)
    try:
        db.flush()
        snapshot = _snapshot_entries(db, timesheet, shift.id)
        before = shift.status
        shift.status = ShiftStatus.completed.value
        shift.updated_at = now
        create_audit_log(
            db,
            entity_type="timesheet",
            entity_id=timesheet.id,
            action="FINALIZE",
            actor=actor,
            changes_json={"before": {"shift_status": before}, "after": {"shift_status": shift.status, "status": timesheet.status}},
            context={"shift_id": shift.id, "entries": snapshot},
        )
        db.commit()
    except IntegrityError:
        # Lost a race with another finalize; the unique shift_id kept it to one row
        db.rollback()
        existing = db.query(Timesheet).filter(Timesheet.shift_id == shift_id).first()
        if existing is None:
            raise
        return existing

    db.refresh(timesheet)
    logger.info("timesheet_finalized", shift_id=str(shift.id), timesheet_id=str(timesheet.id))
    run_after_commit(db, "finalize", lambda: _notify_company(
        db, shift, timesheet, f"The timesheet for {_job_name(shift)} is ready for your approval.",
    ))
    return timesheet


def submit(db: Session, actor: User, timesheet_id, now: Optional[datetime] = None) -> Timesheet:
    """Send a DRAFT (unlocked) or REJECTED timesheet back to company approval with a fresh snapshot."""
    now = ensure_utc(now) if now else utcnow()
    timesheet = get_timesheet(db, timesheet_id, for_update=True)
    shift = timesheet.shift
    require_manage_shift(db, actor, shift, "submit this timesheet")

    status = timesheet.timesheet_status
    if status not in (TimesheetStatus.draft, TimesheetStatus.rejected):
        raise InvalidStateError(f"Only draft or rejected timesheets can be submitted (status: {status.value})")
    _require_finished(db, shift)

    snapshot = _snapshot_entries(db, timesheet, shift.id)
    timesheet.status = TimesheetStatus.pending_company_approval.value
    timesheet.submitted_by = actor.id
    timesheet.submitted_at = now
    timesheet.rejection_reason = None
    timesheet.rejected_at = None
    timesheet.rejected_by = None
    timesheet.updated_at = now
    create_audit_log(
        db,
        entity_type="timesheet",
        entity_id=timesheet.id,
        action="SUBMIT",
        actor=actor,
        changes_json={"before": {"status": status.value}, "after": {"status": timesheet.status}},
        context={"shift_id": shift.id, "entries": snapshot},
    )
    db.commit()
    db.refresh(timesheet)

    run_after_commit(db, "submit", _notify_company, db, shift, timesheet, "A revised timesheet is ready for your approval.")
    return timesheet


def approve(
    db: Session,
    actor: User,
    timesheet_id,
    approval_type,
    signature: Optional[str] = None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Timesheet:
    """
    Record one approval stage.

    Args:
        approval_type: company | manager | admin (admin signs whichever stage is pending)
        signature: Typed name or drawn-signature data URL. Required from the client,
            optional for the manager stage, "Admin Override" when an admin omits it
    """
    now = ensure_utc(now) if now else utcnow()
    approval = ApprovalType.normalize(approval_type)
    timesheet = get_timesheet(db, timesheet_id, for_update=True)
    shift = timesheet.shift
    status = timesheet.timesheet_status

    signature = signature.strip() if signature else None
    if approval == ApprovalType.admin:
        require_admin(actor, "approve on behalf of another party")
        if status == TimesheetStatus.pending_company_approval:
            approval = ApprovalType.company
        elif status == TimesheetStatus.pending_manager_approval:
            approval = ApprovalType.manager
        else:
            raise InvalidStateError(f"Timesheet is not awaiting approval (status: {status.value})")
        signature = signature or ADMIN_OVERRIDE_SIGNATURE

    if approval == ApprovalType.company:
        if status != TimesheetStatus.pending_company_approval:
            raise InvalidStateError(f"Timesheet is not awaiting company approval (status: {status.value})")
        if not can_approve_for_company(db, actor, shift):
            raise ForbiddenError("You do not have permission to approve this timesheet for the client.")
        if not signature:
            raise ValidationError("Signature is required")
        timesheet.company_signature = signature
        timesheet.company_approved_at = now
        timesheet.company_approved_by = actor.id
        timesheet.company_notes = notes
        timesheet.status = TimesheetStatus.pending_manager_approval.value
    else:
        if status != TimesheetStatus.pending_manager_approval:
            raise InvalidStateError(f"Timesheet is not awaiting manager approval (status: {status.value})")
        require_admin(actor, "give final approval")
        timesheet.manager_signature = signature
        timesheet.manager_approved_at = now
        timesheet.manager_approved_by = actor.id
        timesheet.manager_notes = notes
        timesheet.status = TimesheetStatus.completed.value

    timesheet.updated_at = now
    create_audit_log(
        db,
        entity_type="timesheet",
        entity_id=timesheet.id,
        action="APPROVE",
        actor=actor,
        changes_json={"before": {"status": status.value}, "after": {"status": timesheet.status}},
        context={"shift_id": shift.id, "stage": approval.value},
    )
    db.commit()
    db.refresh(timesheet)
    logger.info("timesheet_approved", timesheet_id=str(timesheet.id), stage=approval.value, status=timesheet.status)

    if timesheet.timesheet_status == TimesheetStatus.pending_manager_approval:
        run_after_commit(db, "approve", _notify_managers, db, actor, shift, timesheet)
    elif timesheet.timesheet_status == TimesheetStatus.completed:
        store_timesheet_document(db, timesheet)
    return timesheet


def reject(db: Session, actor: User, timesheet_id, reason: str, now: Optional[datetime] = None) -> Timesheet:
    now = ensure_utc(now) if now else utcnow()
    if not reason or not reason.strip():
        raise ValidationError("A rejection reason is required")
    timesheet = get_timesheet(db, timesheet_id, for_update=True)
    shift = timesheet.shift
    if not can_reject_timesheet(db, actor, shift):
        raise ForbiddenError("You do not have permission to reject this timesheet.")

    status = timesheet.timesheet_status
    if status == TimesheetStatus.completed:
        raise InvalidStateError("Cannot reject a completed timesheet. An admin must unlock it first.")
    if status == TimesheetStatus.rejected:
        raise InvalidStateError("Timesheet has already been rejected")
    if not status.is_pending:
        raise InvalidStateError(f"Only timesheets pending approval can be rejected (status: {status.value})")

    timesheet.status = TimesheetStatus.rejected.value
    timesheet.rejection_reason = reason.strip()
    timesheet.rejected_at = now
    timesheet.rejected_by = actor.id
    timesheet.updated_at = now
    create_audit_log(
        db,
        entity_type="timesheet",
        entity_id=timesheet.id,
        action="REJECT",
        actor=actor,
        changes_json={"before": {"status": status.value}, "after": {"status": timesheet.status}},
        context={"shift_id": shift.id, "reason": timesheet.rejection_reason},
    )
    db.commit()
    db.refresh(timesheet)
    logger.info("timesheet_rejected", timesheet_id=str(timesheet.id), rejected_by=str(actor.id))

    run_after_commit(db, "reject", _notify_rejected, db, actor, shift, timesheet)
    return timesheet


def unlock(db: Session, actor: User, timesheet_id, reason: str, now: Optional[datetime] = None) -> Timesheet:
    """
    Reopen a completed timesheet for editing.
    Approval fields and generated documents are cleared; the unlock is appended to unlock_history.
    """
    now = ensure_utc(now) if now else utcnow()
    require_admin(actor, "unlock timesheets")
    if not reason or not reason.strip():
        raise ValidationError("An unlock reason is required")
    timesheet = get_timesheet(db, timesheet_id, for_update=True)

    status = timesheet.timesheet_status
    if status != TimesheetStatus.completed:
        raise InvalidStateError(f"Only completed timesheets can be unlocked (status: {status.value})")

    document_keys = [k for k in (timesheet.unsigned_pdf_key, timesheet.signed_pdf_key) if k]
    note = f"UNLOCKED BY ADMIN: {actor.name} ({actor.email}) on {now.isoformat()}\nReason: {reason.strip()}"
    timesheet.unlock_history = f"{timesheet.unlock_history}\n\n{note}" if timesheet.unlock_history else note

    timesheet.status = TimesheetStatus.draft.value
    timesheet.company_signature = None
    timesheet.company_approved_at = None
    timesheet.company_approved_by = None
    timesheet.company_notes = None
    timesheet.manager_signature = None
    timesheet.manager_approved_at = None
    timesheet.manager_approved_by = None
    timesheet.manager_notes = None
    timesheet.unsigned_pdf_key = None
    timesheet.signed_pdf_key = None
    timesheet.updated_at = now
    create_audit_log(
        db,
        entity_type="timesheet",
        entity_id=timesheet.id,
        action="UNLOCK",
        actor=actor,
        changes_json={"before": {"status": status.value}, "after": {"status": timesheet.status}},
        context={"shift_id": timesheet.shift_id, "reason": reason.strip(), "cleared_documents": document_keys},
    )
    db.commit()
    db.refresh(timesheet)
    logger.info("timesheet_unlocked", timesheet_id=str(timesheet.id), admin_id=str(actor.id))

    storage = get_storage()
    for key in document_keys:
        storage.delete(key)

    run_after_commit(db, "unlock", lambda: _notify_company(
        db, timesheet.shift, timesheet,
        f"A completed timesheet was reopened by {actor.name}. Reason: {reason.strip()}",
        TIMESHEET_UNLOCKED, "Timesheet Unlocked",
    ))
    return timesheet


def build_summary(timesheet: Timesheet) -> TimesheetSummary:
    workers: Dict[tuple, WorkerHours] = {}
    for entry in timesheet.entries:
        key = (entry.user_id, entry.user_name, entry.role_code)
        worker = workers.get(key)
        if worker is None:
            worker = workers[key] = WorkerHours(user_id=entry.user_id, user_name=entry.user_name, role_code=entry.role_code)
        worker.entries.append(entry)
        if entry.clock_out is not None:
            worker.total_minutes += rounded_minutes(entry.clock_in, entry.clock_out)
    return TimesheetSummary(
        timesheet_id=timesheet.id,
        shift_id=timesheet.shift_id,
        status=timesheet.status,
        workers=sorted(workers.values(), key=lambda w: (w.user_name.lower(), w.role_code)),
    )


def get_timesheet_summary(db: Session, actor: User, timesheet_id) -> TimesheetSummary:
    timesheet = get_timesheet_for_user(db, actor, timesheet_id)
    return build_summary(timesheet)


def _document_key(timesheet: Timesheet) -> str:
    return f"timesheets/{timesheet.shift_id}/timesheet-{timesheet.id}.pdf"


def store_timesheet_document(db: Session, timesheet: Timesheet) -> Optional[str]:
    """Render and store the completed timesheet PDF. Best effort: failures are logged and return None."""
    try:
        pdf = build_timesheet_pdf(timesheet, build_summary(timesheet), _shift_timezone(timesheet.shift))
        key = _document_key(timesheet)
        get_storage().put_bytes(key, pdf)
        timesheet.signed_pdf_key = key
        db.commit()
    except Exception as e:
        db.rollback()
        logger.warning("timesheet_document_failed", timesheet_id=str(timesheet.id), error=str(e))
        return None
    logger.info("timesheet_document_stored", timesheet_id=str(timesheet.id), key=key)
    return key


def render_timesheet_document(db: Session, actor: User, timesheet_id) -> bytes:
    """PDF bytes for a completed timesheet; the stored copy is served when present."""
    timesheet = get_timesheet_for_user(db, actor, timesheet_id)
    if timesheet.timesheet_status != TimesheetStatus.completed:
        raise InvalidStateError("The timesheet document is available once the timesheet is completed")
    if timesheet.signed_pdf_key:
        stored = get_storage().read_bytes(timesheet.signed_pdf_key)
        if stored:
            return stored
    return build_timesheet_pdf(timesheet, build_summary(timesheet), _shift_timezone(timesheet.shift))
