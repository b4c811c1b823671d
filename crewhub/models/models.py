import uuid
from datetime import datetime, timezone, date as date_type
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Date,
    Boolean,
    ForeignKey,
    Integer,
    JSON,
    UniqueConstraint,
    Text,
    Index,
    CheckConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship, Mapped, mapped_column

from ..db import Base
from .enums import UserRole, ShiftStatus, WorkerStatus, TimesheetStatus


def uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Company(Base):
    """A client company; jobs belong to exactly one company."""
    __tablename__ = "companies"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    timezone: Mapped[Optional[str]] = mapped_column(String(64))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    jobs = relationship("Job", back_populates="company")


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default=UserRole.staff.value)  # Staff|Admin|CompanyUser|CrewChief|Employee
    company_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("companies.id", ondelete="SET NULL"), index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("idx_users_role_active", "role", "is_active"),
    )

    @property
    def user_role(self) -> UserRole:
        return UserRole.normalize(self.role)


class Job(Base):
    __tablename__ = "jobs"

    id: Mapped[uuid.UUID] = uuid_pk()
    company_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    location: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    company = relationship("Company", back_populates="jobs")
    shifts = relationship("Shift", back_populates="job")

    __table_args__ = (
        UniqueConstraint("name", "company_id", name="uq_job_name_company"),
    )


# Staffing & Time Tracking Models

class Shift(Base):
    """A scheduled block of work on a job."""
    __tablename__ = "shifts"

    id: Mapped[uuid.UUID] = uuid_pk()
    job_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True)
    date: Mapped[date_type] = mapped_column(Date, nullable=False)  # Local date the shift is worked
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)  # UTC
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)  # UTC
    location: Mapped[Optional[str]] = mapped_column(String(255))
    status: Mapped[str] = mapped_column(String(20), default=ShiftStatus.pending.value)  # Pending|Active|Completed|Cancelled
    requested_workers: Mapped[Optional[int]] = mapped_column(Integer)  # Legacy single head-count, used when no per-role rows exist
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    job = relationship("Job", back_populates="shifts")
    requirements = relationship("WorkerRequirement", back_populates="shift", cascade="all, delete-orphan")
    assignments = relationship("AssignedPersonnel", back_populates="shift")
    timesheet = relationship("Timesheet", back_populates="shift", uselist=False)

    __table_args__ = (
        Index("idx_shifts_date_time", "date", "start_time", "end_time"),
        Index("idx_shifts_job_date", "job_id", "date"),
    )


class WorkerRequirement(Base):
    """How many workers of one role code a shift needs."""
    __tablename__ = "worker_requirements"

    id: Mapped[uuid.UUID] = uuid_pk()
    shift_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("shifts.id", ondelete="CASCADE"), nullable=False, index=True)
    role_code: Mapped[str] = mapped_column(String(10), nullable=False)
    required_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    shift = relationship("Shift", back_populates="requirements")

    __table_args__ = (
        UniqueConstraint("shift_id", "role_code", name="uq_requirement_shift_role"),
        CheckConstraint("required_count >= 0", name="ck_requirement_count_non_negative"),
    )


class AssignedPersonnel(Base):
    """One worker slot on a shift. user_id NULL means the slot is up for grabs."""
    __tablename__ = "assigned_personnel"

    id: Mapped[uuid.UUID] = uuid_pk()
    shift_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("shifts.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), index=True)
    role_code: Mapped[str] = mapped_column(String(10), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=WorkerStatus.assigned.value)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    shift = relationship("Shift", back_populates="assignments")
    user = relationship("User")
    # No delete cascade: closed entries outlive an unassigned row (FK is set to NULL)
    time_entries = relationship("TimeEntry", back_populates="assignment", order_by="TimeEntry.entry_number")

    # NULLs are distinct in the unique index, so any number of open slots may coexist
    __table_args__ = (
        UniqueConstraint("shift_id", "user_id", name="uq_assignment_shift_user"),
        Index("idx_assignment_shift_status", "shift_id", "status"),
        Index("idx_assignment_user_status", "user_id", "status"),
    )

    @property
    def worker_status(self) -> WorkerStatus:
        return WorkerStatus.normalize(self.status)


class TimeEntry(Base):
    """One clock-in/clock-out pair. Never deleted; closed by clock-out."""
    __tablename__ = "time_entries"

    id: Mapped[uuid.UUID] = uuid_pk()
    assigned_personnel_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("assigned_personnel.id", ondelete="SET NULL"), index=True)
    # Denormalized so history stays attributable after the assignment row is removed
    shift_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("shifts.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), index=True)
    entry_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    clock_in: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    clock_out: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    assignment = relationship("AssignedPersonnel", back_populates="time_entries")

    __table_args__ = (
        UniqueConstraint("assigned_personnel_id", "entry_number", name="uq_time_entry_number"),
        # At most one open entry per assignment
        Index(
            "uq_time_entry_one_active",
            "assigned_personnel_id",
            unique=True,
            sqlite_where=text("is_active"),
            postgresql_where=text("is_active"),
        ),
    )


class Timesheet(Base):
    """Approval workflow over one shift's time records."""
    __tablename__ = "timesheets"

    id: Mapped[uuid.UUID] = uuid_pk()
    shift_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("shifts.id", ondelete="CASCADE"), unique=True, nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default=TimesheetStatus.draft.value)
    submitted_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    company_signature: Mapped[Optional[str]] = mapped_column(Text)
    company_approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    company_approved_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    company_notes: Mapped[Optional[str]] = mapped_column(Text)
    manager_signature: Mapped[Optional[str]] = mapped_column(Text)
    manager_approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    manager_approved_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    manager_notes: Mapped[Optional[str]] = mapped_column(Text)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text)
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    rejected_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    unsigned_pdf_key: Mapped[Optional[str]] = mapped_column(String(512))
    signed_pdf_key: Mapped[Optional[str]] = mapped_column(String(512))
    unlock_history: Mapped[Optional[str]] = mapped_column(Text)  # Append-only admin unlock trail
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    shift = relationship("Shift", back_populates="timesheet")
    entries = relationship(
        "TimesheetEntry",
        back_populates="timesheet",
        cascade="all, delete-orphan",
        order_by="TimesheetEntry.entry_number",
    )

    @property
    def timesheet_status(self) -> TimesheetStatus:
        return TimesheetStatus.normalize(self.status)


class TimesheetEntry(Base):
    """Snapshot of one time entry taken when the timesheet is submitted."""
    __tablename__ = "timesheet_entries"

    id: Mapped[uuid.UUID] = uuid_pk()
    timesheet_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("timesheets.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    user_name: Mapped[str] = mapped_column(String(255), nullable=False)
    role_code: Mapped[str] = mapped_column(String(10), nullable=False)
    entry_number: Mapped[int] = mapped_column(Integer, nullable=False)
    clock_in: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    clock_out: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    timesheet = relationship("Timesheet", back_populates="entries")


class CrewChiefPermission(Base):
    """Delegated management grant over a shift, a job, or a client company."""
    __tablename__ = "crew_chief_permissions"

    id: Mapped[uuid.UUID] = uuid_pk()
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    scope_type: Mapped[str] = mapped_column(String(10), nullable=False)  # shift|job|client
    scope_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    granted_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "scope_type", "scope_id", name="uq_crew_chief_grant"),
        Index("idx_crew_chief_scope", "scope_type", "scope_id"),
    )


class AuditLog(Base):
    """Append-only audit log for all staffing actions"""
    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = uuid_pk()
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)  # assignment|time_entry|timesheet|requirement|permission
    entity_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)  # ASSIGN|REPLACE|UNASSIGN|CLAIM|DROP|CLOCK_IN|CLOCK_OUT|FINALIZE|APPROVE|REJECT|UNLOCK|...
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), index=True)
    actor_role: Mapped[Optional[str]] = mapped_column(String(20))
    changes_json: Mapped[Optional[dict]] = mapped_column(JSON)  # Before/after diff
    timestamp_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    context: Mapped[Optional[dict]] = mapped_column(JSON)  # shift_id, user_id, reason, ...
    integrity_hash: Mapped[Optional[str]] = mapped_column(String(64))  # SHA256 hash for integrity verification

    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_actor", "actor_id", "timestamp_utc"),
    )


class Notification(Base):
    """In-app notification records"""
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = uuid_pk()
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(50), nullable=False)  # SHIFT_UP_FOR_GRABS|TIMESHEET_REJECTED|TIMESHEET_UNLOCKED|...
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    related_shift_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("shifts.id", ondelete="SET NULL"))
    related_timesheet_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("timesheets.id", ondelete="SET NULL"))
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("idx_notifications_user_read", "user_id", "is_read"),
        Index("idx_notifications_created", "created_at"),
    )
