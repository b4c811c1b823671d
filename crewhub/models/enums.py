"""
Canonical enums for the staffing domain.

Legacy rows and older clients carry several spellings of the same status
("Shift Ended", "shift_ended", "ShiftEnded"). ``normalize`` folds them into the
canonical member at the boundary; only canonical values are ever written.
"""
from enum import Enum
import re

from ..services.errors import ValidationError


def _fold(value: str) -> str:
    return re.sub(r"[\s_\-]", "", str(value)).lower()


class _NormalizingEnum(str, Enum):
    @classmethod
    def _aliases(cls) -> dict:
        return {}

    @classmethod
    def normalize(cls, value):
        if isinstance(value, cls):
            return value
        if value is None:
            raise ValidationError(f"{cls.__name__} value is required")
        key = _fold(value)
        for member in cls:
            if _fold(member.value) == key:
                return member
        alias = cls._aliases().get(key)
        if alias is not None:
            return cls(alias)
        raise ValidationError(f"Unknown {cls.__name__} value: {value!r}")


class UserRole(_NormalizingEnum):
    staff = "Staff"
    admin = "Admin"
    company_user = "CompanyUser"
    crew_chief = "CrewChief"
    employee = "Employee"


class ShiftStatus(_NormalizingEnum):
    pending = "Pending"
    active = "Active"
    completed = "Completed"
    cancelled = "Cancelled"

    @classmethod
    def _aliases(cls) -> dict:
        return {"inprogress": "Active", "ongoing": "Active", "canceled": "Cancelled"}


class WorkerStatus(_NormalizingEnum):
    assigned = "Assigned"
    clocked_in = "ClockedIn"
    clocked_out = "ClockedOut"
    shift_ended = "ShiftEnded"
    no_show = "NoShow"
    up_for_grabs = "UpForGrabs"

    @classmethod
    def _aliases(cls) -> dict:
        # Breaks are modelled as closed time entries, so "on break" is clocked out
        return {"onbreak": "ClockedOut", "ended": "ShiftEnded", "open": "UpForGrabs"}

    @property
    def is_terminal(self) -> bool:
        return self in (WorkerStatus.shift_ended, WorkerStatus.no_show)


class TimesheetStatus(_NormalizingEnum):
    draft = "DRAFT"
    pending_company_approval = "PENDING_COMPANY_APPROVAL"
    pending_manager_approval = "PENDING_MANAGER_APPROVAL"
    completed = "COMPLETED"
    rejected = "REJECTED"

    @classmethod
    def _aliases(cls) -> dict:
        return {"approved": "COMPLETED", "pendingclientapproval": "PENDING_COMPANY_APPROVAL"}

    @property
    def is_pending(self) -> bool:
        return self in (TimesheetStatus.pending_company_approval, TimesheetStatus.pending_manager_approval)


class PermissionScope(_NormalizingEnum):
    shift = "shift"
    job = "job"
    client = "client"


class ApprovalType(_NormalizingEnum):
    company = "company"
    manager = "manager"
    admin = "admin"

    @classmethod
    def _aliases(cls) -> dict:
        return {"client": "company"}
