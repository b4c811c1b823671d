import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel


class ApproveIn(BaseModel):
    approval_type: str  # company|manager|admin
    signature: Optional[str] = None
    notes: Optional[str] = None


class ReasonIn(BaseModel):
    reason: str


class TimesheetEntryResponse(BaseModel):
    entry_number: int
    clock_in: datetime
    clock_out: Optional[datetime] = None

    class Config:
        from_attributes = True


class WorkerHoursResponse(BaseModel):
    user_id: Optional[uuid.UUID] = None
    user_name: str
    role_code: str
    total_minutes: int
    total_hours: float
    entries: List[TimesheetEntryResponse] = []

    class Config:
        from_attributes = True


class TimesheetResponse(BaseModel):
    id: uuid.UUID
    shift_id: uuid.UUID
    status: str
    submitted_by: Optional[uuid.UUID] = None
    submitted_at: Optional[datetime] = None
    company_signature: Optional[str] = None
    company_approved_at: Optional[datetime] = None
    company_approved_by: Optional[uuid.UUID] = None
    company_notes: Optional[str] = None
    manager_signature: Optional[str] = None
    manager_approved_at: Optional[datetime] = None
    manager_approved_by: Optional[uuid.UUID] = None
    manager_notes: Optional[str] = None
    rejection_reason: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejected_by: Optional[uuid.UUID] = None
    signed_pdf_key: Optional[str] = None
    unlock_history: Optional[str] = None

    class Config:
        from_attributes = True


class TimesheetDetailResponse(BaseModel):
    timesheet: TimesheetResponse
    workers: List[WorkerHoursResponse] = []
    total_minutes: int
    total_hours: float
