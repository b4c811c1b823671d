import uuid
from datetime import datetime
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from ..services.slots import PlaceholderSlot, SlotRef


# Slot references
class AssignmentRef(BaseModel):
    kind: Literal["assignment"]
    id: uuid.UUID


class PlaceholderRef(BaseModel):
    kind: Literal["placeholder"]
    role_code: Optional[str] = None


SlotRefIn = Annotated[Union[AssignmentRef, PlaceholderRef], Field(discriminator="kind")]


def to_slot_ref(ref: Union[AssignmentRef, PlaceholderRef]) -> SlotRef:
    if isinstance(ref, PlaceholderRef):
        return PlaceholderSlot(role_code=ref.role_code)
    return ref.id


# Requirements
class RequirementIn(BaseModel):
    role_code: str = Field(min_length=1, max_length=10)
    required_count: int


class RequirementResponse(BaseModel):
    id: uuid.UUID
    shift_id: uuid.UUID
    role_code: str
    required_count: int

    class Config:
        from_attributes = True


class RoleFillResponse(BaseModel):
    role_code: str
    required: int
    assigned: int

    class Config:
        from_attributes = True


class FillStateResponse(BaseModel):
    assigned_count: int
    required_count: int
    fill_percentage: int
    roles: List[RoleFillResponse] = []

    class Config:
        from_attributes = True


# Assignments
class AssignIn(BaseModel):
    user_id: uuid.UUID
    role_code: str = Field(min_length=1, max_length=10)
    ignore_conflicts: bool = False


class ReplaceIn(BaseModel):
    slot: SlotRefIn
    user_id: uuid.UUID
    role_code: str = Field(min_length=1, max_length=10)


class UnassignPlaceholderIn(BaseModel):
    slot: SlotRefIn


class ClaimIn(BaseModel):
    user_id: Optional[uuid.UUID] = None  # Defaults to the caller


class AssignmentResponse(BaseModel):
    id: uuid.UUID
    shift_id: uuid.UUID
    user_id: Optional[uuid.UUID] = None
    role_code: str
    status: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ConflictResponse(BaseModel):
    shift_id: uuid.UUID
    assignment_id: uuid.UUID
    role_code: str
    job_name: Optional[str] = None
    start_time: datetime
    end_time: datetime

    class Config:
        from_attributes = True


class AssignResponse(BaseModel):
    assignment: AssignmentResponse
    conflicts: List[ConflictResponse] = []

    class Config:
        from_attributes = True


class CheckConflictsIn(BaseModel):
    user_id: uuid.UUID


class CheckConflictsResponse(BaseModel):
    has_conflicts: bool
    conflicts: List[ConflictResponse] = []


class DropResponse(BaseModel):
    assignment_id: uuid.UUID
    outcome: Literal["deleted", "up_for_grabs"]
    notified: int = 0

    class Config:
        from_attributes = True


# Time tracking
class TimeEntryResponse(BaseModel):
    id: uuid.UUID
    assigned_personnel_id: Optional[uuid.UUID] = None
    entry_number: int
    clock_in: datetime
    clock_out: Optional[datetime] = None
    is_active: bool

    class Config:
        from_attributes = True


class HoursResponse(BaseModel):
    assignment_id: uuid.UUID
    user_id: Optional[uuid.UUID] = None
    total_minutes: int
    total_hours: float
    clocked_in: bool
    entries: List[TimeEntryResponse] = []

    class Config:
        from_attributes = True


# Delegation grants
class PermissionGrantIn(BaseModel):
    user_id: uuid.UUID
    scope_type: str
    scope_id: uuid.UUID


class PermissionGrantResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    scope_type: str
    scope_id: uuid.UUID
    granted_by: Optional[uuid.UUID] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CanManageResponse(BaseModel):
    shift_id: uuid.UUID
    can_manage: bool


# Notifications
class NotificationResponse(BaseModel):
    id: uuid.UUID
    type: str
    title: str
    message: str
    related_shift_id: Optional[uuid.UUID] = None
    related_timesheet_id: Optional[uuid.UUID] = None
    is_read: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
