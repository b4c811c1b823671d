"""
Explicit slot states for worker slots on a shift.

A stored AssignedPersonnel row is either an open slot (no worker, up for grabs)
or a claimed slot (worker + lifecycle status). A placeholder is a slot the
client renders from the shift's requirements but which has no stored row yet;
it only ever appears on the request side.
"""
import uuid
from dataclasses import dataclass
from typing import Optional, Union

from ..models.enums import WorkerStatus
from ..models.models import AssignedPersonnel


@dataclass(frozen=True)
class OpenSlot:
    role_code: str
    # False for a vacant row that was never offered to the pool
    up_for_grabs: bool = True


@dataclass(frozen=True)
class ClaimedSlot:
    user_id: uuid.UUID
    status: WorkerStatus


@dataclass(frozen=True)
class PlaceholderSlot:
    role_code: Optional[str] = None


SlotState = Union[OpenSlot, ClaimedSlot, PlaceholderSlot]

# What callers pass to identify a slot: a stored row id or a placeholder
SlotRef = Union[uuid.UUID, PlaceholderSlot]


def slot_state_of(assignment: AssignedPersonnel) -> SlotState:
    if assignment.user_id is None:
        return OpenSlot(
            role_code=assignment.role_code,
            up_for_grabs=assignment.worker_status == WorkerStatus.up_for_grabs,
        )
    return ClaimedSlot(user_id=assignment.user_id, status=assignment.worker_status)


def is_placeholder(ref: SlotRef) -> bool:
    return isinstance(ref, PlaceholderSlot)
