"""
Assignment routes: staffing a shift, swapping workers, and the open-slot pool.
"""
import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.security import get_current_user
from ..db import get_db
from ..models.models import User
from ..schemas.staffing import (
    AssignIn,
    AssignResponse,
    AssignmentResponse,
    CanManageResponse,
    CheckConflictsIn,
    CheckConflictsResponse,
    ClaimIn,
    ConflictResponse,
    DropResponse,
    ReplaceIn,
    UnassignPlaceholderIn,
    to_slot_ref,
)
from ..services import assignments as manager
from ..services.conflicts import check_conflicts
from ..services.lookup import get_shift
from ..services.permissions import can_manage_shift, require_manage_shift, require_view_shift


router = APIRouter(tags=["assignments"])


@router.get("/shifts/{shift_id}/assignments", response_model=List[AssignmentResponse])
def list_assignments(
    shift_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    require_view_shift(db, user, shift_id, "view the roster for this shift")
    return manager.list_assignments(db, shift_id)


@router.post("/shifts/{shift_id}/assignments", response_model=AssignResponse, status_code=201)
def assign_worker(
    shift_id: uuid.UUID,
    payload: AssignIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """
    Assign a worker to the shift.
    Overlapping assignments on the same day come back in ``conflicts``; they never block.
    """
    result = manager.assign(
        db,
        user,
        shift_id,
        payload.user_id,
        payload.role_code,
        ignore_conflicts=payload.ignore_conflicts,
    )
    return AssignResponse.model_validate(result)


@router.post("/shifts/{shift_id}/assignments/replace", response_model=AssignmentResponse)
def replace_worker(
    shift_id: uuid.UUID,
    payload: ReplaceIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return manager.replace(db, user, shift_id, to_slot_ref(payload.slot), payload.user_id, payload.role_code)


@router.delete("/shifts/{shift_id}/assignments/{assignment_id}")
def unassign_worker(
    shift_id: uuid.UUID,
    assignment_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    manager.unassign(db, user, shift_id, assignment_id)
    return {"status": "ok"}


@router.post("/shifts/{shift_id}/assignments/unassign-placeholder")
def unassign_slot(
    shift_id: uuid.UUID,
    payload: UnassignPlaceholderIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Unassign by slot reference; placeholders are accepted and ignored."""
    manager.unassign(db, user, shift_id, to_slot_ref(payload.slot))
    return {"status": "ok"}


@router.get("/shifts/{shift_id}/open-slots", response_model=List[AssignmentResponse])
def open_slots(
    shift_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    require_view_shift(db, user, shift_id, "view open slots on this shift")
    return manager.list_open_slots(db, shift_id)


@router.post("/shifts/{shift_id}/assignments/{assignment_id}/claim", response_model=AssignmentResponse)
def claim_slot(
    shift_id: uuid.UUID,
    assignment_id: uuid.UUID,
    payload: Optional[ClaimIn] = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return manager.claim(db, user, shift_id, assignment_id, payload.user_id if payload else None)


@router.post("/shifts/{shift_id}/assignments/{assignment_id}/drop", response_model=DropResponse)
def drop_assignment(
    shift_id: uuid.UUID,
    assignment_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return DropResponse.model_validate(manager.drop(db, user, shift_id, assignment_id))


@router.post("/shifts/{shift_id}/assignments/{assignment_id}/no-show", response_model=AssignmentResponse)
def no_show(
    shift_id: uuid.UUID,
    assignment_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return manager.mark_no_show(db, user, shift_id, assignment_id)


@router.post("/shifts/{shift_id}/check-conflicts", response_model=CheckConflictsResponse)
def check_shift_conflicts(
    shift_id: uuid.UUID,
    payload: CheckConflictsIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    shift = get_shift(db, shift_id)
    require_manage_shift(db, user, shift, "check conflicts for this shift")
    conflicts = check_conflicts(db, shift.id, payload.user_id)
    return CheckConflictsResponse(
        has_conflicts=bool(conflicts),
        conflicts=[ConflictResponse.model_validate(c) for c in conflicts],
    )


@router.get("/shifts/{shift_id}/can-manage", response_model=CanManageResponse)
def can_manage(
    shift_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    shift = get_shift(db, shift_id)
    return {"shift_id": shift.id, "can_manage": can_manage_shift(db, user, shift)}
