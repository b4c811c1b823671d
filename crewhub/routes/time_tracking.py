"""
Clock routes: per-worker clock-in/out and end of shift, plus crew-wide break and end.
"""
import uuid
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.security import get_current_user
from ..db import get_db
from ..models.models import User
from ..schemas.staffing import AssignmentResponse, HoursResponse, TimeEntryResponse
from ..services import time_tracking as clock


router = APIRouter(tags=["time-tracking"])


@router.post("/shifts/{shift_id}/assignments/{assignment_id}/clock-in", response_model=TimeEntryResponse)
def clock_in(
    shift_id: uuid.UUID,
    assignment_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return clock.clock_in(db, user, shift_id, assignment_id)


@router.post("/shifts/{shift_id}/assignments/{assignment_id}/clock-out", response_model=TimeEntryResponse)
def clock_out(
    shift_id: uuid.UUID,
    assignment_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return clock.clock_out(db, user, shift_id, assignment_id)


@router.post("/shifts/{shift_id}/assignments/{assignment_id}/end-shift", response_model=AssignmentResponse)
def end_shift(
    shift_id: uuid.UUID,
    assignment_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return clock.end_shift(db, user, shift_id, assignment_id)


@router.post("/shifts/{shift_id}/master-start-break", response_model=List[AssignmentResponse])
def master_start_break(
    shift_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Send everyone currently clocked in on break."""
    return clock.master_start_break(db, user, shift_id)


@router.post("/shifts/{shift_id}/master-end-shift", response_model=List[AssignmentResponse])
def master_end_shift(
    shift_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return clock.master_end_shift(db, user, shift_id)


@router.get("/shifts/{shift_id}/assignments/{assignment_id}/hours", response_model=HoursResponse)
def assignment_hours(
    shift_id: uuid.UUID,
    assignment_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return HoursResponse.model_validate(clock.assignment_hours(db, user, shift_id, assignment_id))
