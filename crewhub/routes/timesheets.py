"""
Timesheet routes: finalize a shift, then company and manager sign-off.
"""
import uuid

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from sqlalchemy.orm import Session

from ..auth.security import get_current_user
from ..db import get_db
from ..models.models import User
from ..schemas.timesheets import (
    ApproveIn,
    ReasonIn,
    TimesheetDetailResponse,
    TimesheetResponse,
    WorkerHoursResponse,
)
from ..services import timesheets as lifecycle


router = APIRouter(tags=["timesheets"])


def _detail(timesheet) -> TimesheetDetailResponse:
    summary = lifecycle.build_summary(timesheet)
    return TimesheetDetailResponse(
        timesheet=TimesheetResponse.model_validate(timesheet),
        workers=[WorkerHoursResponse.model_validate(w) for w in summary.workers],
        total_minutes=summary.total_minutes,
        total_hours=summary.total_hours,
    )


@router.post("/shifts/{shift_id}/finalize-timesheet", response_model=TimesheetResponse)
def finalize_timesheet(
    shift_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Create the timesheet once every worker is ShiftEnded or NoShow. Repeat calls return the same timesheet."""
    return lifecycle.finalize(db, user, shift_id)


@router.get("/timesheets/{timesheet_id}", response_model=TimesheetDetailResponse)
def get_timesheet(
    timesheet_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return _detail(lifecycle.get_timesheet_for_user(db, user, timesheet_id))


@router.post("/timesheets/{timesheet_id}/approve", response_model=TimesheetResponse)
def approve_timesheet(
    timesheet_id: uuid.UUID,
    payload: ApproveIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return lifecycle.approve(db, user, timesheet_id, payload.approval_type, payload.signature, payload.notes)


@router.post("/timesheets/{timesheet_id}/reject", response_model=TimesheetResponse)
def reject_timesheet(
    timesheet_id: uuid.UUID,
    payload: ReasonIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return lifecycle.reject(db, user, timesheet_id, payload.reason)


@router.post("/timesheets/{timesheet_id}/unlock", response_model=TimesheetResponse)
def unlock_timesheet(
    timesheet_id: uuid.UUID,
    payload: ReasonIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return lifecycle.unlock(db, user, timesheet_id, payload.reason)


@router.post("/timesheets/{timesheet_id}/submit", response_model=TimesheetResponse)
def submit_timesheet(
    timesheet_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return lifecycle.submit(db, user, timesheet_id)


@router.get("/timesheets/{timesheet_id}/pdf")
def timesheet_pdf(
    timesheet_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    pdf = lifecycle.render_timesheet_document(db, user, timesheet_id)
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'inline; filename="timesheet-{timesheet_id}.pdf"'},
    )
