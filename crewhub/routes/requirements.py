"""
Worker requirement routes: per-role head-counts and fill state for a shift.
"""
import uuid
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.security import get_current_user
from ..db import get_db
from ..models.models import User
from ..schemas.staffing import FillStateResponse, RequirementIn, RequirementResponse
from ..services import requirements as ledger
from ..services.permissions import require_view_shift


router = APIRouter(tags=["requirements"])


@router.get("/shifts/{shift_id}/requirements", response_model=List[RequirementResponse])
def list_requirements(
    shift_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    require_view_shift(db, user, shift_id, "view requirements for this shift")
    return ledger.get_requirements(db, shift_id)


@router.post("/shifts/{shift_id}/requirements", response_model=RequirementResponse, status_code=201)
def create_requirement(
    shift_id: uuid.UUID,
    payload: RequirementIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Declare a role head-count. An existing row for the role is a Conflict."""
    return ledger.set_requirement(db, user, shift_id, payload.role_code, payload.required_count)


@router.put("/shifts/{shift_id}/requirements", response_model=RequirementResponse)
def upsert_requirement(
    shift_id: uuid.UUID,
    payload: RequirementIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return ledger.set_requirement(db, user, shift_id, payload.role_code, payload.required_count, replace=True)


@router.delete("/requirements/{requirement_id}")
def delete_requirement(
    requirement_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    ledger.delete_requirement(db, user, requirement_id)
    return {"status": "ok"}


@router.get("/shifts/{shift_id}/fill-state", response_model=FillStateResponse)
def fill_state(
    shift_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    require_view_shift(db, user, shift_id, "view staffing for this shift")
    return FillStateResponse.model_validate(ledger.get_fill_state(db, shift_id))
