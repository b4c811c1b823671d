import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.security import get_current_user
from ..db import get_db
from ..models.models import User
from ..schemas.staffing import PermissionGrantIn, PermissionGrantResponse
from ..services import crew_chief_permissions as grants


router = APIRouter(prefix="/crew-chief-permissions", tags=["crew-chief-permissions"])


@router.get("", response_model=List[PermissionGrantResponse])
def list_grants(
    user_id: Optional[uuid.UUID] = None,
    scope_type: Optional[str] = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return grants.list_permissions(db, user, user_id=user_id, scope_type=scope_type)


@router.post("", response_model=PermissionGrantResponse, status_code=201)
def create_grant(
    payload: PermissionGrantIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return grants.grant_permission(db, user, payload.user_id, payload.scope_type, payload.scope_id)


@router.delete("/{permission_id}")
def delete_grant(
    permission_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    grants.revoke_permission(db, user, permission_id)
    return {"status": "ok"}
