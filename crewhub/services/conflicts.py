"""
Scheduling conflict detection.
Advisory only: overlapping assignments are reported to the operator, never used to block.
"""
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

import structlog
from sqlalchemy.orm import Session

from ..models.enums import ShiftStatus
from ..models.models import Shift, Job, AssignedPersonnel
from .lookup import get_shift
from .time_rules import ensure_utc


logger = structlog.get_logger(__name__)


@dataclass
class ConflictInfo:
    shift_id: uuid.UUID
    assignment_id: uuid.UUID
    role_code: str
    job_name: Optional[str]
    start_time: datetime
    end_time: datetime


def _ranges_overlap(start1: datetime, end1: datetime, start2: datetime, end2: datetime) -> bool:
    # Touching ranges (one ends exactly when the other starts) do not overlap
    return start1 < end2 and end1 > start2


def check_conflicts(db: Session, shift_id, user_id) -> List[ConflictInfo]:
    """
    Find the user's other assignments that overlap the candidate shift.

    Args:
        db: Database session
        shift_id: Candidate shift
        user_id: Worker being considered

    Returns:
        Overlapping assignments on other shifts of the same date (empty if none)
    """
    shift = get_shift(db, shift_id)
    start = ensure_utc(shift.start_time)
    end = ensure_utc(shift.end_time)

    rows = (
        db.query(AssignedPersonnel, Shift, Job)
        .join(Shift, AssignedPersonnel.shift_id == Shift.id)
        .outerjoin(Job, Shift.job_id == Job.id)
        .filter(
            AssignedPersonnel.user_id == user_id,
            Shift.id != shift.id,
            Shift.date == shift.date,
            Shift.status != ShiftStatus.cancelled.value,
        )
        .all()
    )

    conflicts = []
    for assignment, other, job in rows:
        other_start = ensure_utc(other.start_time)
        other_end = ensure_utc(other.end_time)
        if _ranges_overlap(start, end, other_start, other_end):
            conflicts.append(ConflictInfo(
                shift_id=other.id,
                assignment_id=assignment.id,
                role_code=assignment.role_code,
                job_name=job.name if job else None,
                start_time=other_start,
                end_time=other_end,
            ))
    return conflicts


def safe_check_conflicts(db: Session, shift_id, user_id) -> List[ConflictInfo]:
    """
    Conflict check that degrades to "no conflicts" when the lookup itself fails.
    Runs under a savepoint so a failed statement does not abort the caller's transaction.
    """
    try:
        with db.begin_nested():
            return check_conflicts(db, shift_id, user_id)
    except Exception as e:
        logger.warning("conflict_check_failed", shift_id=str(shift_id), user_id=str(user_id), error=str(e))
        return []
