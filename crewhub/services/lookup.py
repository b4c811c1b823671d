"""
Row loaders shared by the staffing services.
``for_update`` takes a row lock on backends that support it (PostgreSQL);
SQLite serializes writers at the database level instead.
"""
from sqlalchemy.orm import Session

from ..models.models import Shift, AssignedPersonnel, Timesheet, User
from .errors import NotFoundError


def get_shift(db: Session, shift_id, for_update: bool = False) -> Shift:
    query = db.query(Shift).filter(Shift.id == shift_id)
    if for_update:
        query = query.with_for_update()
    shift = query.first()
    if not shift:
        raise NotFoundError("Shift not found")
    return shift


def get_assignment(db: Session, assignment_id, shift_id=None, for_update: bool = False) -> AssignedPersonnel:
    query = db.query(AssignedPersonnel).filter(AssignedPersonnel.id == assignment_id)
    if shift_id is not None:
        query = query.filter(AssignedPersonnel.shift_id == shift_id)
    if for_update:
        query = query.with_for_update()
    assignment = query.first()
    if not assignment:
        raise NotFoundError("Assignment not found on this shift")
    return assignment


def get_timesheet(db: Session, timesheet_id, for_update: bool = False) -> Timesheet:
    query = db.query(Timesheet).filter(Timesheet.id == timesheet_id)
    if for_update:
        query = query.with_for_update()
    timesheet = query.first()
    if not timesheet:
        raise NotFoundError("Timesheet not found")
    return timesheet


def get_user(db: Session, user_id) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFoundError("User not found")
    return user
