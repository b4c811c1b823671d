"""
Notification service.
Notifications are fire-and-forget: they are written after the triggering
mutation has committed, and a failure here is logged, never raised.
"""
import uuid
from typing import Iterable, List

import structlog
from sqlalchemy.orm import Session

from ..config import settings
from ..models.enums import UserRole
from ..models.models import Notification, User
from .errors import NotFoundError


logger = structlog.get_logger(__name__)

SHIFT_UP_FOR_GRABS = "SHIFT_UP_FOR_GRABS"
TIMESHEET_REJECTED = "TIMESHEET_REJECTED"
TIMESHEET_UNLOCKED = "TIMESHEET_UNLOCKED"
TIMESHEET_APPROVAL_NEEDED = "TIMESHEET_APPROVAL_NEEDED"


def pool_user_ids(db: Session) -> List[uuid.UUID]:
    """Active users who may pick up open slots (Employees and Crew Chiefs)."""
    rows = db.query(User.id).filter(
        User.is_active.is_(True),
        User.role.in_([UserRole.employee.value, UserRole.crew_chief.value]),
    ).all()
    return [r[0] for r in rows]


def manager_user_ids(db: Session) -> List[uuid.UUID]:
    rows = db.query(User.id).filter(
        User.is_active.is_(True),
        User.role.in_([UserRole.admin.value, UserRole.crew_chief.value]),
    ).all()
    return [r[0] for r in rows]


def company_user_ids(db: Session, company_id) -> List[uuid.UUID]:
    rows = db.query(User.id).filter(
        User.is_active.is_(True),
        User.role == UserRole.company_user.value,
        User.company_id == company_id,
    ).all()
    return [r[0] for r in rows]


def notify_users(
    db: Session,
    user_ids: Iterable,
    notification_type: str,
    title: str,
    message: str,
    related_shift_id=None,
    related_timesheet_id=None,
) -> int:
    """
    Create one notification per user in its own transaction.

    Args:
        db: Database session (the triggering mutation must already be committed)
        user_ids: Recipients; duplicates and None are dropped
        notification_type: SHIFT_UP_FOR_GRABS|TIMESHEET_REJECTED|...
        title: Short title
        message: Human readable body
        related_shift_id: Optional shift reference
        related_timesheet_id: Optional timesheet reference

    Returns:
        Number of notifications written (0 when disabled or on failure)
    """
    if not settings.enable_notifications:
        return 0

    recipients = []
    seen = set()
    for user_id in user_ids:
        if user_id is None or user_id in seen:
            continue
        seen.add(user_id)
        recipients.append(user_id)
    if not recipients:
        return 0

    try:
        for user_id in recipients:
            db.add(Notification(
                user_id=user_id,
                type=notification_type,
                title=title,
                message=message,
                related_shift_id=related_shift_id,
                related_timesheet_id=related_timesheet_id,
            ))
        db.commit()
    except Exception as e:
        db.rollback()
        logger.warning(
            "notification_fanout_failed",
            notification_type=notification_type,
            recipients=len(recipients),
            error=str(e),
        )
        return 0

    logger.info("notifications_created", notification_type=notification_type, recipients=len(recipients))
    return len(recipients)


def run_after_commit(db: Session, step: str, fn, *args, **kwargs):
    """
    Run follow-up work (recipient lookup, message building, fan-out) for a committed mutation.
    Any failure is rolled back and logged; the caller always gets None instead of an exception.
    """
    try:
        return fn(*args, **kwargs)
    except Exception as e:
        db.rollback()
        logger.warning("notification_fanout_failed", step=step, error=str(e))
        return None


def list_notifications(db: Session, user: User, unread_only: bool = False, limit: int = 50) -> List[Notification]:
    query = db.query(Notification).filter(Notification.user_id == user.id)
    if unread_only:
        query = query.filter(Notification.is_read.is_(False))
    return query.order_by(Notification.created_at.desc()).limit(limit).all()


def mark_read(db: Session, user: User, notification_id) -> Notification:
    notification = db.query(Notification).filter(
        Notification.id == notification_id,
        Notification.user_id == user.id,
    ).first()
    if notification is None:
        raise NotFoundError("Notification not found")
    notification.is_read = True
    db.commit()
    db.refresh(notification)
    return notification
