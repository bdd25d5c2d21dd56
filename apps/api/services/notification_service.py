"""
Notification sink and staff directory.

``notify`` / ``notify_many`` hand messages to the Celery notification tasks.
They are fire-and-forget: callers invoke them only after their own
transaction has committed, and a failure to enqueue is logged, never raised.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from core.exceptions import NotFoundError
from models import Notification, User, STAFF_ROLES, NOTIFICATION_CATEGORIES

logger = logging.getLogger(__name__)


def _category(category: str) -> str:
    return category if category in NOTIFICATION_CATEGORIES else "general"


def notify(
    user_id: UUID,
    title: str,
    message: str,
    category: str = "general",
    *,
    send_email: bool = False,
) -> bool:
    """Queue one notification. Returns False if the queue could not be reached."""
    from tasks.notification_tasks import deliver_notification

    try:
        deliver_notification.delay(str(user_id), title, message, _category(category), send_email)
        return True
    except Exception:
        logger.error(
            "Failed to enqueue notification",
            exc_info=True,
            extra={"extra_fields": {"user_id": str(user_id), "title": title}},
        )
        return False


def notify_many(
    user_ids: Iterable[UUID],
    title: str,
    message: str,
    category: str = "general",
) -> bool:
    from tasks.notification_tasks import deliver_bulk_notification

    recipients = [str(u) for u in dict.fromkeys(user_ids)]
    if not recipients:
        return True
    try:
        deliver_bulk_notification.delay(recipients, title, message, _category(category))
        return True
    except Exception:
        logger.error(
            "Failed to enqueue bulk notification",
            exc_info=True,
            extra={"extra_fields": {"recipients": len(recipients), "title": title}},
        )
        return False


def send_membership_card(subscription_id: UUID) -> bool:
    from tasks.notification_tasks import send_membership_card as send_card_task

    try:
        send_card_task.delay(str(subscription_id))
        return True
    except Exception:
        logger.error(
            "Failed to enqueue membership card",
            exc_info=True,
            extra={"extra_fields": {"subscription_id": str(subscription_id)}},
        )
        return False


def list_active_staff(db: Session) -> List[User]:
    """Staff Directory: every active staff or admin account."""
    return (
        db.query(User)
        .filter(User.role.in_(STAFF_ROLES), User.is_active.is_(True))
        .order_by(User.created_at)
        .all()
    )


def notify_staff(db: Session, title: str, message: str, category: str = "general") -> bool:
    try:
        staff_ids = [u.id for u in list_active_staff(db)]
    except Exception:
        logger.error("Failed to load staff directory for notification", exc_info=True)
        return False
    return notify_many(staff_ids, title, message, category)


# --- Inbox ---

def list_notifications(
    db: Session,
    *,
    user_id: UUID,
    unread_only: bool = False,
    page: int = 1,
    limit: int = 20,
) -> Tuple[List[Notification], int]:
    q = db.query(Notification).filter(Notification.user_id == user_id)
    if unread_only:
        q = q.filter(Notification.is_read.is_(False))
    total = q.count()
    rows = (
        q.order_by(Notification.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total


def unread_count(db: Session, *, user_id: UUID) -> int:
    return (
        db.query(func.count(Notification.id))
        .filter(Notification.user_id == user_id, Notification.is_read.is_(False))
        .scalar()
        or 0
    )


def mark_read(db: Session, *, user_id: UUID, notification_id: UUID) -> Notification:
    notification = (
        db.query(Notification)
        .filter(Notification.id == notification_id, Notification.user_id == user_id)
        .first()
    )
    if not notification:
        raise NotFoundError("Notification", notification_id)
    notification.is_read = True
    return notification


def mark_all_read(db: Session, *, user_id: UUID) -> int:
    return (
        db.query(Notification)
        .filter(Notification.user_id == user_id, Notification.is_read.is_(False))
        .update({Notification.is_read: True}, synchronize_session=False)
    )


def delete_notification(db: Session, *, user_id: UUID, notification_id: Optional[UUID]) -> None:
    notification = (
        db.query(Notification)
        .filter(Notification.id == notification_id, Notification.user_id == user_id)
        .first()
    )
    if not notification:
        raise NotFoundError("Notification", notification_id)
    db.delete(notification)
