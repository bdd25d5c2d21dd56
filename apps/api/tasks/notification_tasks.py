"""
Notification delivery tasks.

Each task writes in-app Notification rows (and optionally an email) in its
own session. They never read or modify subscription or class state, so a
delivery failure can only ever lose a message, not corrupt a booking.
"""

from typing import Dict, List, Optional
from uuid import UUID
from celery import Task
from sqlalchemy.orm import Session
from core.database import get_db_sync
from tasks import celery_app
from models import Notification, User
from services.email_service import email_service
import logging

logger = logging.getLogger(__name__)

RETRY_KWARGS = {"max_retries": 3}


class NotificationTask(Task):
    """Logs the final failure once retries are exhausted."""

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        logger.error(
            f"Notification task {self.name} failed permanently: {exc}",
            extra={"extra_fields": {"task_id": task_id, "task": self.name}},
        )


def _write_notification(db: Session, user: User, title: str, message: str, category: str) -> Notification:
    notification = Notification(
        user_id=user.id,
        title=title,
        message=message,
        category=category,
    )
    db.add(notification)
    return notification


@celery_app.task(
    name="tasks.deliver_notification",
    bind=True,
    base=NotificationTask,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_kwargs=RETRY_KWARGS,
)
def deliver_notification(
    self: Task,
    user_id: str,
    title: str,
    message: str,
    category: str = "general",
    send_email: bool = False,
) -> Dict:
    """Store one in-app notification, optionally mirroring it by email."""
    db = get_db_sync()
    try:
        user = db.query(User).filter(User.id == UUID(user_id)).first()
        if not user:
            logger.warning(f"Notification skipped, user {user_id} not found")
            return {"status": "skipped", "reason": "user_not_found"}

        _write_notification(db, user, title, message, category)
        db.commit()

        emailed = False
        if send_email and user.email:
            emailed = email_service.send_notification(
                to_email=user.email,
                name=user.name,
                title=title,
                message=message,
            )

        return {"status": "delivered", "user_id": user_id, "emailed": emailed}
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@celery_app.task(
    name="tasks.deliver_bulk_notification",
    bind=True,
    base=NotificationTask,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_kwargs=RETRY_KWARGS,
)
def deliver_bulk_notification(
    self: Task,
    user_ids: List[str],
    title: str,
    message: str,
    category: str = "general",
) -> Dict:
    """Fan one message out to several users in a single transaction."""
    if not user_ids:
        return {"status": "skipped", "reason": "no_recipients"}

    db = get_db_sync()
    try:
        users = db.query(User).filter(User.id.in_([UUID(u) for u in user_ids])).all()
        for user in users:
            _write_notification(db, user, title, message, category)
        db.commit()
        return {"status": "delivered", "count": len(users)}
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@celery_app.task(
    name="tasks.send_membership_card",
    bind=True,
    base=NotificationTask,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_kwargs=RETRY_KWARGS,
)
def send_membership_card(self: Task, subscription_id: str) -> Dict:
    """
    Email the member their membership card (plan, dates, check-in code)
    and leave a "Subscription Confirmed" notification in their inbox.
    """
    from models import Subscription
    from core.security import create_checkin_code

    db = get_db_sync()
    try:
        subscription = db.query(Subscription).filter(Subscription.id == UUID(subscription_id)).first()
        if not subscription:
            logger.warning(f"Membership card skipped, subscription {subscription_id} not found")
            return {"status": "skipped", "reason": "subscription_not_found"}

        user = subscription.user
        code = create_checkin_code(user.id, subscription.id)
        sent = email_service.send_membership_card(
            to_email=user.email,
            name=user.name,
            plan_name=subscription.plan.name,
            start_date=subscription.start_date,
            end_date=subscription.end_date,
            checkin_code=code,
        )

        until = subscription.end_date.isoformat() if subscription.end_date else "further notice"
        message = f"Your {subscription.plan.name} membership is active until {until}."
        if sent:
            message += " Your membership card with your check-in code was sent by email."
        else:
            message += " Ask the front desk for your check-in code."
        _write_notification(db, user, "Subscription Confirmed", message, "subscription")
        db.commit()

        return {"status": "sent" if sent else "fallback", "subscription_id": subscription_id}
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
