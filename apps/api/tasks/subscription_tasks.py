"""
Scheduled Subscription Tasks

Daily expiry sweep, run via Celery Beat (see celerybeat_schedule.py).
"""

from datetime import date
from typing import Dict, Optional
from celery import Task
from core.database import get_db_sync
from tasks import celery_app
from services.subscription_lifecycle import expire_due_subscriptions, warn_expiring_subscriptions
import logging

logger = logging.getLogger(__name__)


@celery_app.task(name="tasks.expire_subscriptions", bind=True)
def expire_subscriptions(self: Task, today: Optional[str] = None) -> Dict:
    """
    Expire lapsed memberships and warn members whose membership ends soon.

    ``today`` (ISO date) is only passed when replaying a missed day.
    """
    run_date = date.fromisoformat(today) if today else None
    db = get_db_sync()
    try:
        expired = expire_due_subscriptions(db, today=run_date)
        warned = warn_expiring_subscriptions(db, today=run_date)
        logger.info(
            f"Expiry sweep done: {expired} expired, {warned} warned",
            extra={"extra_fields": {"expired": expired, "warned": warned}},
        )
        return {"status": "success", "expired": expired, "warned": warned}
    except Exception as e:
        logger.error(f"Expiry sweep failed: {e}", exc_info=True)
        db.rollback()
        raise
    finally:
        db.close()
