"""
Dashboard rollups for staff and admins.

Plain aggregate queries; cached briefly in Redis when it is reachable.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from sqlalchemy import func
from sqlalchemy.orm import Session

from core.cache import cached_json
from core.config import settings
from models import Attendance, GymClass, Subscription, User

logger = logging.getLogger(__name__)

DASHBOARD_CACHE_KEY = "dashboard:summary"


def _counts(db: Session, column) -> Dict[str, int]:
    return {key: count for key, count in db.query(column, func.count()).group_by(column).all()}


def build_summary(db: Session) -> Dict[str, Any]:
    revenue = (
        db.query(func.coalesce(func.sum(Subscription.amount), 0))
        .filter(
            Subscription.confirmation_status.in_(("confirmed", "expired")),
            Subscription.payment_status == "paid",
        )
        .scalar()
    )
    classes = db.query(GymClass).filter(GymClass.is_active.is_(True)).order_by(GymClass.name).all()
    checked_in = (
        db.query(func.count(Attendance.id)).filter(Attendance.check_out_time.is_(None)).scalar() or 0
    )
    subscriptions_by_status = _counts(db, Subscription.confirmation_status)

    return {
        "users_by_status": _counts(db, User.status),
        "users_by_role": _counts(db, User.role),
        "subscriptions_by_status": subscriptions_by_status,
        "pending_requests": subscriptions_by_status.get("pending", 0),
        "revenue": float(revenue or 0),
        "class_fill": [
            {
                "class_id": str(c.id),
                "name": c.name,
                "registered_count": c.registered_count,
                "capacity": c.capacity,
                "status": c.status,
            }
            for c in classes
        ],
        "currently_checked_in": checked_in,
    }


def get_summary(db: Session) -> Dict[str, Any]:
    return cached_json(DASHBOARD_CACHE_KEY, settings.DASHBOARD_CACHE_TTL_S, lambda: build_summary(db))
