"""
Membership status authority.

``User.status`` is derived from the member's subscription. This module is its
only writer; the subscription engine, the expiry sweep and the admin override
endpoint all go through ``set_membership_status``.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.orm import Session

from core.exceptions import ValidationError
from models import User, USER_STATUSES

logger = logging.getLogger(__name__)

# Statuses that let a member use the gym (check in, book classes)
ACCESS_STATUSES = ("active", "frozen")


def set_membership_status(
    db: Session,
    user: User,
    status: str,
    *,
    caused_by: str,
    reason: Optional[str] = None,
) -> bool:
    """
    Move ``user`` to ``status``. Returns False when nothing changed.

    The caller owns the transaction; the user row's version is bumped on
    flush, so a concurrent writer of the same member fails its version check.
    """
    if status not in USER_STATUSES:
        raise ValidationError(f"Unknown membership status: {status}", field="status")

    old_status = user.status
    if old_status == status:
        return False

    user.status = status
    db.add(user)
    logger.info(
        "Membership status changed",
        extra={
            "extra_fields": {
                "user_id": str(user.id),
                "old_status": old_status,
                "new_status": status,
                "caused_by": caused_by,
                "reason": reason,
            }
        },
    )
    return True


def has_gym_access(user: User) -> bool:
    return user.status in ACCESS_STATUSES
