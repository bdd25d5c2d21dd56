"""
Member self-service: profile, password, subscription history and account closure.

Closing an account does not delete rows. The member is suspended through
services.membership_status, deactivated, and their email is freed for reuse.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from core.database import run_in_transaction
from core.exceptions import NotFoundError, ValidationError, reject_nulls
from core.security import get_password_hash, verify_password
from models import Attendance, ClassRegistration, Subscription, User
from services import notification_service
from services.membership_status import set_membership_status

logger = logging.getLogger(__name__)

DELETE_CONFIRMATION = "DELETE"


def _lock_user(db: Session, user_id: UUID) -> User:
    user = (
        db.query(User)
        .filter(User.id == user_id)
        .populate_existing()
        .with_for_update()
        .first()
    )
    if not user:
        raise NotFoundError("User", user_id)
    return user


def _check_password(user: User, password: str, field: str) -> None:
    if not user.password_hash or not verify_password(password, user.password_hash):
        raise ValidationError("Current password is incorrect", field=field)


def get_profile_stats(db: Session, user_id: UUID) -> Dict[str, int]:
    check_ins = db.query(func.count(Attendance.id)).filter(Attendance.user_id == user_id).scalar()
    classes = (
        db.query(func.count(ClassRegistration.id)).filter(ClassRegistration.user_id == user_id).scalar()
    )
    return {"total_check_ins": check_ins or 0, "classes_joined": classes or 0}


def update_profile(db: Session, *, user_id: UUID, changes: Dict[str, Any]) -> User:
    """Members may change their name and phone number; nothing else."""
    if not changes:
        raise ValidationError("No changes supplied")
    reject_nulls(changes, ("name",))
    if "name" in changes:
        name = changes["name"].strip()
        if len(name) < 2:
            raise ValidationError("Name must be at least 2 characters long", field="name")
        changes = {**changes, "name": name}

    def _apply() -> User:
        user = _lock_user(db, user_id)
        if "name" in changes:
            user.name = changes["name"]
        if "phone" in changes:
            user.phone = changes["phone"]
        return user

    user = run_in_transaction(db, _apply, label=f"User {user_id}")
    logger.info(f"Profile updated for {user_id}", extra={"extra_fields": {"fields": sorted(changes)}})
    notification_service.notify(
        user.id, "Profile Updated", "Your profile has been successfully updated.", "general"
    )
    return user


def change_password(
    db: Session,
    *,
    user_id: UUID,
    current_password: str,
    new_password: str,
    confirm_password: str,
) -> None:
    if new_password != confirm_password:
        raise ValidationError("New password and confirmation do not match", field="confirm_password")

    def _apply() -> User:
        user = _lock_user(db, user_id)
        _check_password(user, current_password, "current_password")
        user.password_hash = get_password_hash(new_password)
        return user

    run_in_transaction(db, _apply, label=f"User {user_id}")
    logger.info(f"Password changed for {user_id}")
    notification_service.notify(
        user_id, "Password Changed", "Your password has been successfully updated.", "general"
    )


def subscription_history(db: Session, *, user_id: UUID) -> List[Subscription]:
    """Every subscription the member ever requested, newest first, with its audit trail."""
    return (
        db.query(Subscription)
        .options(selectinload(Subscription.plan), selectinload(Subscription.audit_entries))
        .filter(Subscription.user_id == user_id)
        .order_by(Subscription.created_at.desc())
        .all()
    )


def close_account(
    db: Session,
    *,
    user_id: UUID,
    password: str,
    confirmation: Optional[str],
) -> User:
    if confirmation != DELETE_CONFIRMATION:
        raise ValidationError(
            f'Type "{DELETE_CONFIRMATION}" to confirm account deletion', field="confirmation"
        )

    def _apply() -> User:
        user = _lock_user(db, user_id)
        _check_password(user, password, "password")
        stamp = int(datetime.now(timezone.utc).timestamp())
        user.email = f"deleted_{stamp}_{user.email}"
        user.is_active = False
        set_membership_status(db, user, "suspended", caused_by="account_closed", reason="Closed by member")
        return user

    user = run_in_transaction(db, _apply, label=f"User {user_id}")
    logger.info(f"Account closed by member {user_id}")
    return user
