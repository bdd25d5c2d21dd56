"""
User management.

``/me`` routes are member self-service; the rest is for staff and admins.
``status`` can only change through the admin override endpoint or account
closure, both of which go through the membership status authority.
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy import or_
from sqlalchemy.orm import Session
from typing import Optional
from uuid import UUID
import logging

from core.database import get_db, run_in_transaction
from core.auth import get_current_user, require_admin, require_staff
from core.exceptions import NotFoundError, ValidationError, reject_nulls
from models import User
from schemas import (
    AccountDeletion,
    PasswordChange,
    ProfileUpdate,
    SubscriptionDetailResponse,
    UserResponse,
    UserStatusOverride,
    UserUpdate,
    dump,
    envelope,
)
from services import member_account
from services.membership_status import set_membership_status

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/users", tags=["users"])


def _get_user(db: Session, user_id: UUID) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFoundError("User", user_id)
    return user


# --- Self-service (declared before /{user_id}) ---

@router.get("/me")
def my_profile(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return envelope({
        "user": dump(UserResponse, current_user),
        "stats": member_account.get_profile_stats(db, current_user.id),
    })


@router.put("/me")
def update_my_profile(
    request: ProfileUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    user = member_account.update_profile(
        db, user_id=current_user.id, changes=request.model_dump(exclude_unset=True)
    )
    return envelope({"user": dump(UserResponse, user)}, message="Profile updated successfully")


@router.post("/me/change-password")
def change_my_password(
    request: PasswordChange,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    member_account.change_password(
        db,
        user_id=current_user.id,
        current_password=request.current_password,
        new_password=request.new_password,
        confirm_password=request.confirm_password,
    )
    return envelope(message="Password changed successfully")


@router.get("/me/subscriptions")
def my_subscription_history(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    subscriptions = member_account.subscription_history(db, user_id=current_user.id)
    return envelope({"subscriptions": [dump(SubscriptionDetailResponse, s) for s in subscriptions]})


@router.delete("/me")
def close_my_account(
    request: AccountDeletion,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    member_account.close_account(
        db, user_id=current_user.id, password=request.password, confirmation=request.confirmation
    )
    return envelope(message="Account has been deactivated successfully")


# --- Staff / admin ---

@router.get("")
def list_users(
    role: Optional[str] = None,
    status: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    _: User = Depends(require_staff),
):
    q = db.query(User)
    if role:
        q = q.filter(User.role == role)
    if status:
        q = q.filter(User.status == status)
    if search:
        pattern = f"%{search}%"
        q = q.filter(or_(User.name.ilike(pattern), User.email.ilike(pattern)))
    total = q.count()
    users = q.order_by(User.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
    return envelope({
        "users": [dump(UserResponse, u) for u in users],
        "pagination": {"page": page, "limit": limit, "total": total},
    })


@router.get("/{user_id}")
def get_user(user_id: UUID, db: Session = Depends(get_db), _: User = Depends(require_staff)):
    return envelope({"user": dump(UserResponse, _get_user(db, user_id))})


@router.put("/{user_id}")
def update_user(
    user_id: UUID,
    request: UserUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    changes = request.model_dump(exclude_unset=True)
    if not changes:
        raise ValidationError("No changes supplied")
    reject_nulls(changes, ("name", "role", "is_active"))

    def _apply() -> User:
        user = _get_user(db, user_id)
        for field, value in changes.items():
            setattr(user, field, value)
        return user

    user = run_in_transaction(db, _apply, label=f"User {user_id}")
    logger.info(f"User {user_id} updated by {admin.id}", extra={"extra_fields": {"fields": sorted(changes)}})
    return envelope({"user": dump(UserResponse, user)}, message="User updated")


@router.patch("/{user_id}/status")
def override_status(
    user_id: UUID,
    request: UserStatusOverride,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    """Admin override of a member's status (e.g. suspension)."""

    def _apply() -> User:
        user = (
            db.query(User)
            .filter(User.id == user_id)
            .populate_existing()
            .with_for_update()
            .first()
        )
        if not user:
            raise NotFoundError("User", user_id)
        set_membership_status(
            db,
            user,
            request.status,
            caused_by="admin_override",
            reason=request.reason or f"Set by admin {admin.id}",
        )
        return user

    user = run_in_transaction(db, _apply, label=f"User {user_id}")
    return envelope({"user": dump(UserResponse, user)}, message="Membership status updated")
