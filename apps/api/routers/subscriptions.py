"""
Subscription endpoints.

Members request and cancel their own subscriptions; staff confirm, reject,
freeze and unfreeze. All state changes go through services.subscription_lifecycle.
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Optional
from uuid import UUID

from core.database import get_db
from core.auth import get_current_user, require_staff
from models import User
from schemas import (
    SubscriptionCancel,
    SubscriptionConfirm,
    SubscriptionDetailResponse,
    SubscriptionFreeze,
    SubscriptionReject,
    SubscriptionRequest,
    SubscriptionResponse,
    dump,
    envelope,
)
from services import subscription_lifecycle as lifecycle

router = APIRouter(prefix="/v1/subscriptions", tags=["subscriptions"])


def _subscription(subscription) -> dict:
    return {"subscription": dump(SubscriptionResponse, subscription)}


# --- Member ---

@router.get("/my")
def my_subscriptions(
    include_rejected: bool = False,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    subscriptions = lifecycle.list_user_subscriptions(
        db, user_id=current_user.id, include_rejected=include_rejected
    )
    return envelope({"subscriptions": [dump(SubscriptionResponse, s) for s in subscriptions]})


@router.post("", status_code=status.HTTP_201_CREATED)
def request_subscription(
    request: SubscriptionRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    subscription = lifecycle.request_subscription(
        db,
        user_id=current_user.id,
        plan_id=request.plan_id,
        payment_method=request.payment_method,
        notes=request.notes,
    )
    return envelope(
        _subscription(subscription),
        message="Subscription request submitted. Awaiting staff confirmation.",
    )


@router.patch("/{subscription_id}/cancel")
def request_cancellation(
    subscription_id: UUID,
    request: SubscriptionCancel,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    subscription = lifecycle.request_cancellation(
        db, subscription_id=subscription_id, user_id=current_user.id, reason=request.reason
    )
    return envelope(_subscription(subscription), message="Cancellation request submitted")


# --- Staff ---

@router.get("")
def list_subscriptions(
    confirmation_status: Optional[str] = None,
    payment_status: Optional[str] = None,
    user_id: Optional[UUID] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    _: User = Depends(require_staff),
):
    subscriptions, total = lifecycle.list_subscriptions(
        db,
        confirmation_status=confirmation_status,
        payment_status=payment_status,
        user_id=user_id,
        page=page,
        limit=limit,
    )
    return envelope({
        "subscriptions": [dump(SubscriptionResponse, s) for s in subscriptions],
        "pagination": {"page": page, "limit": limit, "total": total},
    })


@router.get("/{subscription_id}")
def get_subscription(
    subscription_id: UUID,
    db: Session = Depends(get_db),
    _: User = Depends(require_staff),
):
    subscription = lifecycle.get_subscription(db, subscription_id)
    return envelope({"subscription": dump(SubscriptionDetailResponse, subscription)})


@router.patch("/{subscription_id}/confirm")
def confirm_subscription(
    subscription_id: UUID,
    request: SubscriptionConfirm,
    db: Session = Depends(get_db),
    staff: User = Depends(require_staff),
):
    subscription = lifecycle.confirm_subscription(
        db,
        subscription_id=subscription_id,
        staff_user_id=staff.id,
        payment_status=request.payment_status,
        start_date=request.start_date,
        notes=request.notes,
    )
    return envelope(_subscription(subscription), message="Subscription confirmed")


@router.patch("/{subscription_id}/reject")
def reject_subscription(
    subscription_id: UUID,
    request: SubscriptionReject,
    db: Session = Depends(get_db),
    staff: User = Depends(require_staff),
):
    subscription = lifecycle.reject_subscription(
        db, subscription_id=subscription_id, staff_user_id=staff.id, reason=request.reason
    )
    return envelope(_subscription(subscription), message="Subscription rejected")


@router.patch("/{subscription_id}/freeze")
def freeze_subscription(
    subscription_id: UUID,
    request: SubscriptionFreeze,
    db: Session = Depends(get_db),
    staff: User = Depends(require_staff),
):
    subscription = lifecycle.freeze_subscription(
        db,
        subscription_id=subscription_id,
        staff_user_id=staff.id,
        frozen_until=request.frozen_until,
        reason=request.reason,
    )
    return envelope(_subscription(subscription), message="Subscription frozen")


@router.patch("/{subscription_id}/unfreeze")
def unfreeze_subscription(
    subscription_id: UUID,
    db: Session = Depends(get_db),
    staff: User = Depends(require_staff),
):
    subscription = lifecycle.unfreeze_subscription(
        db, subscription_id=subscription_id, staff_user_id=staff.id
    )
    return envelope(_subscription(subscription), message="Subscription unfrozen")
