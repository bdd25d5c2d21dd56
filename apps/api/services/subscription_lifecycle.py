"""
Subscription lifecycle engine.

Owns every Subscription state change and, through services.membership_status,
the member's derived status:

    pending -> confirmed | rejected
    confirmed -> (frozen <-> unfrozen) -> expired

Each transition runs inside core.database.run_in_transaction: the rows it
touches are read FOR UPDATE and carry a version column, so a racing writer
either waits (PostgreSQL) or fails its version check and is retried. The
audit entry is written in the same transaction as the change it describes.
Notifications are queued only after the commit.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional, Tuple
from uuid import UUID

from dateutil.relativedelta import relativedelta
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from core.config import settings
from core.database import run_in_transaction
from core.exceptions import ConflictError, InvalidStateError, NotFoundError, ValidationError
from models import (
    OPEN_SUBSCRIPTION_STATUSES,
    PAYMENT_METHODS,
    PAYMENT_STATUSES,
    Subscription,
    SubscriptionAuditEntry,
    SubscriptionPlan,
    User,
)
from services import notification_service
from services.membership_status import set_membership_status

logger = logging.getLogger(__name__)

DUPLICATE_SUBSCRIPTION_MESSAGE = "You already have an active or pending subscription"


def add_calendar_months(start: date, months: int) -> date:
    """
    Calendar-month arithmetic; the day is clamped to the end of short months.

    >>> add_calendar_months(date(2024, 1, 31), 1)
    datetime.date(2024, 2, 29)
    """
    return start + relativedelta(months=months)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _today() -> date:
    return _now().date()


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _append_note(existing: Optional[str], line: str) -> str:
    return line if not existing else f"{existing}\n{line}"


def _lock_subscription(db: Session, subscription_id: UUID) -> Subscription:
    subscription = (
        db.query(Subscription)
        .filter(Subscription.id == subscription_id)
        .populate_existing()
        .with_for_update()
        .first()
    )
    if not subscription:
        raise NotFoundError("Subscription", subscription_id)
    return subscription


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


def _log_transition(subscription: Subscription, actor: Optional[UUID], old: Optional[str], new: str) -> None:
    logger.info(
        f"Subscription {subscription.id}: {old} -> {new}",
        extra={
            "extra_fields": {
                "subscription_id": str(subscription.id),
                "user_id": str(subscription.user_id),
                "actor_id": str(actor) if actor else None,
                "old_status": old,
                "new_status": new,
            }
        },
    )


def audit_subscription(
    db: Session,
    *,
    subscription: Subscription,
    action: str,
    performed_by: Optional[UUID],
    old_status: Optional[str],
    new_status: Optional[str],
    notes: Optional[str] = None,
) -> SubscriptionAuditEntry:
    """
    Append the next audit entry for ``subscription``.

    ``performed_by`` is None for system actions (the expiry sweep). The
    timestamp is nudged forward if the clock would put it before the
    previous entry.
    """
    last = (
        db.query(SubscriptionAuditEntry)
        .filter(SubscriptionAuditEntry.subscription_id == subscription.id)
        .order_by(SubscriptionAuditEntry.sequence.desc())
        .first()
    )
    created_at = _now()
    if last is not None:
        previous = _as_utc(last.created_at)
        if created_at <= previous:
            created_at = previous + timedelta(microseconds=1)

    entry = SubscriptionAuditEntry(
        subscription_id=subscription.id,
        sequence=1 if last is None else last.sequence + 1,
        action=action,
        performed_by=performed_by,
        old_status=old_status,
        new_status=new_status,
        notes=notes,
        created_at=created_at,
    )
    db.add(entry)
    return entry


# --- Transitions ---

def request_subscription(
    db: Session,
    *,
    user_id: UUID,
    plan_id: UUID,
    payment_method: str,
    notes: Optional[str] = None,
) -> Subscription:
    """
    Member selects a plan. Creates a pending subscription priced at the
    plan's current price.

    Raises:
        NotFoundError: unknown plan.
        InvalidStateError: plan is inactive.
        ConflictError: the member already has a pending or confirmed subscription.
    """
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(
            f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}",
            field="payment_method",
        )

    def _apply() -> Tuple[Subscription, User, SubscriptionPlan]:
        user = _lock_user(db, user_id)
        plan = db.query(SubscriptionPlan).filter(SubscriptionPlan.id == plan_id).first()
        if not plan:
            raise NotFoundError("Subscription plan", plan_id)
        if not plan.is_active:
            raise InvalidStateError("This subscription plan is no longer available")

        existing = (
            db.query(Subscription.id)
            .filter(
                Subscription.user_id == user.id,
                Subscription.confirmation_status.in_(OPEN_SUBSCRIPTION_STATUSES),
            )
            .first()
        )
        if existing:
            raise ConflictError(DUPLICATE_SUBSCRIPTION_MESSAGE)

        subscription = Subscription(
            user_id=user.id,
            plan_id=plan.id,
            payment_method=payment_method,
            payment_status="pending",
            confirmation_status="pending",
            amount=plan.price,
            notes=notes,
        )
        db.add(subscription)
        try:
            db.flush()
        except IntegrityError:
            # A concurrent request for the same member won the partial unique index
            raise ConflictError(DUPLICATE_SUBSCRIPTION_MESSAGE)

        set_membership_status(db, user, "pending_subscription", caused_by="subscription_requested")
        audit_subscription(
            db,
            subscription=subscription,
            action="created",
            performed_by=user.id,
            old_status=None,
            new_status="pending",
            notes=f"User selected {plan.name} plan",
        )
        return subscription, user, plan

    subscription, user, plan = run_in_transaction(
        db, _apply, label=f"Subscription request for user {user_id}"
    )
    _log_transition(subscription, user.id, None, "pending")

    notification_service.notify(
        user.id,
        "Subscription Request Received",
        f"Your request for the {plan.name} plan was received and is awaiting confirmation.",
        "subscription",
    )
    notification_service.notify_staff(
        db,
        "New Subscription Request",
        f"{user.name} requested the {plan.name} plan (payment: {payment_method}).",
        "subscription",
    )
    return subscription


def confirm_subscription(
    db: Session,
    *,
    subscription_id: UUID,
    staff_user_id: UUID,
    payment_status: str = "paid",
    start_date: Optional[date] = None,
    notes: Optional[str] = None,
) -> Subscription:
    """Staff accepts a pending request; the member becomes active."""
    if payment_status not in PAYMENT_STATUSES:
        raise ValidationError(
            f"payment_status must be one of: {', '.join(PAYMENT_STATUSES)}",
            field="payment_status",
        )

    def _apply() -> Subscription:
        subscription = _lock_subscription(db, subscription_id)
        if subscription.confirmation_status != "pending":
            raise InvalidStateError(
                f"Cannot confirm subscription with status: {subscription.confirmation_status}"
            )
        user = _lock_user(db, subscription.user_id)

        start = start_date or _today()
        subscription.start_date = start
        subscription.end_date = add_calendar_months(start, subscription.plan.duration_months)
        subscription.confirmation_status = "confirmed"
        subscription.payment_status = payment_status
        subscription.confirmed_by = staff_user_id
        if notes:
            subscription.notes = _append_note(subscription.notes, f"[CONFIRMED] {notes}")

        set_membership_status(db, user, "active", caused_by="subscription_confirmed")
        audit_subscription(
            db,
            subscription=subscription,
            action="confirmed",
            performed_by=staff_user_id,
            old_status="pending",
            new_status="confirmed",
            notes=notes or "Subscription confirmed by employee",
        )
        return subscription

    subscription = run_in_transaction(db, _apply, label=f"Subscription {subscription_id}")
    _log_transition(subscription, staff_user_id, "pending", "confirmed")

    notification_service.send_membership_card(subscription.id)
    return subscription


def reject_subscription(
    db: Session,
    *,
    subscription_id: UUID,
    staff_user_id: UUID,
    reason: Optional[str] = None,
) -> Subscription:
    """Staff declines a pending request; the member may ask again."""

    def _apply() -> Subscription:
        subscription = _lock_subscription(db, subscription_id)
        if subscription.confirmation_status != "pending":
            raise InvalidStateError(
                f"Cannot reject subscription with status: {subscription.confirmation_status}"
            )
        user = _lock_user(db, subscription.user_id)

        subscription.confirmation_status = "rejected"
        subscription.confirmed_by = staff_user_id
        if reason:
            subscription.notes = _append_note(subscription.notes, f"[REJECTED] {reason}")

        set_membership_status(db, user, "pending_subscription", caused_by="subscription_rejected")
        audit_subscription(
            db,
            subscription=subscription,
            action="rejected",
            performed_by=staff_user_id,
            old_status="pending",
            new_status="rejected",
            notes=reason or "Subscription rejected by employee",
        )
        return subscription

    subscription = run_in_transaction(db, _apply, label=f"Subscription {subscription_id}")
    _log_transition(subscription, staff_user_id, "pending", "rejected")

    message = "Your subscription request was not approved."
    if reason:
        message = f"{message} Reason: {reason}"
    notification_service.notify(
        subscription.user_id, "Subscription Request Rejected", message, "subscription"
    )
    return subscription


def freeze_subscription(
    db: Session,
    *,
    subscription_id: UUID,
    staff_user_id: UUID,
    frozen_until: Optional[date] = None,
    reason: Optional[str] = None,
) -> Subscription:
    """Pause a confirmed membership. The subscription stays confirmed; the member becomes frozen."""
    if frozen_until is not None and frozen_until < _today():
        raise ValidationError("frozen_until cannot be in the past", field="frozen_until")

    def _apply() -> Subscription:
        subscription = _lock_subscription(db, subscription_id)
        if subscription.confirmation_status != "confirmed":
            raise InvalidStateError("Can only freeze confirmed subscriptions")
        if subscription.is_frozen:
            raise InvalidStateError("Subscription is already frozen")
        user = _lock_user(db, subscription.user_id)

        subscription.frozen_until = frozen_until
        subscription.frozen_reason = reason or "Subscription frozen by employee"

        set_membership_status(db, user, "frozen", caused_by="subscription_frozen", reason=reason)
        audit_subscription(
            db,
            subscription=subscription,
            action="frozen",
            performed_by=staff_user_id,
            old_status="confirmed",
            new_status="frozen",
            notes=subscription.frozen_reason,
        )
        return subscription

    subscription = run_in_transaction(db, _apply, label=f"Subscription {subscription_id}")
    _log_transition(subscription, staff_user_id, "confirmed", "frozen")

    until = f" until {frozen_until.isoformat()}" if frozen_until else ""
    notification_service.notify(
        subscription.user_id,
        "Subscription Frozen",
        f"Your membership has been frozen{until}. Reason: {subscription.frozen_reason}",
        "subscription",
    )
    return subscription


def unfreeze_subscription(
    db: Session,
    *,
    subscription_id: UUID,
    staff_user_id: UUID,
) -> Subscription:
    def _apply() -> Subscription:
        subscription = _lock_subscription(db, subscription_id)
        if subscription.confirmation_status != "confirmed" or not subscription.is_frozen:
            raise InvalidStateError("Subscription is not frozen")
        user = _lock_user(db, subscription.user_id)

        subscription.frozen_until = None
        subscription.frozen_reason = None

        set_membership_status(db, user, "active", caused_by="subscription_unfrozen")
        audit_subscription(
            db,
            subscription=subscription,
            action="unfrozen",
            performed_by=staff_user_id,
            old_status="frozen",
            new_status="confirmed",
            notes="Subscription unfrozen by employee",
        )
        return subscription

    subscription = run_in_transaction(db, _apply, label=f"Subscription {subscription_id}")
    _log_transition(subscription, staff_user_id, "frozen", "confirmed")

    notification_service.notify(
        subscription.user_id,
        "Subscription Reactivated",
        "Your membership is active again. Welcome back!",
        "subscription",
    )
    return subscription


def request_cancellation(
    db: Session,
    *,
    subscription_id: UUID,
    user_id: UUID,
    reason: Optional[str] = None,
) -> Subscription:
    """
    Member asks to cancel. Only annotates the subscription and tells staff;
    confirmation_status is left as is.
    """
    def _apply() -> Subscription:
        subscription = _lock_subscription(db, subscription_id)
        if subscription.user_id != user_id:
            raise NotFoundError("Subscription", detail="Subscription not found or unauthorized")
        if subscription.confirmation_status != "confirmed":
            raise InvalidStateError("Can only cancel confirmed subscriptions")

        requested_at = _now().isoformat()
        subscription.notes = _append_note(
            subscription.notes,
            f"[CANCELLATION REQUESTED] {reason or 'No reason given'} ({requested_at})",
        )
        audit_subscription(
            db,
            subscription=subscription,
            action="modified",
            performed_by=user_id,
            old_status="confirmed",
            new_status="cancellation_requested",
            notes=reason or "Cancellation requested by member",
        )
        return subscription

    subscription = run_in_transaction(db, _apply, label=f"Subscription {subscription_id}")
    _log_transition(subscription, user_id, "confirmed", "cancellation_requested")

    notification_service.notify(
        user_id,
        "Cancellation Request Received",
        "Your cancellation request was sent to our staff.",
        "subscription",
    )
    notification_service.notify_staff(
        db,
        "Cancellation Requested",
        f"{subscription.user.name} asked to cancel their subscription ({subscription.plan.name})."
        + (f" Reason: {reason}" if reason else ""),
        "subscription",
    )
    return subscription


# --- Expiry sweep ---

def expire_subscription(db: Session, *, subscription_id: UUID, today: Optional[date] = None) -> bool:
    """
    Close one lapsed subscription. Returns False if it no longer qualifies
    (renewed, frozen or already handled by another worker).
    """
    today = today or _today()

    def _apply() -> bool:
        subscription = _lock_subscription(db, subscription_id)
        if (
            subscription.confirmation_status != "confirmed"
            or subscription.is_frozen
            or subscription.end_date is None
            or subscription.end_date >= today
        ):
            return False
        user = _lock_user(db, subscription.user_id)

        subscription.confirmation_status = "expired"
        set_membership_status(db, user, "expired", caused_by="subscription_expired")
        audit_subscription(
            db,
            subscription=subscription,
            action="modified",
            performed_by=None,
            old_status="confirmed",
            new_status="expired",
            notes=f"Membership ended on {subscription.end_date.isoformat()}",
        )
        return True

    expired = run_in_transaction(db, _apply, label=f"Subscription {subscription_id}")
    if expired:
        subscription = db.get(Subscription, subscription_id)
        _log_transition(subscription, None, "confirmed", "expired")
        notification_service.notify(
            subscription.user_id,
            "Subscription Expired",
            "Your gym membership has expired. Please renew your subscription to continue accessing the gym.",
            "subscription",
            send_email=True,
        )
    return expired


def expire_due_subscriptions(db: Session, *, today: Optional[date] = None) -> int:
    today = today or _today()
    due_ids = [
        row.id
        for row in db.query(Subscription.id)
        .filter(
            Subscription.confirmation_status == "confirmed",
            Subscription.end_date < today,
            Subscription.frozen_until.is_(None),
            Subscription.frozen_reason.is_(None),
        )
        .all()
    ]

    expired = 0
    for subscription_id in due_ids:
        try:
            if expire_subscription(db, subscription_id=subscription_id, today=today):
                expired += 1
        except ConflictError:
            logger.warning(f"Skipping subscription {subscription_id}: kept changing during expiry")
    return expired


def warn_expiring_subscriptions(db: Session, *, today: Optional[date] = None) -> int:
    """Notify members whose membership ends exactly EXPIRY_WARNING_DAYS from today (once per run day)."""
    today = today or _today()
    target = today + timedelta(days=settings.EXPIRY_WARNING_DAYS)
    expiring = (
        db.query(Subscription)
        .filter(
            Subscription.confirmation_status == "confirmed",
            Subscription.end_date == target,
            Subscription.frozen_until.is_(None),
            Subscription.frozen_reason.is_(None),
        )
        .all()
    )
    for subscription in expiring:
        notification_service.notify(
            subscription.user_id,
            "Subscription Expiring Soon",
            f"Your subscription will expire in {settings.EXPIRY_WARNING_DAYS} days. "
            "Renew now to continue enjoying our facilities without interruption.",
            "subscription",
            send_email=True,
        )
    return len(expiring)


# --- Reads ---

def get_subscription(db: Session, subscription_id: UUID) -> Subscription:
    subscription = (
        db.query(Subscription)
        .options(
            joinedload(Subscription.plan),
            joinedload(Subscription.user),
            joinedload(Subscription.audit_entries),
        )
        .filter(Subscription.id == subscription_id)
        .first()
    )
    if not subscription:
        raise NotFoundError("Subscription", subscription_id)
    return subscription


def list_user_subscriptions(
    db: Session,
    *,
    user_id: UUID,
    include_rejected: bool = False,
) -> List[Subscription]:
    q = (
        db.query(Subscription)
        .options(joinedload(Subscription.plan))
        .filter(Subscription.user_id == user_id)
    )
    if not include_rejected:
        q = q.filter(Subscription.confirmation_status != "rejected")
    return q.order_by(Subscription.created_at.desc()).all()


def list_subscriptions(
    db: Session,
    *,
    confirmation_status: Optional[str] = None,
    payment_status: Optional[str] = None,
    user_id: Optional[UUID] = None,
    page: int = 1,
    limit: int = 20,
) -> Tuple[List[Subscription], int]:
    q = db.query(Subscription)
    if confirmation_status:
        q = q.filter(Subscription.confirmation_status == confirmation_status)
    if payment_status:
        q = q.filter(Subscription.payment_status == payment_status)
    if user_id:
        q = q.filter(Subscription.user_id == user_id)
    total = q.count()
    rows = (
        q.options(joinedload(Subscription.plan))
        .order_by(Subscription.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total
