"""
Subscription plan catalog.

Plans are read by the subscription engine (price snapshot, duration). Editing
a plan never touches existing subscriptions; their ``amount`` was fixed at
request time.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, List
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.exceptions import ConflictError, NotFoundError, ValidationError, reject_nulls
from models import OPEN_SUBSCRIPTION_STATUSES, Subscription, SubscriptionPlan

logger = logging.getLogger(__name__)


def get_plan(db: Session, plan_id: UUID) -> SubscriptionPlan:
    plan = db.query(SubscriptionPlan).filter(SubscriptionPlan.id == plan_id).first()
    if not plan:
        raise NotFoundError("Subscription plan", plan_id)
    return plan


def list_plans(db: Session, *, active_only: bool = True) -> List[SubscriptionPlan]:
    q = db.query(SubscriptionPlan)
    if active_only:
        q = q.filter(SubscriptionPlan.is_active.is_(True))
    return q.order_by(SubscriptionPlan.price, SubscriptionPlan.name).all()


def _name_taken(db: Session, name: str, exclude_id: UUID = None) -> bool:
    q = db.query(SubscriptionPlan.id).filter(SubscriptionPlan.name == name)
    if exclude_id is not None:
        q = q.filter(SubscriptionPlan.id != exclude_id)
    return q.first() is not None


def _clean_features(features) -> List[str]:
    return [f.strip() for f in (features or []) if f and f.strip()]


def create_plan(db: Session, *, data: Dict[str, Any]) -> SubscriptionPlan:
    name = data["name"].strip()
    if _name_taken(db, name):
        raise ConflictError(f"A plan named '{name}' already exists")

    plan = SubscriptionPlan(
        name=name,
        description=data.get("description"),
        duration_months=data["duration_months"],
        price=Decimal(str(data["price"])),
        features=_clean_features(data.get("features")),
        is_active=data.get("is_active", True),
    )
    db.add(plan)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError(f"A plan named '{name}' already exists")
    logger.info(f"Subscription plan {plan.id} created: {plan.name}")
    return plan


def update_plan(db: Session, *, plan_id: UUID, changes: Dict[str, Any]) -> SubscriptionPlan:
    if not changes:
        raise ValidationError("No changes supplied")
    reject_nulls(changes, ("name", "duration_months", "price", "features", "is_active"))
    plan = get_plan(db, plan_id)

    if "name" in changes:
        name = changes["name"].strip()
        if _name_taken(db, name, exclude_id=plan.id):
            raise ConflictError(f"A plan named '{name}' already exists")
        plan.name = name
    if "description" in changes:
        plan.description = changes["description"]
    if "duration_months" in changes:
        plan.duration_months = changes["duration_months"]
    if "price" in changes:
        plan.price = Decimal(str(changes["price"]))
    if "features" in changes:
        plan.features = _clean_features(changes["features"])
    if "is_active" in changes:
        plan.is_active = changes["is_active"]

    db.commit()
    logger.info(f"Subscription plan {plan.id} updated", extra={"extra_fields": {"fields": sorted(changes)}})
    return plan


def delete_plan(db: Session, *, plan_id: UUID) -> str:
    """
    Remove a plan from the catalog. Returns "deleted" or "deactivated".

    A plan with open subscriptions cannot be removed; one with only
    historical subscriptions is deactivated so the history keeps its plan.
    """
    plan = get_plan(db, plan_id)
    in_use = (
        db.query(Subscription.id)
        .filter(
            Subscription.plan_id == plan.id,
            Subscription.confirmation_status.in_(OPEN_SUBSCRIPTION_STATUSES),
        )
        .first()
    )
    if in_use:
        raise ConflictError("Cannot delete a plan with pending or active subscriptions")

    referenced = db.query(Subscription.id).filter(Subscription.plan_id == plan.id).first()
    if referenced:
        plan.is_active = False
        outcome = "deactivated"
    else:
        db.delete(plan)
        outcome = "deleted"
    db.commit()
    logger.info(f"Subscription plan {plan_id} {outcome}")
    return outcome
