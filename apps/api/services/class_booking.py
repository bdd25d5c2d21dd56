"""
Class booking engine.

Registrants live in the class_registration table (one row per member per
class, unique on the pair). The class row carries ``registered_count`` and a
version column; every join and leave rewrites that row, so two bookings for
the last seat cannot both commit: one fails its version check and is retried
against the new count.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from core.database import run_in_transaction
from core.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
    reject_nulls,
)
from models import ClassRegistration, GymClass, User, STAFF_ROLES
from services import notification_service
from services.membership_status import has_gym_access

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    "name",
    "description",
    "coach_id",
    "duration_minutes",
    "schedule_time",
    "schedule_days",
    "price",
    "is_active",
)
# Fields an update may omit but not null out
REQUIRED_FIELDS = ("name", "duration_minutes", "schedule_days", "price", "is_active", "capacity", "status")


def derive_status(gym_class: GymClass, reopening: bool = False) -> str:
    if gym_class.status == "cancelled" and not reopening:
        return "cancelled"
    return "full" if gym_class.registered_count >= gym_class.capacity else "available"


def available_spots(gym_class: GymClass) -> int:
    return max(0, gym_class.capacity - gym_class.registered_count)


def is_registered(gym_class: GymClass, user_id: UUID) -> bool:
    return any(r.user_id == user_id for r in gym_class.registrations)


def can_join(gym_class: GymClass, user: User) -> bool:
    return (
        gym_class.is_active
        and not is_registered(gym_class, user.id)
        and gym_class.status == "available"
        and user.status == "active"
        and available_spots(gym_class) > 0
    )


def _lock_class(db: Session, class_id: UUID) -> GymClass:
    gym_class = (
        db.query(GymClass)
        .filter(GymClass.id == class_id)
        .populate_existing()
        .with_for_update()
        .first()
    )
    if not gym_class:
        raise NotFoundError("Class", class_id)
    return gym_class


def _find_registration(db: Session, class_id: UUID, user_id: UUID) -> Optional[ClassRegistration]:
    return (
        db.query(ClassRegistration)
        .filter(ClassRegistration.class_id == class_id, ClassRegistration.user_id == user_id)
        .first()
    )


def _validate_coach(db: Session, coach_id: Optional[UUID]) -> None:
    if coach_id is None:
        return
    coach = db.query(User).filter(User.id == coach_id).first()
    if not coach or coach.role not in ("coach", "admin"):
        raise ValidationError("coach_id must reference a coach", field="coach_id")


def _ensure_can_manage(gym_class: GymClass, actor: User) -> None:
    if actor.role in STAFF_ROLES:
        return
    if actor.role == "coach" and gym_class.coach_id == actor.id:
        return
    raise ForbiddenError("Only admins or the class coach can modify this class")


# --- Join / leave ---

def join_class(
    db: Session,
    *,
    class_id: UUID,
    user_id: UUID,
    booking_date: Optional[date] = None,
    notes: Optional[str] = None,
) -> GymClass:
    """
    Book a seat for a member.

    Raises:
        NotFoundError: unknown class or member.
        InvalidStateError: class inactive or cancelled.
        ForbiddenError: member has no active or frozen membership.
        ConflictError: already registered, or no seats left.
    """

    def _apply() -> GymClass:
        gym_class = _lock_class(db, class_id)
        if not gym_class.is_active:
            raise InvalidStateError("Class is not active")
        if gym_class.status == "cancelled":
            raise InvalidStateError("Class has been cancelled")

        user = db.query(User).filter(User.id == user_id).first()
        if not user:
            raise NotFoundError("User", user_id)
        if not has_gym_access(user):
            raise ForbiddenError("An active membership is required to join classes")

        if _find_registration(db, gym_class.id, user.id):
            raise ConflictError("You are already registered for this class")
        if gym_class.registered_count >= gym_class.capacity:
            raise ConflictError("Class is full")

        gym_class.registrations.append(
            ClassRegistration(
                user_id=user.id,
                name=user.name,
                email=user.email,
                registered_at=datetime.now(timezone.utc),
                booking_date=booking_date,
                notes=notes,
            )
        )
        gym_class.registered_count += 1
        gym_class.status = derive_status(gym_class)
        try:
            db.flush()
        except IntegrityError:
            # Same member booking twice from two sessions
            raise ConflictError("You are already registered for this class")
        return gym_class

    gym_class = run_in_transaction(db, _apply, label=f"Class {class_id}")
    logger.info(
        f"Member {user_id} joined class {class_id}",
        extra={
            "extra_fields": {
                "class_id": str(class_id),
                "user_id": str(user_id),
                "registered_count": gym_class.registered_count,
                "status": gym_class.status,
            }
        },
    )
    notification_service.notify(
        user_id,
        "Class Booking Confirmed",
        f"You are registered for {gym_class.name}.",
        "class",
    )
    return gym_class


def leave_class(
    db: Session,
    *,
    class_id: UUID,
    user_id: UUID,
    reason: Optional[str] = None,
) -> GymClass:
    def _apply() -> GymClass:
        gym_class = _lock_class(db, class_id)
        registration = _find_registration(db, gym_class.id, user_id)
        if not registration:
            raise ConflictError("You are not registered for this class")

        gym_class.registrations.remove(registration)
        gym_class.registered_count -= 1
        gym_class.status = derive_status(gym_class)
        return gym_class

    gym_class = run_in_transaction(db, _apply, label=f"Class {class_id}")
    logger.info(
        f"Member {user_id} left class {class_id}",
        extra={
            "extra_fields": {
                "class_id": str(class_id),
                "user_id": str(user_id),
                "reason": reason,
                "registered_count": gym_class.registered_count,
            }
        },
    )
    notification_service.notify(
        user_id,
        "Class Booking Cancelled",
        f"You have left {gym_class.name}." + (f" Reason: {reason}" if reason else ""),
        "class",
    )
    return gym_class


# --- Capacity and status ---

def _apply_capacity(gym_class: GymClass, new_capacity: int) -> None:
    if not 1 <= new_capacity <= 100:
        raise ValidationError("Capacity must be between 1 and 100", field="capacity")
    if new_capacity < gym_class.registered_count:
        raise ValidationError(
            f"Cannot reduce capacity below current registrations ({gym_class.registered_count})",
            field="capacity",
        )
    gym_class.capacity = new_capacity
    gym_class.status = derive_status(gym_class)


def update_capacity(db: Session, *, class_id: UUID, new_capacity: int) -> GymClass:
    def _apply() -> GymClass:
        gym_class = _lock_class(db, class_id)
        _apply_capacity(gym_class, new_capacity)
        return gym_class

    gym_class = run_in_transaction(db, _apply, label=f"Class {class_id}")
    logger.info(f"Class {class_id} capacity set to {new_capacity}")
    return gym_class


def update_class(
    db: Session,
    *,
    class_id: UUID,
    actor: User,
    changes: Dict[str, Any],
) -> GymClass:
    """
    Apply a partial update. Capacity goes through the same check as
    update_capacity; ``status`` accepts only "cancelled" or "available"
    (reopen, which re-derives full/available from the count).
    """
    if not changes:
        raise ValidationError("No changes supplied")
    reject_nulls(changes, REQUIRED_FIELDS)

    cancelled_now: List[UUID] = []

    def _apply() -> GymClass:
        cancelled_now.clear()
        gym_class = _lock_class(db, class_id)
        _ensure_can_manage(gym_class, actor)

        if "coach_id" in changes:
            if actor.role == "coach" and changes["coach_id"] != actor.id:
                raise ForbiddenError("Coaches cannot reassign their classes")
            _validate_coach(db, changes["coach_id"])

        for field in EDITABLE_FIELDS:
            if field in changes:
                value = changes[field]
                if field == "price":
                    value = Decimal(str(value))
                setattr(gym_class, field, value)

        if "capacity" in changes:
            _apply_capacity(gym_class, changes["capacity"])

        new_status = changes.get("status")
        if new_status == "cancelled" and gym_class.status != "cancelled":
            gym_class.status = "cancelled"
            cancelled_now.extend(r.user_id for r in gym_class.registrations)
        elif new_status == "available" and gym_class.status == "cancelled":
            gym_class.status = derive_status(gym_class, reopening=True)
        elif new_status is not None and new_status not in ("cancelled", "available"):
            raise ValidationError("status must be 'available' or 'cancelled'", field="status")
        return gym_class

    gym_class = run_in_transaction(db, _apply, label=f"Class {class_id}")
    logger.info(
        f"Class {class_id} updated by {actor.id}",
        extra={"extra_fields": {"class_id": str(class_id), "fields": sorted(changes)}},
    )
    if cancelled_now:
        notification_service.notify_many(
            cancelled_now,
            "Class Cancelled",
            f"{gym_class.name} has been cancelled.",
            "class",
        )
    return gym_class


def cancel_class(db: Session, *, class_id: UUID, actor: User) -> GymClass:
    return update_class(db, class_id=class_id, actor=actor, changes={"status": "cancelled"})


# --- CRUD / reads ---

def create_class(db: Session, *, actor: User, data: Dict[str, Any]) -> GymClass:
    coach_id = data.get("coach_id")
    if actor.role == "coach":
        # Coaches create classes for themselves
        coach_id = actor.id
    _validate_coach(db, coach_id)

    gym_class = GymClass(
        name=data["name"],
        description=data.get("description"),
        coach_id=coach_id,
        capacity=data.get("capacity", 20),
        duration_minutes=data.get("duration_minutes", 60),
        schedule_time=data.get("schedule_time"),
        schedule_days=data.get("schedule_days") or [],
        price=Decimal(str(data.get("price", 0))),
        status="available",
        is_active=True,
        registered_count=0,
    )
    db.add(gym_class)
    db.commit()
    logger.info(f"Class {gym_class.id} created by {actor.id}")
    return gym_class


def get_class(db: Session, class_id: UUID) -> GymClass:
    gym_class = (
        db.query(GymClass)
        .options(selectinload(GymClass.registrations))
        .filter(GymClass.id == class_id)
        .first()
    )
    if not gym_class:
        raise NotFoundError("Class", class_id)
    return gym_class


def delete_class(db: Session, *, class_id: UUID) -> None:
    gym_class = get_class(db, class_id)
    registrant_ids = [r.user_id for r in gym_class.registrations]
    name = gym_class.name
    db.delete(gym_class)
    db.commit()
    logger.info(f"Class {class_id} deleted")
    if registrant_ids:
        notification_service.notify_many(
            registrant_ids, "Class Removed", f"{name} is no longer on the schedule.", "class"
        )


def list_classes(
    db: Session,
    *,
    is_active: Optional[bool] = None,
    coach_id: Optional[UUID] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
) -> Tuple[List[GymClass], int]:
    q = db.query(GymClass)
    if is_active is not None:
        q = q.filter(GymClass.is_active.is_(is_active))
    if coach_id:
        q = q.filter(GymClass.coach_id == coach_id)
    if search:
        pattern = f"%{search}%"
        q = q.filter(or_(GymClass.name.ilike(pattern), GymClass.description.ilike(pattern)))
    total = q.count()
    rows = (
        q.options(selectinload(GymClass.registrations))
        .order_by(GymClass.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total


def list_joined_classes(db: Session, *, user_id: UUID) -> List[GymClass]:
    return (
        db.query(GymClass)
        .join(ClassRegistration, ClassRegistration.class_id == GymClass.id)
        .filter(ClassRegistration.user_id == user_id)
        .options(selectinload(GymClass.registrations))
        .order_by(GymClass.name)
        .all()
    )


def list_coached_classes(db: Session, *, coach_id: UUID) -> List[GymClass]:
    return (
        db.query(GymClass)
        .filter(GymClass.coach_id == coach_id)
        .options(selectinload(GymClass.registrations))
        .order_by(GymClass.name)
        .all()
    )


def list_participants(db: Session, *, class_id: UUID, actor: User) -> List[ClassRegistration]:
    gym_class = get_class(db, class_id)
    _ensure_can_manage(gym_class, actor)
    return list(gym_class.registrations)
