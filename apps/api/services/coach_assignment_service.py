from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.exceptions import ConflictError, InvalidStateError, NotFoundError, ValidationError
from models import CoachAssignment, User
from services import notification_service

logger = logging.getLogger(__name__)


def assign_member(
    db: Session,
    *,
    coach_id: UUID,
    user_id: UUID,
    assigned_by: UUID,
    notes: Optional[str] = None,
) -> CoachAssignment:
    coach = db.query(User).filter(User.id == coach_id).first()
    if not coach:
        raise NotFoundError("Coach", coach_id)
    if coach.role not in ("coach", "admin"):
        raise ValidationError("Assigned user is not a coach", field="coach_id")
    member = db.query(User).filter(User.id == user_id).first()
    if not member:
        raise NotFoundError("User", user_id)

    existing = (
        db.query(CoachAssignment.id)
        .filter(
            CoachAssignment.coach_id == coach_id,
            CoachAssignment.user_id == user_id,
            CoachAssignment.is_active.is_(True),
        )
        .first()
    )
    if existing:
        raise ConflictError("Member is already assigned to this coach")

    assignment = CoachAssignment(
        coach_id=coach_id,
        user_id=user_id,
        assigned_by=assigned_by,
        notes=notes,
        assigned_at=datetime.now(timezone.utc),
    )
    db.add(assignment)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Member is already assigned to this coach")

    logger.info(f"Member {user_id} assigned to coach {coach_id}")
    notification_service.notify(
        user_id, "Coach Assigned", f"{coach.name} is now your coach.", "general"
    )
    notification_service.notify(
        coach_id, "New Member Assigned", f"{member.name} has been assigned to you.", "general"
    )
    return assignment


def end_assignment(db: Session, *, assignment_id: UUID) -> CoachAssignment:
    assignment = db.query(CoachAssignment).filter(CoachAssignment.id == assignment_id).first()
    if not assignment:
        raise NotFoundError("Coach assignment", assignment_id)
    if not assignment.is_active:
        raise InvalidStateError("Coach assignment has already ended")

    assignment.is_active = False
    assignment.ended_at = datetime.now(timezone.utc)
    db.commit()
    logger.info(f"Coach assignment {assignment_id} ended")
    return assignment


def list_for_coach(db: Session, *, coach_id: UUID) -> List[CoachAssignment]:
    return (
        db.query(CoachAssignment)
        .filter(CoachAssignment.coach_id == coach_id, CoachAssignment.is_active.is_(True))
        .order_by(CoachAssignment.assigned_at.desc())
        .all()
    )


def list_for_member(db: Session, *, user_id: UUID) -> List[CoachAssignment]:
    return (
        db.query(CoachAssignment)
        .filter(CoachAssignment.user_id == user_id, CoachAssignment.is_active.is_(True))
        .order_by(CoachAssignment.assigned_at.desc())
        .all()
    )


def list_all(db: Session, *, active_only: bool = True) -> List[CoachAssignment]:
    q = db.query(CoachAssignment)
    if active_only:
        q = q.filter(CoachAssignment.is_active.is_(True))
    return q.order_by(CoachAssignment.assigned_at.desc()).all()
