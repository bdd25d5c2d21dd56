"""
Front-desk attendance: check members in and out.

A member may have at most one open visit (partial unique index on
attendance.user_id where check_out_time is null).
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from core.exceptions import ConflictError, InvalidStateError, NotFoundError, ValidationError
from core.security import decode_checkin_code
from models import Attendance, User
from services.membership_status import has_gym_access

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def resolve_member(db: Session, *, user_id: Optional[UUID] = None, checkin_code: Optional[str] = None) -> User:
    """Find the member by id or by the code on their membership card."""
    if checkin_code:
        user_id = decode_checkin_code(checkin_code)
        if user_id is None:
            raise ValidationError("Invalid or expired check-in code", field="checkin_code")
    if user_id is None:
        raise ValidationError("user_id or checkin_code is required")

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFoundError("User", user_id)
    return user


def open_visit(db: Session, user_id: UUID) -> Optional[Attendance]:
    return (
        db.query(Attendance)
        .filter(Attendance.user_id == user_id, Attendance.check_out_time.is_(None))
        .first()
    )


def check_in(
    db: Session,
    *,
    user: User,
    recorded_by: Optional[UUID],
    notes: Optional[str] = None,
) -> Attendance:
    if not has_gym_access(user):
        raise InvalidStateError(f"Member cannot check in with membership status: {user.status}")
    if open_visit(db, user.id):
        raise ConflictError("Member is already checked in")

    visit = Attendance(
        user_id=user.id,
        recorded_by=recorded_by,
        check_in_time=datetime.now(timezone.utc),
        notes=notes,
    )
    db.add(visit)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Member is already checked in")

    logger.info(f"Member {user.id} checked in", extra={"extra_fields": {"attendance_id": str(visit.id)}})
    return visit


def check_out(db: Session, *, user_id: UUID) -> Tuple[Attendance, int]:
    """Close the member's open visit. Returns the visit and its length in minutes."""
    visit = open_visit(db, user_id)
    if not visit:
        raise NotFoundError("Open check-in for user", user_id)

    visit.check_out_time = datetime.now(timezone.utc)
    db.commit()

    minutes = int((_as_utc(visit.check_out_time) - _as_utc(visit.check_in_time)).total_seconds() // 60)
    logger.info(f"Member {user_id} checked out after {minutes} min")
    return visit, minutes


def list_history(
    db: Session,
    *,
    user_id: Optional[UUID] = None,
    page: int = 1,
    limit: int = 20,
) -> Tuple[List[Attendance], int]:
    q = db.query(Attendance)
    if user_id:
        q = q.filter(Attendance.user_id == user_id)
    total = q.count()
    rows = (
        q.order_by(Attendance.check_in_time.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total


def list_checked_in(db: Session) -> List[Attendance]:
    return (
        db.query(Attendance)
        .options(joinedload(Attendance.user))
        .filter(Attendance.check_out_time.is_(None))
        .order_by(Attendance.check_in_time)
        .all()
    )
