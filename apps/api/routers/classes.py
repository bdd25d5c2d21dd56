"""
Class schedule and booking endpoints.

Every class payload carries ``registered_users``, ``registered_count`` and
``available_spots``.
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Optional
from uuid import UUID

from core.database import get_db
from core.auth import get_current_user, require_admin, require_class_manager, require_role
from models import User
from schemas import (
    ClassCreate,
    ClassJoin,
    ClassLeave,
    ClassResponse,
    ClassUpdate,
    RegistrantResponse,
    dump,
    envelope,
)
from services import class_booking

router = APIRouter(prefix="/v1/classes", tags=["classes"])


def _class(gym_class) -> dict:
    return {"class": dump(ClassResponse, gym_class)}


@router.get("")
def list_classes(
    is_active: Optional[bool] = None,
    coach_id: Optional[UUID] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    _: User = Depends(get_current_user),
):
    classes, total = class_booking.list_classes(
        db, is_active=is_active, coach_id=coach_id, search=search, page=page, limit=limit
    )
    return envelope({
        "classes": [dump(ClassResponse, c) for c in classes],
        "pagination": {"page": page, "limit": limit, "total": total},
    })


@router.get("/my/joined")
def my_joined_classes(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    classes = class_booking.list_joined_classes(db, user_id=current_user.id)
    return envelope({"classes": [dump(ClassResponse, c) for c in classes]})


@router.get("/my/coaching")
def my_coaching_classes(
    db: Session = Depends(get_db),
    coach: User = Depends(require_role(["coach", "admin"])),
):
    classes = class_booking.list_coached_classes(db, coach_id=coach.id)
    return envelope({"classes": [dump(ClassResponse, c) for c in classes]})


@router.get("/{class_id}")
def get_class(class_id: UUID, db: Session = Depends(get_db), _: User = Depends(get_current_user)):
    return envelope(_class(class_booking.get_class(db, class_id)))


@router.get("/{class_id}/participants")
def list_participants(
    class_id: UUID,
    db: Session = Depends(get_db),
    actor: User = Depends(require_class_manager),
):
    participants = class_booking.list_participants(db, class_id=class_id, actor=actor)
    return envelope({"participants": [dump(RegistrantResponse, p) for p in participants]})


@router.post("", status_code=status.HTTP_201_CREATED)
def create_class(
    request: ClassCreate,
    db: Session = Depends(get_db),
    actor: User = Depends(require_role(["admin", "coach"])),
):
    gym_class = class_booking.create_class(db, actor=actor, data=request.model_dump())
    return envelope(_class(gym_class), message="Class created")


@router.put("/{class_id}")
def update_class(
    class_id: UUID,
    request: ClassUpdate,
    db: Session = Depends(get_db),
    actor: User = Depends(require_class_manager),
):
    gym_class = class_booking.update_class(
        db, class_id=class_id, actor=actor, changes=request.model_dump(exclude_unset=True)
    )
    return envelope(_class(gym_class), message="Class updated")


@router.delete("/{class_id}")
def delete_class(class_id: UUID, db: Session = Depends(get_db), _: User = Depends(require_admin)):
    class_booking.delete_class(db, class_id=class_id)
    return envelope(message="Class deleted")


@router.post("/{class_id}/join")
def join_class(
    class_id: UUID,
    request: Optional[ClassJoin] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    request = request or ClassJoin()
    gym_class = class_booking.join_class(
        db,
        class_id=class_id,
        user_id=current_user.id,
        booking_date=request.booking_date,
        notes=request.notes,
    )
    return envelope(_class(gym_class), message="Successfully joined class")


@router.post("/{class_id}/leave")
def leave_class(
    class_id: UUID,
    request: Optional[ClassLeave] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    request = request or ClassLeave()
    gym_class = class_booking.leave_class(
        db, class_id=class_id, user_id=current_user.id, reason=request.reason
    )
    return envelope(_class(gym_class), message="Successfully left class")
