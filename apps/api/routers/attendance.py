"""
Attendance (front desk) endpoints.
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Optional
from uuid import UUID

from core.database import get_db
from core.auth import get_current_user, require_staff
from models import User
from schemas import AttendanceResponse, CheckInRequest, CheckOutRequest, UserResponse, dump, envelope
from services import attendance_service

router = APIRouter(prefix="/v1/attendance", tags=["attendance"])


@router.post("/check-in", status_code=status.HTTP_201_CREATED)
def check_in(
    request: CheckInRequest,
    db: Session = Depends(get_db),
    staff: User = Depends(require_staff),
):
    member = attendance_service.resolve_member(
        db, user_id=request.user_id, checkin_code=request.checkin_code
    )
    visit = attendance_service.check_in(db, user=member, recorded_by=staff.id, notes=request.notes)
    return envelope(
        {"attendance": dump(AttendanceResponse, visit), "user": dump(UserResponse, member)},
        message=f"{member.name} checked in",
    )


@router.post("/check-out")
def check_out(
    request: CheckOutRequest,
    db: Session = Depends(get_db),
    _: User = Depends(require_staff),
):
    visit, minutes = attendance_service.check_out(db, user_id=request.user_id)
    return envelope(
        {"attendance": dump(AttendanceResponse, visit), "duration_minutes": minutes},
        message="Checked out",
    )


@router.get("/my")
def my_attendance(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    visits, total = attendance_service.list_history(db, user_id=current_user.id, page=page, limit=limit)
    return envelope({
        "attendance": [dump(AttendanceResponse, v) for v in visits],
        "pagination": {"page": page, "limit": limit, "total": total},
    })


@router.get("/current")
def currently_checked_in(db: Session = Depends(get_db), _: User = Depends(require_staff)):
    visits = attendance_service.list_checked_in(db)
    return envelope({
        "attendance": [
            {**dump(AttendanceResponse, v), "user": dump(UserResponse, v.user)} for v in visits
        ],
        "count": len(visits),
    })


@router.get("")
def list_attendance(
    user_id: Optional[UUID] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    _: User = Depends(require_staff),
):
    visits, total = attendance_service.list_history(db, user_id=user_id, page=page, limit=limit)
    return envelope({
        "attendance": [dump(AttendanceResponse, v) for v in visits],
        "pagination": {"page": page, "limit": limit, "total": total},
    })
