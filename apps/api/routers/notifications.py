from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from uuid import UUID

from core.database import get_db
from core.auth import get_current_user
from models import User
from schemas import NotificationResponse, dump, envelope
from services import notification_service

router = APIRouter(prefix="/v1/notifications", tags=["notifications"])


@router.get("")
def list_notifications(
    unread_only: bool = False,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    rows, total = notification_service.list_notifications(
        db, user_id=current_user.id, unread_only=unread_only, page=page, limit=limit
    )
    return envelope({
        "notifications": [dump(NotificationResponse, n) for n in rows],
        "pagination": {"page": page, "limit": limit, "total": total},
    })


@router.get("/unread-count")
def unread_count(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return envelope({"count": notification_service.unread_count(db, user_id=current_user.id)})


@router.patch("/read-all")
def mark_all_read(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    updated = notification_service.mark_all_read(db, user_id=current_user.id)
    db.commit()
    return envelope({"updated": updated}, message="All notifications marked as read")


@router.patch("/{notification_id}/read")
def mark_read(
    notification_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    notification = notification_service.mark_read(
        db, user_id=current_user.id, notification_id=notification_id
    )
    db.commit()
    return envelope({"notification": dump(NotificationResponse, notification)})


@router.delete("/{notification_id}")
def delete_notification(
    notification_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    notification_service.delete_notification(db, user_id=current_user.id, notification_id=notification_id)
    db.commit()
    return envelope(message="Notification deleted")
