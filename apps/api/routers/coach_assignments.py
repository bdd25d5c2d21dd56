from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from uuid import UUID

from core.database import get_db
from core.auth import get_current_user, require_admin, require_role
from models import User
from schemas import CoachAssignmentCreate, CoachAssignmentResponse, dump, envelope
from services import coach_assignment_service

router = APIRouter(prefix="/v1/coach-assignments", tags=["coach-assignments"])


def _assignments(rows) -> dict:
    return {"assignments": [dump(CoachAssignmentResponse, a) for a in rows]}


@router.post("", status_code=status.HTTP_201_CREATED)
def assign_member(
    request: CoachAssignmentCreate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    assignment = coach_assignment_service.assign_member(
        db,
        coach_id=request.coach_id,
        user_id=request.user_id,
        assigned_by=admin.id,
        notes=request.notes,
    )
    return envelope({"assignment": dump(CoachAssignmentResponse, assignment)}, message="Member assigned")


@router.patch("/{assignment_id}/end")
def end_assignment(assignment_id: UUID, db: Session = Depends(get_db), _: User = Depends(require_admin)):
    assignment = coach_assignment_service.end_assignment(db, assignment_id=assignment_id)
    return envelope({"assignment": dump(CoachAssignmentResponse, assignment)}, message="Assignment ended")


@router.get("")
def list_assignments(
    active_only: bool = True,
    db: Session = Depends(get_db),
    _: User = Depends(require_admin),
):
    return envelope(_assignments(coach_assignment_service.list_all(db, active_only=active_only)))


@router.get("/my-members")
def my_members(db: Session = Depends(get_db), coach: User = Depends(require_role(["coach", "admin"]))):
    return envelope(_assignments(coach_assignment_service.list_for_coach(db, coach_id=coach.id)))


@router.get("/my-coaches")
def my_coaches(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return envelope(_assignments(coach_assignment_service.list_for_member(db, user_id=current_user.id)))
