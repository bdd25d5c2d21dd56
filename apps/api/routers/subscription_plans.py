"""
Subscription plan catalog endpoints.

Anyone can browse active plans; admins manage the catalog.
"""
from fastapi import APIRouter, Depends, status
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from typing import Optional
from uuid import UUID

from core.database import get_db
from core.auth import require_admin, security
from core.security import decode_access_token
from models import User, STAFF_ROLES
from schemas import PlanCreate, PlanResponse, PlanUpdate, dump, envelope
from services import plan_catalog

router = APIRouter(prefix="/v1/plans", tags=["subscription-plans"])


def _caller_is_staff(credentials: Optional[HTTPAuthorizationCredentials]) -> bool:
    if not credentials:
        return False
    payload = decode_access_token(credentials.credentials)
    return bool(payload and payload.get("role") in STAFF_ROLES)


@router.get("")
def list_plans(
    include_inactive: bool = False,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
):
    active_only = not (include_inactive and _caller_is_staff(credentials))
    plans = plan_catalog.list_plans(db, active_only=active_only)
    return envelope({"plans": [dump(PlanResponse, p) for p in plans]})


@router.get("/{plan_id}")
def get_plan(plan_id: UUID, db: Session = Depends(get_db)):
    return envelope({"plan": dump(PlanResponse, plan_catalog.get_plan(db, plan_id))})


@router.post("", status_code=status.HTTP_201_CREATED)
def create_plan(request: PlanCreate, db: Session = Depends(get_db), _: User = Depends(require_admin)):
    plan = plan_catalog.create_plan(db, data=request.model_dump())
    return envelope({"plan": dump(PlanResponse, plan)}, message="Subscription plan created")


@router.put("/{plan_id}")
def update_plan(
    plan_id: UUID,
    request: PlanUpdate,
    db: Session = Depends(get_db),
    _: User = Depends(require_admin),
):
    plan = plan_catalog.update_plan(db, plan_id=plan_id, changes=request.model_dump(exclude_unset=True))
    return envelope({"plan": dump(PlanResponse, plan)}, message="Subscription plan updated")


@router.delete("/{plan_id}")
def delete_plan(plan_id: UUID, db: Session = Depends(get_db), _: User = Depends(require_admin)):
    outcome = plan_catalog.delete_plan(db, plan_id=plan_id)
    return envelope({"outcome": outcome}, message=f"Subscription plan {outcome}")
