from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from core.database import get_db
from core.auth import require_staff
from models import User
from schemas import envelope
from services import reporting

router = APIRouter(prefix="/v1/dashboard", tags=["dashboard"])


@router.get("")
def dashboard(db: Session = Depends(get_db), _: User = Depends(require_staff)):
    return envelope({"summary": reporting.get_summary(db)})
