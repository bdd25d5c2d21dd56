"""
Authentication API endpoints.

Provides:
- Member self-registration
- Login (JWT token generation)
- Current user profile
"""
from fastapi import APIRouter, Depends, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
import logging

from core.database import get_db
from core.auth import get_current_user
from core.exceptions import ConflictError, UnauthorizedError, ForbiddenError
from core.security import verify_password, get_password_hash, create_access_token
from models import User
from schemas import UserLogin, UserRegister, UserResponse, dump, envelope

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/auth", tags=["auth"])


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def _token_payload(user: User) -> dict:
    return {
        "token": create_access_token({"sub": str(user.id), "role": user.role}),
        "user": dump(UserResponse, user),
    }


@router.post("/register", status_code=status.HTTP_201_CREATED)
def register(request: UserRegister, db: Session = Depends(get_db)):
    """Create a member account. New members start without a subscription."""
    email = normalize_email(request.email)
    if db.query(User.id).filter(User.email == email).first():
        raise ConflictError("An account with this email already exists")

    user = User(
        name=request.name.strip(),
        email=email,
        phone=request.phone,
        password_hash=get_password_hash(request.password),
        role="member",
        status="pending_subscription",
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("An account with this email already exists")

    logger.info(f"Member registered: {user.id}")
    return envelope(_token_payload(user), message="Registration successful")


@router.post("/login")
def login(request: UserLogin, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == normalize_email(request.email)).first()
    if not user or not user.password_hash or not verify_password(request.password, user.password_hash):
        logger.info("Failed login attempt", extra={"extra_fields": {"email": normalize_email(request.email)}})
        raise UnauthorizedError("Invalid email or password")
    if not user.is_active:
        raise ForbiddenError("Account is deactivated")

    return envelope(_token_payload(user), message="Login successful")


@router.get("/me")
def me(current_user: User = Depends(get_current_user)):
    return envelope({"user": dump(UserResponse, current_user)})
