"""
Security utilities for authentication and authorization.

Provides:
- Password hashing (bcrypt)
- JWT access tokens for members and staff
- Signed check-in codes printed on membership cards

SECURITY REQUIREMENTS:
- SECRET_KEY must be set via environment variable
- SECRET_KEY must be cryptographically secure (32+ characters)
- SECRET_KEY must NEVER be committed to source control
"""
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict
from uuid import UUID
from jose import JWTError, jwt
import bcrypt
from core.config import settings

# JWT settings - SECRET_KEY is required by config.py, will fail at startup if not set
SECRET_KEY = settings.SECRET_KEY

# Validate SECRET_KEY strength at module load
if len(SECRET_KEY) < 32:
    raise ValueError(
        "SECRET_KEY must be at least 32 characters. "
        "Generate with: python -c \"import secrets; print(secrets.token_urlsafe(32))\""
    )

ALGORITHM = "HS256"
CHECKIN_TOKEN_TYPE = "checkin"


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against a hash."""
    return bcrypt.checkpw(
        plain_password.encode('utf-8'),
        hashed_password.encode('utf-8')
    )


def get_password_hash(password: str) -> str:
    """Hash a password."""
    salt = bcrypt.gensalt()
    return bcrypt.hashpw(password.encode('utf-8'), salt).decode('utf-8')


def create_access_token(data: Dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token."""
    to_encode = data.copy()
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": datetime.now(timezone.utc) + expires_delta})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> Optional[Dict]:
    """Decode and validate a JWT token."""
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None
    # Check-in codes are not bearer credentials
    if payload.get("typ") == CHECKIN_TOKEN_TYPE:
        return None
    return payload


def create_checkin_code(user_id: UUID, subscription_id: UUID) -> str:
    """Signed code the front desk scans to check a member in."""
    expire = datetime.now(timezone.utc) + timedelta(days=settings.CHECKIN_CODE_EXPIRE_DAYS)
    return jwt.encode(
        {
            "sub": str(user_id),
            "sid": str(subscription_id),
            "typ": CHECKIN_TOKEN_TYPE,
            "exp": expire,
        },
        SECRET_KEY,
        algorithm=ALGORITHM,
    )


def decode_checkin_code(code: str) -> Optional[UUID]:
    """Return the member id a check-in code was issued to, or None if it is invalid."""
    try:
        payload = jwt.decode(code, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None
    if payload.get("typ") != CHECKIN_TOKEN_TYPE:
        return None
    try:
        return UUID(payload["sub"])
    except (KeyError, ValueError):
        return None
