from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from datetime import datetime, date
from uuid import UUID
from typing import Any, Literal, Optional, List, Dict


def envelope(data: Optional[Dict[str, Any]] = None, message: Optional[str] = None) -> Dict[str, Any]:
    """Standard success body: ``{"success": true, "message"?, "data"?}``."""
    body: Dict[str, Any] = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return body


def dump(model_cls, obj) -> Dict[str, Any]:
    return model_cls.model_validate(obj).model_dump(mode="json")


PaymentMethod = Literal["cash", "card"]
PaymentStatus = Literal["pending", "paid", "failed"]
NotificationCategory = Literal["subscription", "payment", "class", "general"]
UserRole = Literal["member", "coach", "staff", "admin"]
UserStatus = Literal["pending_subscription", "active", "suspended", "expired", "frozen"]


# --- Users ---

class UserRegister(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    phone: Optional[str] = Field(default=None, max_length=40)


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class UserUpdate(BaseModel):
    """Admin edit of a user. ``status`` is deliberately absent: see PATCH /v1/users/{id}/status."""
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    phone: Optional[str] = Field(default=None, max_length=40)
    role: Optional[UserRole] = None
    is_active: Optional[bool] = None


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(default=None, max_length=200)
    phone: Optional[str] = Field(default=None, max_length=40)


class PasswordChange(BaseModel):
    current_password: str
    new_password: str = Field(min_length=8, max_length=128)
    confirm_password: str


class AccountDeletion(BaseModel):
    password: str
    confirmation: Optional[str] = None


class UserStatusOverride(BaseModel):
    status: UserStatus
    reason: Optional[str] = Field(default=None, max_length=500)


class UserResponse(BaseModel):
    id: UUID
    name: str
    email: str
    phone: Optional[str] = None
    role: str
    status: str
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# --- Plans ---

class PlanCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=2000)
    duration_months: int = Field(ge=1, le=120)
    price: float = Field(ge=0)
    features: List[str] = Field(default_factory=list)
    is_active: bool = True


class PlanUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=2000)
    duration_months: Optional[int] = Field(default=None, ge=1, le=120)
    price: Optional[float] = Field(default=None, ge=0)
    features: Optional[List[str]] = None
    is_active: Optional[bool] = None


class PlanResponse(BaseModel):
    id: UUID
    name: str
    description: Optional[str] = None
    duration_months: int
    price: float
    features: List[str] = Field(default_factory=list)
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# --- Subscriptions ---

class SubscriptionRequest(BaseModel):
    plan_id: UUID
    payment_method: PaymentMethod
    notes: Optional[str] = Field(default=None, max_length=1000)


class SubscriptionConfirm(BaseModel):
    payment_status: PaymentStatus = "paid"
    start_date: Optional[date] = None
    notes: Optional[str] = Field(default=None, max_length=1000)


class SubscriptionReject(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=1000)


class SubscriptionFreeze(BaseModel):
    frozen_until: Optional[date] = None
    reason: Optional[str] = Field(default=None, max_length=500)


class SubscriptionCancel(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class AuditEntryResponse(BaseModel):
    id: UUID
    sequence: int
    action: str
    performed_by: Optional[UUID] = None
    old_status: Optional[str] = None
    new_status: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SubscriptionResponse(BaseModel):
    id: UUID
    user_id: UUID
    plan_id: UUID
    payment_method: str
    payment_status: str
    confirmation_status: str
    confirmed_by: Optional[UUID] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    frozen_until: Optional[date] = None
    frozen_reason: Optional[str] = None
    is_frozen: bool
    amount: float
    notes: Optional[str] = None
    created_at: datetime
    plan: Optional[PlanResponse] = None

    model_config = ConfigDict(from_attributes=True)


class SubscriptionDetailResponse(SubscriptionResponse):
    user: Optional[UserResponse] = None
    audit_entries: List[AuditEntryResponse] = Field(default_factory=list)


# --- Classes ---

SCHEDULE_DAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


class _ScheduleFields(BaseModel):
    @field_validator("schedule_time", check_fields=False)
    @classmethod
    def _check_time(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        try:
            parsed = datetime.strptime(value, "%H:%M")
        except ValueError:
            raise ValueError("schedule_time must be HH:MM")
        return parsed.strftime("%H:%M")

    @field_validator("schedule_days", check_fields=False)
    @classmethod
    def _check_days(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        if value is None:
            return value
        days = [d.strip().lower() for d in value]
        unknown = [d for d in days if d not in SCHEDULE_DAYS]
        if unknown:
            raise ValueError(f"Unknown schedule days: {', '.join(unknown)}")
        return list(dict.fromkeys(days))


class ClassCreate(_ScheduleFields):
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=2000)
    coach_id: Optional[UUID] = None
    capacity: int = Field(default=20, ge=1, le=100)
    duration_minutes: int = Field(default=60, ge=15, le=240)
    schedule_time: Optional[str] = None
    schedule_days: List[str] = Field(default_factory=list)
    price: float = Field(default=0, ge=0)


class ClassUpdate(_ScheduleFields):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=2000)
    coach_id: Optional[UUID] = None
    capacity: Optional[int] = Field(default=None, ge=1, le=100)
    duration_minutes: Optional[int] = Field(default=None, ge=15, le=240)
    schedule_time: Optional[str] = None
    schedule_days: Optional[List[str]] = None
    price: Optional[float] = Field(default=None, ge=0)
    status: Optional[Literal["available", "cancelled"]] = None
    is_active: Optional[bool] = None


class ClassJoin(BaseModel):
    booking_date: Optional[date] = None
    notes: Optional[str] = Field(default=None, max_length=500)


class ClassLeave(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=255)


class RegistrantResponse(BaseModel):
    user_id: UUID
    name: str
    email: str
    registered_at: datetime
    booking_date: Optional[date] = None
    notes: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class ClassResponse(BaseModel):
    id: UUID
    name: str
    description: Optional[str] = None
    coach_id: Optional[UUID] = None
    capacity: int
    duration_minutes: int
    schedule_time: Optional[str] = None
    schedule_days: List[str] = Field(default_factory=list)
    price: float
    status: str
    is_active: bool
    registered_count: int
    available_spots: int
    registered_users: List[RegistrantResponse] = Field(default_factory=list)
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# --- Attendance ---

class CheckInRequest(BaseModel):
    user_id: Optional[UUID] = None
    checkin_code: Optional[str] = None
    notes: Optional[str] = Field(default=None, max_length=500)


class CheckOutRequest(BaseModel):
    user_id: UUID


class AttendanceResponse(BaseModel):
    id: UUID
    user_id: UUID
    recorded_by: Optional[UUID] = None
    check_in_time: datetime
    check_out_time: Optional[datetime] = None
    notes: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


# --- Coach assignments ---

class CoachAssignmentCreate(BaseModel):
    coach_id: UUID
    user_id: UUID
    notes: Optional[str] = Field(default=None, max_length=500)


class CoachAssignmentResponse(BaseModel):
    id: UUID
    coach_id: UUID
    user_id: UUID
    assigned_by: UUID
    is_active: bool
    notes: Optional[str] = None
    assigned_at: datetime
    ended_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# --- Notifications ---

class NotificationResponse(BaseModel):
    id: UUID
    title: str
    message: str
    category: str
    is_read: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
