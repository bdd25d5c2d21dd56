from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from core.database import Base
import uuid
from datetime import datetime, timezone


# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")

USER_ROLES = ("member", "coach", "staff", "admin")
STAFF_ROLES = ("staff", "admin")
USER_STATUSES = ("pending_subscription", "active", "suspended", "expired", "frozen")

PAYMENT_METHODS = ("cash", "card")
PAYMENT_STATUSES = ("pending", "paid", "failed")
CONFIRMATION_STATUSES = ("pending", "confirmed", "rejected", "expired")
# Statuses that count as "the member already has a subscription in play"
OPEN_SUBSCRIPTION_STATUSES = ("pending", "confirmed")

AUDIT_ACTIONS = ("created", "confirmed", "rejected", "modified", "frozen", "unfrozen")

CLASS_STATUSES = ("available", "full", "cancelled")
NOTIFICATION_CATEGORIES = ("subscription", "payment", "class", "general")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    """Gym member or employee. ``status`` is only written through services.membership_status."""
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=True)
    name = Column(Text, nullable=False)
    email = Column(Text, unique=True, nullable=False)
    password_hash = Column(Text, nullable=True)
    phone = Column(Text, nullable=True)
    role = Column(Text, default="member", nullable=False)
    status = Column(Text, default="pending_subscription", nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    version_id = Column(Integer, nullable=False)

    subscriptions = relationship(
        "Subscription",
        foreign_keys="Subscription.user_id",
        back_populates="user",
        order_by="Subscription.created_at.desc()",
    )

    __mapper_args__ = {"version_id_col": version_id}

    __table_args__ = (
        CheckConstraint(
            "role IN ('member', 'coach', 'staff', 'admin')",
            name="ck_users_role",
        ),
        CheckConstraint(
            "status IN ('pending_subscription', 'active', 'suspended', 'expired', 'frozen')",
            name="ck_users_status",
        ),
    )

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES


class SubscriptionPlan(Base):
    __tablename__ = "subscription_plans"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(Text, unique=True, nullable=False)
    description = Column(Text, nullable=True)
    duration_months = Column(Integer, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    features = Column(JSONType, nullable=False, default=list)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=True)

    __table_args__ = (
        CheckConstraint("duration_months >= 1", name="ck_subscription_plans_duration"),
        CheckConstraint("price >= 0", name="ck_subscription_plans_price"),
    )


class Subscription(Base):
    """
    One member's purchase of a plan.

    Lifecycle: pending -> confirmed | rejected; confirmed -> expired (daily sweep).
    Freezing is a flag pair (frozen_until/frozen_reason) on a confirmed row, not
    a separate confirmation status. ``amount`` is the plan price at request time
    and never follows later plan edits.
    """
    __tablename__ = "subscriptions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False)
    plan_id = Column(Uuid, ForeignKey("subscription_plans.id"), nullable=False)
    payment_method = Column(Text, nullable=False)
    payment_status = Column(Text, default="pending", nullable=False)
    confirmation_status = Column(Text, default="pending", nullable=False)
    confirmed_by = Column(Uuid, ForeignKey("users.id"), nullable=True)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    frozen_until = Column(Date, nullable=True)
    frozen_reason = Column(Text, nullable=True)
    amount = Column(Numeric(10, 2), nullable=False)
    notes = Column(Text, nullable=True)
    version_id = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=True)

    user = relationship("User", foreign_keys=[user_id], back_populates="subscriptions")
    confirmed_by_user = relationship("User", foreign_keys=[confirmed_by])
    plan = relationship("SubscriptionPlan")
    audit_entries = relationship(
        "SubscriptionAuditEntry",
        back_populates="subscription",
        order_by="SubscriptionAuditEntry.sequence",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version_id}

    __table_args__ = (
        # At most one pending-or-confirmed subscription per member, enforced by the database
        Index(
            "uq_subscriptions_user_open",
            "user_id",
            unique=True,
            postgresql_where=text("confirmation_status IN ('pending', 'confirmed')"),
            sqlite_where=text("confirmation_status IN ('pending', 'confirmed')"),
        ),
        Index("ix_subscriptions_confirmation_status", "confirmation_status"),
        Index("ix_subscriptions_end_date", "end_date"),
        CheckConstraint("payment_method IN ('cash', 'card')", name="ck_subscriptions_payment_method"),
        CheckConstraint("payment_status IN ('pending', 'paid', 'failed')", name="ck_subscriptions_payment_status"),
        CheckConstraint(
            "confirmation_status IN ('pending', 'confirmed', 'rejected', 'expired')",
            name="ck_subscriptions_confirmation_status",
        ),
        CheckConstraint("amount >= 0", name="ck_subscriptions_amount"),
    )

    @property
    def is_frozen(self) -> bool:
        return self.frozen_until is not None or self.frozen_reason is not None


class SubscriptionAuditEntry(Base):
    """Append-only history of a subscription. ``sequence`` is gapless per subscription."""
    __tablename__ = "subscription_audit"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    subscription_id = Column(Uuid, ForeignKey("subscriptions.id", ondelete="CASCADE"), nullable=False)
    sequence = Column(Integer, nullable=False)
    action = Column(Text, nullable=False)
    performed_by = Column(Uuid, ForeignKey("users.id"), nullable=True)  # NULL for system actions
    old_status = Column(Text, nullable=True)
    new_status = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    subscription = relationship("Subscription", back_populates="audit_entries")
    performer = relationship("User")

    __table_args__ = (
        UniqueConstraint("subscription_id", "sequence", name="uq_subscription_audit_sequence"),
        CheckConstraint(
            "action IN ('created', 'confirmed', 'rejected', 'modified', 'frozen', 'unfrozen')",
            name="ck_subscription_audit_action",
        ),
    )


class GymClass(Base):
    """
    A scheduled group class.

    ``registered_count`` mirrors the number of class_registration rows and is
    bumped on every join/leave so concurrent bookings contend on this row's
    version. ``status`` is derived from the count unless the class is cancelled.
    """
    __tablename__ = "classes"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    coach_id = Column(Uuid, ForeignKey("users.id"), nullable=True)
    capacity = Column(Integer, nullable=False, default=20)
    duration_minutes = Column(Integer, nullable=False, default=60)
    schedule_time = Column(Text, nullable=True)  # "HH:MM"
    schedule_days = Column(JSONType, nullable=False, default=list)
    price = Column(Numeric(10, 2), nullable=False, default=0)
    status = Column(Text, nullable=False, default="available")
    is_active = Column(Boolean, nullable=False, default=True)
    registered_count = Column(Integer, nullable=False, default=0)
    version_id = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=True)

    coach = relationship("User")
    registrations = relationship(
        "ClassRegistration",
        back_populates="gym_class",
        order_by="ClassRegistration.registered_at",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version_id}

    __table_args__ = (
        CheckConstraint("capacity BETWEEN 1 AND 100", name="ck_classes_capacity"),
        CheckConstraint("duration_minutes BETWEEN 15 AND 240", name="ck_classes_duration"),
        CheckConstraint("registered_count >= 0", name="ck_classes_registered_count_nonneg"),
        CheckConstraint("registered_count <= capacity", name="ck_classes_registered_count_capacity"),
        CheckConstraint("status IN ('available', 'full', 'cancelled')", name="ck_classes_status"),
        CheckConstraint("price >= 0", name="ck_classes_price"),
        Index("ix_classes_coach_id", "coach_id"),
    )

    @property
    def available_spots(self) -> int:
        return max(0, self.capacity - self.registered_count)

    @property
    def registered_users(self):
        return self.registrations


class ClassRegistration(Base):
    """A member's seat in a class. Name and email are snapshotted at join time."""
    __tablename__ = "class_registration"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    class_id = Column(Uuid, ForeignKey("classes.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False)
    name = Column(Text, nullable=False)
    email = Column(Text, nullable=False)
    registered_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    booking_date = Column(Date, nullable=True)
    notes = Column(Text, nullable=True)

    gym_class = relationship("GymClass", back_populates="registrations")

    __table_args__ = (
        UniqueConstraint("class_id", "user_id", name="uq_class_registration_member"),
        Index("ix_class_registration_user_id", "user_id"),
    )


class Attendance(Base):
    __tablename__ = "attendance"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False)
    recorded_by = Column(Uuid, ForeignKey("users.id"), nullable=True)
    check_in_time = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    check_out_time = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)

    user = relationship("User", foreign_keys=[user_id])

    __table_args__ = (
        # One open visit per member
        Index(
            "uq_attendance_open_visit",
            "user_id",
            unique=True,
            postgresql_where=text("check_out_time IS NULL"),
            sqlite_where=text("check_out_time IS NULL"),
        ),
        Index("ix_attendance_check_in_time", "check_in_time"),
    )


class CoachAssignment(Base):
    __tablename__ = "coach_assignments"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    coach_id = Column(Uuid, ForeignKey("users.id"), nullable=False)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False)
    assigned_by = Column(Uuid, ForeignKey("users.id"), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    notes = Column(Text, nullable=True)
    assigned_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    ended_at = Column(DateTime(timezone=True), nullable=True)

    coach = relationship("User", foreign_keys=[coach_id])
    member = relationship("User", foreign_keys=[user_id])

    __table_args__ = (
        Index(
            "uq_coach_assignments_active_pair",
            "coach_id",
            "user_id",
            unique=True,
            postgresql_where=text("is_active = true"),
            sqlite_where=text("is_active = 1"),
        ),
    )


class Notification(Base):
    """In-app inbox row written by the notification worker."""
    __tablename__ = "notifications"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    title = Column(Text, nullable=False)
    message = Column(Text, nullable=False)
    category = Column(Text, nullable=False, default="general")
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint(
            "category IN ('subscription', 'payment', 'class', 'general')",
            name="ck_notifications_category",
        ),
        Index("ix_notifications_user_id_is_read", "user_id", "is_read"),
    )
