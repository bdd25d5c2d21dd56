"""initial_gym_schema

Revision ID: 0001_initial_gym_schema
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '0001_initial_gym_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        *_timestamps(),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("email", sa.Text(), nullable=False, unique=True),
        sa.Column("password_hash", sa.Text(), nullable=True),
        sa.Column("phone", sa.Text(), nullable=True),
        sa.Column("role", sa.Text(), nullable=False, server_default="member"),
        sa.Column("status", sa.Text(), nullable=False, server_default="pending_subscription"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.CheckConstraint("role IN ('member', 'coach', 'staff', 'admin')", name="ck_users_role"),
        sa.CheckConstraint(
            "status IN ('pending_subscription', 'active', 'suspended', 'expired', 'frozen')",
            name="ck_users_status",
        ),
    )

    op.create_table(
        "subscription_plans",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.Text(), nullable=False, unique=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("duration_months", sa.Integer(), nullable=False),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("features", JSONType, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.CheckConstraint("duration_months >= 1", name="ck_subscription_plans_duration"),
        sa.CheckConstraint("price >= 0", name="ck_subscription_plans_price"),
    )

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("plan_id", sa.Uuid(), sa.ForeignKey("subscription_plans.id"), nullable=False),
        sa.Column("payment_method", sa.Text(), nullable=False),
        sa.Column("payment_status", sa.Text(), nullable=False, server_default="pending"),
        sa.Column("confirmation_status", sa.Text(), nullable=False, server_default="pending"),
        sa.Column("confirmed_by", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("frozen_until", sa.Date(), nullable=True),
        sa.Column("frozen_reason", sa.Text(), nullable=True),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("payment_method IN ('cash', 'card')", name="ck_subscriptions_payment_method"),
        sa.CheckConstraint(
            "payment_status IN ('pending', 'paid', 'failed')", name="ck_subscriptions_payment_status"
        ),
        sa.CheckConstraint(
            "confirmation_status IN ('pending', 'confirmed', 'rejected', 'expired')",
            name="ck_subscriptions_confirmation_status",
        ),
        sa.CheckConstraint("amount >= 0", name="ck_subscriptions_amount"),
    )
    op.create_index(
        "uq_subscriptions_user_open",
        "subscriptions",
        ["user_id"],
        unique=True,
        postgresql_where=sa.text("confirmation_status IN ('pending', 'confirmed')"),
        sqlite_where=sa.text("confirmation_status IN ('pending', 'confirmed')"),
    )
    op.create_index("ix_subscriptions_confirmation_status", "subscriptions", ["confirmation_status"])
    op.create_index("ix_subscriptions_end_date", "subscriptions", ["end_date"])

    op.create_table(
        "subscription_audit",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "subscription_id",
            sa.Uuid(),
            sa.ForeignKey("subscriptions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("action", sa.Text(), nullable=False),
        sa.Column("performed_by", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("old_status", sa.Text(), nullable=True),
        sa.Column("new_status", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("subscription_id", "sequence", name="uq_subscription_audit_sequence"),
        sa.CheckConstraint(
            "action IN ('created', 'confirmed', 'rejected', 'modified', 'frozen', 'unfrozen')",
            name="ck_subscription_audit_action",
        ),
    )

    op.create_table(
        "classes",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("coach_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("capacity", sa.Integer(), nullable=False, server_default="20"),
        sa.Column("duration_minutes", sa.Integer(), nullable=False, server_default="60"),
        sa.Column("schedule_time", sa.Text(), nullable=True),
        sa.Column("schedule_days", JSONType, nullable=False),
        sa.Column("price", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("status", sa.Text(), nullable=False, server_default="available"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("registered_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("version_id", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("capacity BETWEEN 1 AND 100", name="ck_classes_capacity"),
        sa.CheckConstraint("duration_minutes BETWEEN 15 AND 240", name="ck_classes_duration"),
        sa.CheckConstraint("registered_count >= 0", name="ck_classes_registered_count_nonneg"),
        sa.CheckConstraint("registered_count <= capacity", name="ck_classes_registered_count_capacity"),
        sa.CheckConstraint("status IN ('available', 'full', 'cancelled')", name="ck_classes_status"),
        sa.CheckConstraint("price >= 0", name="ck_classes_price"),
    )
    op.create_index("ix_classes_coach_id", "classes", ["coach_id"])

    op.create_table(
        "class_registration",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("class_id", sa.Uuid(), sa.ForeignKey("classes.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("email", sa.Text(), nullable=False),
        sa.Column("registered_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("booking_date", sa.Date(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.UniqueConstraint("class_id", "user_id", name="uq_class_registration_member"),
    )
    op.create_index("ix_class_registration_user_id", "class_registration", ["user_id"])

    op.create_table(
        "attendance",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("recorded_by", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("check_in_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("check_out_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
    )
    op.create_index(
        "uq_attendance_open_visit",
        "attendance",
        ["user_id"],
        unique=True,
        postgresql_where=sa.text("check_out_time IS NULL"),
        sqlite_where=sa.text("check_out_time IS NULL"),
    )
    op.create_index("ix_attendance_check_in_time", "attendance", ["check_in_time"])

    op.create_table(
        "coach_assignments",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("coach_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("assigned_by", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "uq_coach_assignments_active_pair",
        "coach_assignments",
        ["coach_id", "user_id"],
        unique=True,
        postgresql_where=sa.text("is_active = true"),
        sqlite_where=sa.text("is_active = 1"),
    )

    op.create_table(
        "notifications",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("category", sa.Text(), nullable=False, server_default="general"),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint(
            "category IN ('subscription', 'payment', 'class', 'general')",
            name="ck_notifications_category",
        ),
    )
    op.create_index("ix_notifications_user_id_is_read", "notifications", ["user_id", "is_read"])


def downgrade() -> None:
    op.drop_table("notifications")
    op.drop_table("coach_assignments")
    op.drop_table("attendance")
    op.drop_table("class_registration")
    op.drop_table("classes")
    op.drop_table("subscription_audit")
    op.drop_table("subscriptions")
    op.drop_table("subscription_plans")
    op.drop_table("users")
