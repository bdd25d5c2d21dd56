"""
Pytest configuration and fixtures

Tests run against a throwaway SQLite file migrated to Alembic head. A file
(not :memory:) so that the concurrency tests can open one connection per
thread. Every table is emptied after each test.

Celery runs eagerly, so notifications are written synchronously by the same
task code the worker runs.
"""
import os
import sys
import tempfile
from datetime import date
from decimal import Decimal
from pathlib import Path
from uuid import uuid4

import pytest

_DB_DIR = tempfile.mkdtemp(prefix="gym_backoffice_tests_")

os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ["SECRET_KEY"] = "test-secret-key-that-is-long-enough-for-hs256"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["CACHE_ENABLED"] = "false"
os.environ["CELERY_TASK_ALWAYS_EAGER"] = "true"
os.environ["EMAIL_ENABLED"] = "false"
os.environ["LOG_FORMAT"] = "text"

# Add the parent directory to the path so we can import from services
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


@pytest.fixture(scope="session", autouse=True)
def _ensure_db_schema_is_at_head():
    """Build the test database from the Alembic migrations."""
    try:
        from alembic import command
        from alembic.config import Config

        api_root = Path(__file__).resolve().parents[1]
        cfg = Config(str(api_root / "alembic.ini"))
        cfg.set_main_option("script_location", str(api_root / "alembic"))
        command.upgrade(cfg, "head")
    except Exception as e:
        raise RuntimeError(f"Failed to upgrade DB to Alembic head: {e}") from e


from core.database import Base, SessionLocal, engine  # noqa: E402
from core.security import create_access_token  # noqa: E402
from models import SubscriptionPlan, User  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_celery_join_flag():
    # Eager apply() toggles a process-global flag non-atomically, so threads in
    # the concurrency tests can leave it set and break later .get() calls.
    from celery._state import _set_task_join_will_block

    _set_task_join_will_block(False)
    yield


@pytest.fixture(autouse=True)
def _clean_tables():
    yield
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_user():
    """Factory: make_user(role="member", status="pending_subscription", **fields)."""

    def _make(role: str = "member", status: str = "pending_subscription", **fields) -> User:
        session = SessionLocal()
        try:
            user = User(
                name=fields.pop("name", f"{role.title()} {uuid4().hex[:6]}"),
                email=fields.pop("email", f"{role}_{uuid4().hex}@example.com"),
                role=role,
                status=status,
                is_active=fields.pop("is_active", True),
                **fields,
            )
            session.add(user)
            session.commit()
            return user
        finally:
            session.close()

    return _make


@pytest.fixture
def make_plan():
    def _make(name: str = None, duration_months: int = 1, price: str = "49.99", is_active: bool = True) -> SubscriptionPlan:
        session = SessionLocal()
        try:
            plan = SubscriptionPlan(
                name=name or f"Plan {uuid4().hex[:6]}",
                duration_months=duration_months,
                price=Decimal(price),
                features=["Gym floor access"],
                is_active=is_active,
            )
            session.add(plan)
            session.commit()
            return plan
        finally:
            session.close()

    return _make


@pytest.fixture
def member(make_user):
    return make_user("member")


@pytest.fixture
def staff(make_user):
    return make_user("staff", status="active")


@pytest.fixture
def admin(make_user):
    return make_user("admin", status="active")


@pytest.fixture
def coach(make_user):
    return make_user("coach", status="active")


@pytest.fixture
def plan(make_plan):
    return make_plan(name="Monthly", duration_months=1, price="49.99")


def auth_headers(user: User) -> dict:
    token = create_access_token({"sub": str(user.id), "role": user.role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def headers_for():
    return auth_headers


@pytest.fixture
def active_member(make_user, plan, staff, db):
    """A member holding a confirmed, paid subscription that started today."""
    from services import subscription_lifecycle as lifecycle

    user = make_user("member")
    subscription = lifecycle.request_subscription(
        db, user_id=user.id, plan_id=plan.id, payment_method="card"
    )
    lifecycle.confirm_subscription(
        db, subscription_id=subscription.id, staff_user_id=staff.id, start_date=date.today()
    )
    db.expire_all()
    return db.get(User, user.id)
