"""
Membership status authority, the daily expiry sweep and the admin override.
"""
from datetime import date, timedelta

import pytest
from dateutil.relativedelta import relativedelta
from fastapi.testclient import TestClient

from core.exceptions import ValidationError
from main import app
from models import Notification, Subscription, SubscriptionAuditEntry, User
from services import subscription_lifecycle as lifecycle
from services.membership_status import has_gym_access, set_membership_status
from tasks.subscription_tasks import expire_subscriptions

client = TestClient(app)


def _confirmed(db, user, plan, staff, start):
    subscription = lifecycle.request_subscription(db, user_id=user.id, plan_id=plan.id, payment_method="cash")
    return lifecycle.confirm_subscription(
        db, subscription_id=subscription.id, staff_user_id=staff.id, start_date=start
    )


class TestSetMembershipStatus:
    def test_no_op_when_unchanged(self, db, member):
        user = db.get(User, member.id)
        assert set_membership_status(db, user, "pending_subscription", caused_by="test") is False

    def test_rejects_unknown_status(self, db, member):
        user = db.get(User, member.id)
        with pytest.raises(ValidationError):
            set_membership_status(db, user, "vip", caused_by="test")

    def test_gym_access(self, make_user):
        assert has_gym_access(make_user("member", status="active"))
        assert has_gym_access(make_user("member", status="frozen"))
        assert not has_gym_access(make_user("member", status="expired"))
        assert not has_gym_access(make_user("member", status="pending_subscription"))


class TestExpirySweep:
    def test_lapsed_subscription_expires(self, db, member, plan, staff):
        start = date.today() - relativedelta(months=2)
        subscription = _confirmed(db, member, plan, staff, start)

        assert lifecycle.expire_due_subscriptions(db) == 1

        db.expire_all()
        expired = db.get(Subscription, subscription.id)
        assert expired.confirmation_status == "expired"
        assert expired.user.status == "expired"
        last = expired.audit_entries[-1]
        assert (last.action, last.old_status, last.new_status) == ("modified", "confirmed", "expired")
        assert last.performed_by is None

        titles = [n.title for n in db.query(Notification).filter(Notification.user_id == member.id).all()]
        assert "Subscription Expired" in titles

    def test_expired_member_can_subscribe_again(self, db, member, plan, staff):
        _confirmed(db, member, plan, staff, date.today() - relativedelta(months=2))
        lifecycle.expire_due_subscriptions(db)

        renewal = lifecycle.request_subscription(db, user_id=member.id, plan_id=plan.id, payment_method="card")
        assert renewal.confirmation_status == "pending"
        db.expire_all()
        assert db.get(User, member.id).status == "pending_subscription"

    def test_current_and_frozen_subscriptions_are_kept(self, db, make_user, plan, staff):
        current_member = make_user("member")
        frozen_member = make_user("member")
        _confirmed(db, current_member, plan, staff, date.today())
        lapsed = _confirmed(db, frozen_member, plan, staff, date.today() - relativedelta(months=2))
        lifecycle.freeze_subscription(db, subscription_id=lapsed.id, staff_user_id=staff.id, reason="injury")

        assert lifecycle.expire_due_subscriptions(db) == 0

        db.expire_all()
        assert db.get(User, current_member.id).status == "active"
        assert db.get(User, frozen_member.id).status == "frozen"

    def test_sweep_is_idempotent(self, db, member, plan, staff):
        subscription = _confirmed(db, member, plan, staff, date.today() - relativedelta(months=2))
        assert lifecycle.expire_due_subscriptions(db) == 1
        assert lifecycle.expire_due_subscriptions(db) == 0
        assert lifecycle.expire_subscription(db, subscription_id=subscription.id) is False

        db.expire_all()
        entries = (
            db.query(SubscriptionAuditEntry)
            .filter(SubscriptionAuditEntry.subscription_id == subscription.id)
            .count()
        )
        assert entries == 3

    def test_expiring_soon_warning(self, db, member, plan, staff):
        from core.config import settings

        subscription = _confirmed(db, member, plan, staff, date.today())
        stored = db.get(Subscription, subscription.id)
        stored.end_date = date.today() + timedelta(days=settings.EXPIRY_WARNING_DAYS)
        db.commit()

        assert lifecycle.warn_expiring_subscriptions(db) == 1
        db.expire_all()
        titles = [n.title for n in db.query(Notification).filter(Notification.user_id == member.id).all()]
        assert "Subscription Expiring Soon" in titles

    def test_celery_task_runs_the_sweep(self, db, member, plan, staff):
        _confirmed(db, member, plan, staff, date.today() - relativedelta(months=2))

        result = expire_subscriptions.apply().get()

        assert result == {"status": "success", "expired": 1, "warned": 0}
        db.expire_all()
        assert db.get(User, member.id).status == "expired"


class TestAdminOverride:
    def test_admin_suspends_member(self, active_member, admin, headers_for):
        resp = client.patch(
            f"/v1/users/{active_member.id}/status",
            json={"status": "suspended", "reason": "Unpaid locker fees"},
            headers=headers_for(admin),
        )
        assert resp.status_code == 200
        assert resp.json()["data"]["user"]["status"] == "suspended"

    def test_staff_cannot_override(self, active_member, staff, headers_for):
        resp = client.patch(
            f"/v1/users/{active_member.id}/status", json={"status": "suspended"}, headers=headers_for(staff)
        )
        assert resp.status_code == 403

    def test_user_update_ignores_status(self, active_member, admin, headers_for):
        resp = client.put(
            f"/v1/users/{active_member.id}",
            json={"name": "Renamed", "status": "expired"},
            headers=headers_for(admin),
        )
        assert resp.status_code == 200
        user = resp.json()["data"]["user"]
        assert user["name"] == "Renamed"
        assert user["status"] == "active"
