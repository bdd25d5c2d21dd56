"""
Tests for the class booking engine (services.class_booking).
"""
from datetime import date

import pytest

from core.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from models import ClassRegistration, GymClass, Notification
from services import class_booking


@pytest.fixture
def make_class(db):
    def _make(capacity=10, coach_id=None, name="HIIT") -> GymClass:
        gym_class = GymClass(
            name=name,
            capacity=capacity,
            coach_id=coach_id,
            schedule_time="18:00",
            schedule_days=["monday", "wednesday"],
            price=0,
        )
        db.add(gym_class)
        db.commit()
        return gym_class

    return _make


def _reload(db, class_id) -> GymClass:
    db.expire_all()
    return db.get(GymClass, class_id)


def _assert_derived_fields(gym_class: GymClass):
    count = len(gym_class.registrations)
    assert gym_class.registered_count == count
    assert gym_class.available_spots == gym_class.capacity - count
    if gym_class.status != "cancelled":
        assert (gym_class.status == "full") == (count == gym_class.capacity)


class TestJoinLeave:
    def test_scenario_single_seat_class(self, db, make_class, make_user):
        gym_class = make_class(capacity=1)
        a = make_user("member", status="active")
        b = make_user("member", status="active")

        joined = class_booking.join_class(db, class_id=gym_class.id, user_id=a.id)
        assert joined.status == "full"
        assert joined.available_spots == 0

        with pytest.raises(ConflictError, match="Class is full"):
            class_booking.join_class(db, class_id=gym_class.id, user_id=b.id)

        left = class_booking.leave_class(db, class_id=gym_class.id, user_id=a.id)
        assert left.status == "available"
        assert left.available_spots == 1
        _assert_derived_fields(_reload(db, gym_class.id))

    def test_registrant_snapshot(self, db, make_class, make_user):
        gym_class = make_class()
        member = make_user("member", status="active", name="Dana Reyes", email="dana@example.com")

        class_booking.join_class(
            db, class_id=gym_class.id, user_id=member.id, booking_date=date(2025, 3, 3), notes="First time"
        )

        registration = _reload(db, gym_class.id).registered_users[0]
        assert registration.user_id == member.id
        assert registration.name == "Dana Reyes"
        assert registration.email == "dana@example.com"
        assert registration.booking_date == date(2025, 3, 3)
        assert registration.notes == "First time"
        assert registration.registered_at is not None

    def test_registrants_keep_join_order(self, db, make_class, make_user):
        gym_class = make_class()
        members = [make_user("member", status="active") for _ in range(3)]
        for m in members:
            class_booking.join_class(db, class_id=gym_class.id, user_id=m.id)

        refreshed = _reload(db, gym_class.id)
        assert [r.user_id for r in refreshed.registered_users] == [m.id for m in members]
        _assert_derived_fields(refreshed)

    def test_double_join_conflicts(self, db, make_class, active_member):
        gym_class = make_class()
        class_booking.join_class(db, class_id=gym_class.id, user_id=active_member.id)

        with pytest.raises(ConflictError, match="already registered"):
            class_booking.join_class(db, class_id=gym_class.id, user_id=active_member.id)

        assert _reload(db, gym_class.id).registered_count == 1

    def test_leave_when_not_registered(self, db, make_class, active_member):
        gym_class = make_class()
        with pytest.raises(ConflictError, match="not registered"):
            class_booking.leave_class(db, class_id=gym_class.id, user_id=active_member.id)

    def test_member_without_membership_cannot_join(self, db, make_class, member):
        gym_class = make_class()
        with pytest.raises(ForbiddenError):
            class_booking.join_class(db, class_id=gym_class.id, user_id=member.id)
        assert _reload(db, gym_class.id).registered_count == 0

    def test_frozen_member_can_join(self, db, make_class, make_user):
        gym_class = make_class()
        frozen = make_user("member", status="frozen")
        class_booking.join_class(db, class_id=gym_class.id, user_id=frozen.id)
        assert _reload(db, gym_class.id).registered_count == 1

    def test_join_unknown_class(self, db, active_member):
        from uuid import uuid4

        with pytest.raises(NotFoundError):
            class_booking.join_class(db, class_id=uuid4(), user_id=active_member.id)

    def test_join_inactive_class(self, db, make_class, active_member, admin):
        gym_class = make_class()
        class_booking.update_class(db, class_id=gym_class.id, actor=admin, changes={"is_active": False})
        with pytest.raises(InvalidStateError):
            class_booking.join_class(db, class_id=gym_class.id, user_id=active_member.id)

    def test_join_writes_booking_notification(self, db, make_class, active_member):
        gym_class = make_class(name="Yoga")
        class_booking.join_class(db, class_id=gym_class.id, user_id=active_member.id)

        db.expire_all()
        titles = [
            n.title for n in db.query(Notification).filter(Notification.user_id == active_member.id).all()
        ]
        assert "Class Booking Confirmed" in titles


class TestCapacity:
    def test_cannot_shrink_below_registrations(self, db, make_class, make_user):
        gym_class = make_class(capacity=5)
        for _ in range(3):
            class_booking.join_class(
                db, class_id=gym_class.id, user_id=make_user("member", status="active").id
            )

        with pytest.raises(ValidationError, match=r"below current registrations \(3\)"):
            class_booking.update_capacity(db, class_id=gym_class.id, new_capacity=2)

        assert _reload(db, gym_class.id).capacity == 5

    def test_shrink_to_registrations_makes_class_full(self, db, make_class, make_user):
        gym_class = make_class(capacity=5)
        for _ in range(2):
            class_booking.join_class(
                db, class_id=gym_class.id, user_id=make_user("member", status="active").id
            )

        updated = class_booking.update_capacity(db, class_id=gym_class.id, new_capacity=2)
        assert updated.status == "full"
        _assert_derived_fields(_reload(db, gym_class.id))

    def test_growing_a_full_class_reopens_it(self, db, make_class, active_member):
        gym_class = make_class(capacity=1)
        class_booking.join_class(db, class_id=gym_class.id, user_id=active_member.id)

        updated = class_booking.update_capacity(db, class_id=gym_class.id, new_capacity=4)
        assert updated.status == "available"
        assert updated.available_spots == 3

    @pytest.mark.parametrize("capacity", [0, 101])
    def test_capacity_bounds(self, db, make_class, capacity):
        gym_class = make_class()
        with pytest.raises(ValidationError):
            class_booking.update_capacity(db, class_id=gym_class.id, new_capacity=capacity)


class TestCancelAndUpdate:
    def test_cancel_blocks_joins_and_notifies_registrants(self, db, make_class, make_user, admin):
        gym_class = make_class(name="Boxing")
        registrant = make_user("member", status="active")
        class_booking.join_class(db, class_id=gym_class.id, user_id=registrant.id)

        cancelled = class_booking.cancel_class(db, class_id=gym_class.id, actor=admin)
        assert cancelled.status == "cancelled"

        with pytest.raises(InvalidStateError, match="cancelled"):
            class_booking.join_class(
                db, class_id=gym_class.id, user_id=make_user("member", status="active").id
            )

        db.expire_all()
        titles = [n.title for n in db.query(Notification).filter(Notification.user_id == registrant.id).all()]
        assert "Class Cancelled" in titles

    def test_leave_is_allowed_from_cancelled_class(self, db, make_class, active_member, admin):
        gym_class = make_class()
        class_booking.join_class(db, class_id=gym_class.id, user_id=active_member.id)
        class_booking.cancel_class(db, class_id=gym_class.id, actor=admin)

        left = class_booking.leave_class(db, class_id=gym_class.id, user_id=active_member.id)
        assert left.status == "cancelled"
        assert left.registered_count == 0

    def test_reopen_rederives_status(self, db, make_class, active_member, admin):
        gym_class = make_class(capacity=1)
        class_booking.join_class(db, class_id=gym_class.id, user_id=active_member.id)
        class_booking.cancel_class(db, class_id=gym_class.id, actor=admin)

        reopened = class_booking.update_class(
            db, class_id=gym_class.id, actor=admin, changes={"status": "available"}
        )
        assert reopened.status == "full"

    def test_coach_can_edit_own_class_only(self, db, make_class, make_user):
        coach = make_user("coach", status="active")
        other_coach = make_user("coach", status="active")
        own = make_class(coach_id=coach.id, name="Own")
        other = make_class(coach_id=other_coach.id, name="Other")

        updated = class_booking.update_class(db, class_id=own.id, actor=coach, changes={"name": "Own Renamed"})
        assert updated.name == "Own Renamed"

        with pytest.raises(ForbiddenError):
            class_booking.update_class(db, class_id=other.id, actor=coach, changes={"name": "Nope"})

    def test_coach_cannot_reassign_class(self, db, make_class, make_user):
        coach = make_user("coach", status="active")
        other_coach = make_user("coach", status="active")
        own = make_class(coach_id=coach.id)

        with pytest.raises(ForbiddenError):
            class_booking.update_class(db, class_id=own.id, actor=coach, changes={"coach_id": other_coach.id})

    def test_empty_update_is_rejected(self, db, make_class, admin):
        gym_class = make_class()
        with pytest.raises(ValidationError):
            class_booking.update_class(db, class_id=gym_class.id, actor=admin, changes={})

    @pytest.mark.parametrize("field", ["name", "price", "is_active", "duration_minutes", "schedule_days", "capacity"])
    def test_required_field_cannot_be_nulled(self, db, make_class, admin, field):
        gym_class = make_class(name="Keep Me")
        version = gym_class.version_id
        with pytest.raises(ValidationError, match=f"{field} cannot be null"):
            class_booking.update_class(db, class_id=gym_class.id, actor=admin, changes={field: None})

        db.expire_all()
        stored = db.get(GymClass, gym_class.id)
        assert stored.name == "Keep Me"
        assert stored.version_id == version

    def test_reopen_of_empty_class_is_available(self, db, make_class, admin):
        gym_class = make_class(capacity=2)
        class_booking.cancel_class(db, class_id=gym_class.id, actor=admin)

        reopened = class_booking.update_class(
            db, class_id=gym_class.id, actor=admin, changes={"status": "available"}
        )
        assert reopened.status == "available"

    def test_delete_removes_registrations(self, db, make_class, active_member):
        gym_class = make_class()
        class_booking.join_class(db, class_id=gym_class.id, user_id=active_member.id)

        class_booking.delete_class(db, class_id=gym_class.id)

        db.expire_all()
        assert db.get(GymClass, gym_class.id) is None
        assert db.query(ClassRegistration).filter(ClassRegistration.class_id == gym_class.id).count() == 0


class TestHelpers:
    def test_can_join_requires_active_member_and_open_seat(self, db, make_class, make_user):
        gym_class = make_class(capacity=1)
        active = make_user("member", status="active")
        pending = make_user("member")

        assert class_booking.can_join(_reload(db, gym_class.id), active)
        assert not class_booking.can_join(_reload(db, gym_class.id), pending)

        class_booking.join_class(db, class_id=gym_class.id, user_id=active.id)
        refreshed = _reload(db, gym_class.id)
        assert class_booking.is_registered(refreshed, active.id)
        assert not class_booking.can_join(refreshed, active)
        assert not class_booking.can_join(refreshed, make_user("member", status="active"))
