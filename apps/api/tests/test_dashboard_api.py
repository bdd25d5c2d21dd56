from fastapi.testclient import TestClient

from main import app
from models import GymClass

client = TestClient(app)


def test_summary(db, active_member, member, staff, headers_for):
    db.add(GymClass(name="Pilates", capacity=8, schedule_days=[], price=0))
    db.commit()

    resp = client.get("/v1/dashboard", headers=headers_for(staff))

    assert resp.status_code == 200
    summary = resp.json()["data"]["summary"]
    assert summary["users_by_status"]["active"] == 2  # active_member + staff
    assert summary["subscriptions_by_status"] == {"confirmed": 1}
    assert summary["pending_requests"] == 0
    assert summary["revenue"] == 49.99
    assert summary["class_fill"][0]["name"] == "Pilates"
    assert summary["currently_checked_in"] == 0


def test_members_cannot_see_dashboard(active_member, headers_for):
    assert client.get("/v1/dashboard", headers=headers_for(active_member)).status_code == 403


def test_health():
    assert client.get("/health").json()["status"] == "healthy"
