"""
Front-desk attendance endpoints.
"""
from uuid import uuid4

from fastapi.testclient import TestClient

from core.security import create_checkin_code
from main import app

client = TestClient(app)


class TestCheckIn:
    def test_check_in_and_out(self, active_member, staff, headers_for):
        resp = client.post(
            "/v1/attendance/check-in", json={"user_id": str(active_member.id)}, headers=headers_for(staff)
        )
        assert resp.status_code == 201
        assert resp.json()["data"]["attendance"]["recorded_by"] == str(staff.id)

        current = client.get("/v1/attendance/current", headers=headers_for(staff)).json()
        assert current["data"]["count"] == 1

        out = client.post(
            "/v1/attendance/check-out", json={"user_id": str(active_member.id)}, headers=headers_for(staff)
        )
        assert out.status_code == 200
        assert out.json()["data"]["attendance"]["check_out_time"] is not None
        assert out.json()["data"]["duration_minutes"] >= 0

        history = client.get("/v1/attendance/my", headers=headers_for(active_member)).json()
        assert history["data"]["pagination"]["total"] == 1

    def test_check_in_with_membership_card_code(self, active_member, staff, headers_for):
        code = create_checkin_code(active_member.id, uuid4())
        resp = client.post("/v1/attendance/check-in", json={"checkin_code": code}, headers=headers_for(staff))
        assert resp.status_code == 201
        assert resp.json()["data"]["user"]["id"] == str(active_member.id)

    def test_invalid_code(self, staff, headers_for):
        resp = client.post("/v1/attendance/check-in", json={"checkin_code": "forged"}, headers=headers_for(staff))
        assert resp.status_code == 400

    def test_double_check_in_conflicts(self, active_member, staff, headers_for):
        payload = {"user_id": str(active_member.id)}
        assert client.post("/v1/attendance/check-in", json=payload, headers=headers_for(staff)).status_code == 201
        resp = client.post("/v1/attendance/check-in", json=payload, headers=headers_for(staff))
        assert resp.status_code == 400
        assert resp.json()["error"] == "CONFLICT"

    def test_member_without_membership_cannot_check_in(self, member, staff, headers_for):
        resp = client.post("/v1/attendance/check-in", json={"user_id": str(member.id)}, headers=headers_for(staff))
        assert resp.status_code == 400
        assert resp.json()["error"] == "INVALID_STATE"

    def test_check_out_without_open_visit(self, active_member, staff, headers_for):
        resp = client.post(
            "/v1/attendance/check-out", json={"user_id": str(active_member.id)}, headers=headers_for(staff)
        )
        assert resp.status_code == 404

    def test_members_cannot_use_front_desk(self, active_member, headers_for):
        resp = client.post(
            "/v1/attendance/check-in", json={"user_id": str(active_member.id)}, headers=headers_for(active_member)
        )
        assert resp.status_code == 403
