from fastapi.testclient import TestClient

from core.security import create_checkin_code, decode_access_token, decode_checkin_code
from main import app

client = TestClient(app)


class TestAuth:
    def test_register_login_me(self):
        resp = client.post(
            "/v1/auth/register",
            json={"name": "Sam Ortiz", "email": "Sam@Example.com", "password": "correct-horse"},
        )
        assert resp.status_code == 201
        body = resp.json()
        assert body["data"]["user"]["email"] == "sam@example.com"
        assert body["data"]["user"]["role"] == "member"
        assert body["data"]["user"]["status"] == "pending_subscription"

        login = client.post("/v1/auth/login", json={"email": "sam@example.com", "password": "correct-horse"})
        assert login.status_code == 200
        token = login.json()["data"]["token"]

        me = client.get("/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert me.status_code == 200
        assert me.json()["data"]["user"]["name"] == "Sam Ortiz"

    def test_duplicate_email(self):
        payload = {"name": "A", "email": "dup@example.com", "password": "password123"}
        assert client.post("/v1/auth/register", json=payload).status_code == 201
        resp = client.post("/v1/auth/register", json=payload)
        assert resp.status_code == 400
        assert resp.json()["error"] == "CONFLICT"

    def test_wrong_password(self):
        client.post("/v1/auth/register", json={"name": "B", "email": "b@example.com", "password": "password123"})
        resp = client.post("/v1/auth/login", json={"email": "b@example.com", "password": "nope-nope"})
        assert resp.status_code == 401
        assert resp.json() == {"success": False, "message": "Invalid email or password", "error": "UNAUTHORIZED"}

    def test_short_password_rejected(self):
        resp = client.post("/v1/auth/register", json={"name": "C", "email": "c@example.com", "password": "short"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "VALIDATION_ERROR"

    def test_deactivated_account_is_forbidden(self, make_user, headers_for):
        user = make_user("member", is_active=False)
        resp = client.get("/v1/auth/me", headers=headers_for(user))
        assert resp.status_code == 403


class TestCheckinCodes:
    def test_round_trip(self, member):
        from uuid import uuid4

        code = create_checkin_code(member.id, uuid4())
        assert decode_checkin_code(code) == member.id

    def test_checkin_code_is_not_a_bearer_token(self, member):
        from uuid import uuid4

        code = create_checkin_code(member.id, uuid4())
        assert decode_access_token(code) is None
        resp = client.get("/v1/auth/me", headers={"Authorization": f"Bearer {code}"})
        assert resp.status_code == 401

    def test_garbage_code(self):
        assert decode_checkin_code("not-a-jwt") is None
