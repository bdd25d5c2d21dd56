from fastapi.testclient import TestClient

from main import app

client = TestClient(app)


def _plan_payload(**overrides):
    payload = {
        "name": "Quarterly",
        "description": "Three months of access",
        "duration_months": 3,
        "price": 129.0,
        "features": ["Gym floor", " Sauna ", ""],
    }
    payload.update(overrides)
    return payload


class TestPlanCatalog:
    def test_admin_creates_plan(self, admin, headers_for):
        resp = client.post("/v1/plans", json=_plan_payload(), headers=headers_for(admin))
        assert resp.status_code == 201
        plan = resp.json()["data"]["plan"]
        assert plan["features"] == ["Gym floor", "Sauna"]
        assert plan["price"] == 129.0

    def test_duplicate_name(self, admin, headers_for):
        client.post("/v1/plans", json=_plan_payload(), headers=headers_for(admin))
        resp = client.post("/v1/plans", json=_plan_payload(), headers=headers_for(admin))
        assert resp.status_code == 400
        assert resp.json()["error"] == "CONFLICT"

    def test_staff_cannot_create(self, staff, headers_for):
        assert client.post("/v1/plans", json=_plan_payload(), headers=headers_for(staff)).status_code == 403

    def test_public_listing_hides_inactive(self, make_plan, staff, headers_for):
        make_plan(name="Active")
        make_plan(name="Retired", is_active=False)

        public = client.get("/v1/plans").json()
        assert [p["name"] for p in public["data"]["plans"]] == ["Active"]

        for_staff = client.get(
            "/v1/plans", params={"include_inactive": True}, headers=headers_for(staff)
        ).json()
        assert {p["name"] for p in for_staff["data"]["plans"]} == {"Active", "Retired"}

    def test_delete_plan_in_use_conflicts(self, member, plan, admin, headers_for):
        client.post(
            "/v1/subscriptions",
            json={"plan_id": str(plan.id), "payment_method": "cash"},
            headers=headers_for(member),
        )
        resp = client.delete(f"/v1/plans/{plan.id}", headers=headers_for(admin))
        assert resp.status_code == 400
        assert resp.json()["error"] == "CONFLICT"

    def test_delete_plan_with_history_deactivates(self, member, plan, admin, staff, headers_for):
        created = client.post(
            "/v1/subscriptions",
            json={"plan_id": str(plan.id), "payment_method": "cash"},
            headers=headers_for(member),
        ).json()["data"]["subscription"]
        client.patch(f"/v1/subscriptions/{created['id']}/reject", json={}, headers=headers_for(staff))

        resp = client.delete(f"/v1/plans/{plan.id}", headers=headers_for(admin))
        assert resp.status_code == 200
        assert resp.json()["data"]["outcome"] == "deactivated"

    def test_delete_unused_plan(self, plan, admin, headers_for):
        resp = client.delete(f"/v1/plans/{plan.id}", headers=headers_for(admin))
        assert resp.json()["data"]["outcome"] == "deleted"
        assert client.get(f"/v1/plans/{plan.id}").status_code == 404

    def test_update_rejects_null_required_field(self, plan, admin, headers_for):
        resp = client.put(f"/v1/plans/{plan.id}", json={"name": None}, headers=headers_for(admin))
        assert resp.status_code == 400
        assert resp.json()["message"] == "name cannot be null"

        resp = client.put(f"/v1/plans/{plan.id}", json={"description": None}, headers=headers_for(admin))
        assert resp.status_code == 200
        assert resp.json()["data"]["plan"]["name"] == "Monthly"
