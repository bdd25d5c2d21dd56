from fastapi.testclient import TestClient

from main import app

client = TestClient(app)


def test_assign_list_and_end(admin, coach, active_member, headers_for):
    resp = client.post(
        "/v1/coach-assignments",
        json={"coach_id": str(coach.id), "user_id": str(active_member.id), "notes": "Strength block"},
        headers=headers_for(admin),
    )
    assert resp.status_code == 201
    assignment_id = resp.json()["data"]["assignment"]["id"]

    duplicate = client.post(
        "/v1/coach-assignments",
        json={"coach_id": str(coach.id), "user_id": str(active_member.id)},
        headers=headers_for(admin),
    )
    assert duplicate.status_code == 400
    assert duplicate.json()["error"] == "CONFLICT"

    members = client.get("/v1/coach-assignments/my-members", headers=headers_for(coach)).json()
    assert [a["user_id"] for a in members["data"]["assignments"]] == [str(active_member.id)]

    coaches = client.get("/v1/coach-assignments/my-coaches", headers=headers_for(active_member)).json()
    assert [a["coach_id"] for a in coaches["data"]["assignments"]] == [str(coach.id)]

    ended = client.patch(f"/v1/coach-assignments/{assignment_id}/end", headers=headers_for(admin))
    assert ended.status_code == 200
    assert ended.json()["data"]["assignment"]["is_active"] is False

    again = client.post(
        "/v1/coach-assignments",
        json={"coach_id": str(coach.id), "user_id": str(active_member.id)},
        headers=headers_for(admin),
    )
    assert again.status_code == 201


def test_non_coach_cannot_be_assigned(admin, staff, active_member, headers_for):
    resp = client.post(
        "/v1/coach-assignments",
        json={"coach_id": str(staff.id), "user_id": str(active_member.id)},
        headers=headers_for(admin),
    )
    assert resp.status_code == 400
