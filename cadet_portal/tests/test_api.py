"""
cadet_portal/tests/test_api.py
API contract tests

Verifies routing, authentication, the error envelope and the end-to-end
lifecycle over HTTP. The store and cache are swapped for the test fixtures
through dependency overrides; the bearer tokens are real.
"""
from datetime import date, timedelta

import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from cadet_portal.database import get_db
from cadet_portal.main import app
from cadet_portal.rate_limit import limiter
from cadet_portal.rbac import create_access_token, get_cache


@pytest_asyncio.fixture
async def client(session_factory, cache):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_cache] = lambda: cache
    limiter.reset()

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


def auth(principal) -> dict:
    return {"Authorization": f"Bearer {create_access_token(principal.user_id)}"}


def task_payload(**overrides) -> dict:
    payload = {
        "title": "Write an essay",
        "description": "500 words",
        "category": "study",
        "points": 10,
        "deadline": (date.today() + timedelta(days=7)).isoformat(),
        "max_participants": 1,
        "abandon_penalty": 5,
    }
    payload.update(overrides)
    return payload


def assert_error(response, status_code: int, code: str):
    assert response.status_code == status_code
    data = response.json()
    assert data["success"] is False
    assert data["code"] == code
    assert "message" in data


class TestHealthAndAuth:

    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    async def test_error_summary(self, client):
        response = await client.get("/api/errors/health")

        assert response.status_code == 200
        body = response.json()
        assert set(body["response_structure"]) == {"success", "error", "message", "code", "details"}
        for code in ("CAPACITY_EXCEEDED", "ALREADY_CLAIMED", "NOT_CLAIMED", "STATE_TRANSITION_INVALID"):
            assert code in body["error_codes"]

    async def test_missing_token(self, client):
        response = await client.get("/api/tasks")

        assert_error(response, 401, "AUTH_REQUIRED")

    async def test_garbage_token(self, client):
        response = await client.get("/api/tasks", headers={"Authorization": "Bearer not-a-jwt"})

        assert_error(response, 401, "AUTH_INVALID")

    async def test_token_for_unknown_user(self, client):
        response = await client.get("/api/tasks", headers={"Authorization": f"Bearer {create_access_token(424242)}"})

        assert_error(response, 401, "AUTH_INVALID")


class TestCatalogRoutes:

    async def test_create_list_update_delete(self, client, task_admin, principal_c):
        created = await client.post("/api/tasks", json=task_payload(), headers=auth(task_admin))
        assert created.status_code == 201
        task_id = created.json()["id"]

        listed = await client.get("/api/tasks", headers=auth(principal_c))
        assert listed.status_code == 200
        assert [t["id"] for t in listed.json()["tasks"]] == [task_id]

        patched = await client.patch(f"/api/tasks/{task_id}", json={"points": 12}, headers=auth(task_admin))
        assert patched.status_code == 200
        assert patched.json()["points"] == 12

        # The cached list was evicted by the update
        listed = await client.get("/api/tasks", headers=auth(principal_c))
        assert listed.json()["tasks"][0]["points"] == 12

        deleted = await client.delete(f"/api/tasks/{task_id}", headers=auth(task_admin))
        assert deleted.status_code == 200

        missing = await client.get(f"/api/tasks/{task_id}", headers=auth(principal_c))
        assert_error(missing, 404, "TASK_NOT_FOUND")

    async def test_cadet_cannot_create_tasks(self, client, principal_c, permissions):
        response = await client.post("/api/tasks", json=task_payload(), headers=auth(principal_c))

        assert_error(response, 403, "FORBIDDEN")

    async def test_invalid_payload(self, client, task_admin):
        response = await client.post("/api/tasks", json=task_payload(points=-1), headers=auth(task_admin))

        assert_error(response, 422, "VALIDATION_ERROR")


class TestLifecycleRoutes:

    async def test_essay_flow(self, client, essay_task, principal_c, principal_d, task_admin):
        task_id = essay_task.id

        claimed = await client.post(f"/api/tasks/{task_id}/claim", headers=auth(principal_c))
        assert claimed.status_code == 200
        assert claimed.json()["current_participants"] == 1
        submission_id = claimed.json()["submission"]["id"]

        blocked = await client.post(f"/api/tasks/{task_id}/claim", headers=auth(principal_d))
        assert_error(blocked, 409, "CAPACITY_EXCEEDED")

        submitted = await client.post(
            f"/api/tasks/{task_id}/submit",
            json={"submission_text": "done"},
            headers=auth(principal_c)
        )
        assert submitted.status_code == 200
        assert submitted.json()["submission"]["status"] == "submitted"

        queue = await client.get("/api/submissions/review-queue", headers=auth(task_admin))
        assert queue.status_code == 200
        assert [s["id"] for s in queue.json()["submissions"]] == [submission_id]

        reviewed = await client.post(
            f"/api/submissions/{submission_id}/review",
            json={"decision": "completed", "feedback": "Good", "points_awarded": 8},
            headers=auth(task_admin)
        )
        assert reviewed.status_code == 200
        body = reviewed.json()
        assert body["submission"]["status"] == "completed"
        assert body["score_applied"] is True
        assert body["ledger"]["study_score"] == 8

        history = await client.get(f"/api/cadets/{principal_c.cadet_id}/score-history", headers=auth(principal_c))
        assert history.status_code == 200
        assert [h["points"] for h in history.json()["history"]] == [8]
        assert history.json()["daily_change"] == 8

        board = await client.get("/api/scores/leaderboard", headers=auth(principal_d))
        assert board.json()["cadets"][0]["id"] == principal_c.cadet_id
        assert board.json()["cadets"][0]["rank"] == 1

    async def test_claim_twice_is_conflict(self, client, essay_task, principal_c):
        task_id = essay_task.id
        await client.post(f"/api/tasks/{task_id}/claim", headers=auth(principal_c))

        again = await client.post(f"/api/tasks/{task_id}/claim", headers=auth(principal_c))

        assert_error(again, 409, "ALREADY_CLAIMED")

    async def test_abandon(self, client, essay_task, principal_c):
        task_id = essay_task.id
        await client.post(f"/api/tasks/{task_id}/claim", headers=auth(principal_c))

        response = await client.post(f"/api/tasks/{task_id}/abandon", headers=auth(principal_c))

        assert response.status_code == 200
        assert response.json()["penalty_applied"] == 5
        assert response.json()["current_participants"] == 0

    async def test_submit_without_claim(self, client, essay_task, principal_c):
        response = await client.post(
            f"/api/tasks/{essay_task.id}/submit",
            json={"submission_text": "done"},
            headers=auth(principal_c)
        )

        assert_error(response, 409, "NOT_CLAIMED")

    async def test_admin_must_name_the_cadet(self, client, essay_task, task_admin, principal_c):
        task_id = essay_task.id

        missing = await client.post(f"/api/tasks/{task_id}/claim", headers=auth(task_admin))
        assert_error(missing, 400, "MISSING_FIELD")

        on_behalf = await client.post(
            f"/api/tasks/{task_id}/claim",
            json={"cadet_id": principal_c.cadet_id},
            headers=auth(task_admin)
        )
        assert on_behalf.status_code == 200
        assert on_behalf.json()["submission"]["cadet_id"] == principal_c.cadet_id

    async def test_review_of_taken_submission(self, client, essay_task, principal_c, task_admin):
        claimed = await client.post(f"/api/tasks/{essay_task.id}/claim", headers=auth(principal_c))
        submission_id = claimed.json()["submission"]["id"]

        response = await client.post(
            f"/api/submissions/{submission_id}/review",
            json={"decision": "completed", "points_awarded": 8},
            headers=auth(task_admin)
        )

        assert_error(response, 409, "STATE_TRANSITION_INVALID")

    async def test_review_decision_validated(self, client, task_admin):
        response = await client.post(
            "/api/submissions/1/review",
            json={"decision": "taken"},
            headers=auth(task_admin)
        )

        assert_error(response, 400, "INVALID_INPUT")

    async def test_cadet_cannot_read_another_cadets_submissions(self, client, principal_c, principal_d, permissions):
        response = await client.get(f"/api/cadets/{principal_d.cadet_id}/submissions", headers=auth(principal_c))

        assert_error(response, 403, "FORBIDDEN")

    async def test_cadet_reads_own_submissions(self, client, essay_task, principal_c):
        await client.post(f"/api/tasks/{essay_task.id}/claim", headers=auth(principal_c))

        response = await client.get(f"/api/cadets/{principal_c.cadet_id}/submissions", headers=auth(principal_c))

        assert response.status_code == 200
        submissions = response.json()["submissions"]
        assert len(submissions) == 1
        assert submissions[0]["task"]["title"] == "Write an essay"


class TestScoreRoutes:

    async def test_award_within_granted_category(self, client, study_admin, principal_c):
        response = await client.post(
            "/api/scores/award",
            json={"cadet_id": principal_c.cadet_id, "category": "study", "points": 4, "description": "Quiz"},
            headers=auth(study_admin)
        )

        assert response.status_code == 200
        assert response.json()["study_score"] == 4
        assert response.json()["total_score"] == 4

    async def test_award_outside_granted_category(self, client, study_admin, principal_c):
        response = await client.post(
            "/api/scores/award",
            json={"cadet_id": principal_c.cadet_id, "category": "events", "points": 4, "description": "Parade"},
            headers=auth(study_admin)
        )

        assert_error(response, 403, "FORBIDDEN")

    async def test_award_unknown_cadet(self, client, super_admin):
        response = await client.post(
            "/api/scores/award",
            json={"cadet_id": 999, "category": "study", "points": 4, "description": "Quiz"},
            headers=auth(super_admin)
        )

        assert_error(response, 404, "CADET_NOT_FOUND")

    async def test_analytics(self, client, super_admin, principal_c, principal_d):
        await client.post(
            "/api/scores/award",
            json={"cadet_id": principal_c.cadet_id, "category": "events", "points": 6, "description": "Parade"},
            headers=auth(super_admin)
        )

        response = await client.get("/api/scores/analytics", headers=auth(principal_d))

        assert response.status_code == 200
        body = response.json()
        assert body["average_total_score"] == 3
        assert body["category_averages"]["events"] == 6
        assert body["daily_changes"] == {str(principal_c.cadet_id): 6}


class TestTaskSubmissionsRoute:

    async def test_task_manager_lists_submissions(self, client, essay_task, principal_c, task_admin):
        task_id = essay_task.id
        await client.post(f"/api/tasks/{task_id}/claim", headers=auth(principal_c))

        response = await client.get(f"/api/tasks/{task_id}/submissions", headers=auth(task_admin))

        assert response.status_code == 200
        assert [s["cadet_id"] for s in response.json()["submissions"]] == [principal_c.cadet_id]

    async def test_cadet_is_refused(self, client, essay_task, principal_c, permissions):
        response = await client.get(f"/api/tasks/{essay_task.id}/submissions", headers=auth(principal_c))

        assert_error(response, 403, "FORBIDDEN")

    async def test_unknown_task(self, client, task_admin):
        response = await client.get("/api/tasks/999/submissions", headers=auth(task_admin))

        assert_error(response, 404, "TASK_NOT_FOUND")


class TestAllSubmissionsRoute:

    async def test_lists_every_submission_with_task_and_cadet(
        self, client, task_factory, principal_c, principal_d, task_admin
    ):
        task = await task_factory(max_participants=0)
        task_id = task.id
        await client.post(f"/api/tasks/{task_id}/claim", headers=auth(principal_c))
        await client.post(f"/api/tasks/{task_id}/claim", headers=auth(principal_d))
        await client.post(
            f"/api/tasks/{task_id}/submit",
            json={"submission_text": "done"},
            headers=auth(principal_d)
        )

        everything = await client.get("/api/submissions", headers=auth(task_admin))
        assert everything.status_code == 200
        body = everything.json()
        assert body["count"] == 2
        assert [s["cadet"]["name"] for s in body["submissions"]] == ["Cadet D", "Cadet C"]
        assert body["submissions"][0]["task"]["id"] == task_id

        submitted = await client.get("/api/submissions", params={"status": "submitted"}, headers=auth(task_admin))
        assert [s["cadet_id"] for s in submitted.json()["submissions"]] == [principal_d.cadet_id]

    async def test_unknown_status_filter(self, client, task_admin):
        response = await client.get("/api/submissions", params={"status": "approved"}, headers=auth(task_admin))

        assert_error(response, 422, "VALIDATION_ERROR")

    async def test_cadet_is_refused(self, client, principal_c, permissions):
        response = await client.get("/api/submissions", headers=auth(principal_c))

        assert_error(response, 403, "FORBIDDEN")
