"""Tests for the admin API endpoints."""

from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from pulse_checkin.config import settings
from pulse_checkin.db.database import get_session
from pulse_checkin.main import create_app
from pulse_checkin.scheduler import TickReport
from pulse_checkin.sessions.engine import LaunchResult

AUTH = {"Authorization": "Bearer test-token"}


@pytest.fixture
def api_app(session_factory, monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_API_TOKEN", "test-token")
    app = create_app()

    async def override_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    return app


@pytest_asyncio.fixture
async def client(api_app):
    """Create an async test client."""
    transport = ASGITransport(app=api_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.mark.asyncio
class TestAuth:
    async def test_missing_token_rejected(self, client):
        response = await client.get("/admin/config")
        assert response.status_code == 401

    async def test_wrong_token_rejected(self, client):
        response = await client.get("/admin/config", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    async def test_unconfigured_token_locks_api(self, client, monkeypatch):
        monkeypatch.setattr(settings, "ADMIN_API_TOKEN", "")
        monkeypatch.setattr(settings, "DEBUG", False)

        response = await client.get("/admin/config", headers=AUTH)

        assert response.status_code == 503

    async def test_debug_without_token_is_open(self, client, monkeypatch):
        monkeypatch.setattr(settings, "ADMIN_API_TOKEN", "")
        monkeypatch.setattr(settings, "DEBUG", True)

        response = await client.get("/admin/config")

        assert response.status_code == 200


@pytest.mark.asyncio
class TestConfigEndpoints:
    async def test_read_default_config(self, client):
        response = await client.get("/admin/config", headers=AUTH, params={"workspace_id": "T001"})

        assert response.status_code == 200
        data = response.json()
        assert data["slack_workspace_id"] == "T001"
        assert data["check_in_day"] == "thursday"
        assert data["reminder_times"] == ["09:00", "16:00"]

    async def test_update_config(self, client):
        response = await client.put(
            "/admin/config",
            headers=AUTH,
            json={"check_in_day": "Friday", "check_in_time": "10:00"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["check_in_day"] == "friday"
        assert data["check_in_time"] == "10:00"
        assert data["reminder_times"] == ["09:00", "16:00"]

    async def test_invalid_time_is_400(self, client):
        response = await client.put("/admin/config", headers=AUTH, json={"check_in_time": "2pm"})

        assert response.status_code == 400
        assert "2pm" in response.json()["detail"]


@pytest.mark.asyncio
class TestQuestionEndpoints:
    async def test_list_questions(self, client, seeded):
        response = await client.get("/admin/questions", headers=AUTH)

        assert response.status_code == 200
        roles = [q["role"] for q in response.json()]
        assert roles[:3] == ["rating", "went_well", "didnt_go_well"]
        assert set(roles[3:]) == {"rotating"}

    async def test_create_rotating_question(self, client, seeded):
        response = await client.post(
            "/admin/questions", headers=AUTH, json={"text": "What did you learn?"}
        )

        assert response.status_code == 201
        assert response.json()["role"] == "rotating"
        assert response.json()["queue_position"] == 5

    async def test_second_core_question_is_400(self, client, seeded):
        response = await client.post(
            "/admin/questions", headers=AUTH, json={"text": "Rate again", "role": "rating"}
        )

        assert response.status_code == 400
        assert "already exists" in response.json()["detail"]

    async def test_removing_sole_core_role_is_400(self, client, seeded):
        questions = (await client.get("/admin/questions", headers=AUTH)).json()
        rating_id = next(q["id"] for q in questions if q["role"] == "rating")

        response = await client.patch(
            f"/admin/questions/{rating_id}/role", headers=AUTH, json={"role": "rotating"}
        )

        assert response.status_code == 400
        assert "At least one active question of type 'rating' must exist" in response.json()["detail"]

    async def test_unknown_question_is_404(self, client, seeded):
        response = await client.patch(
            "/admin/questions/999/role", headers=AUTH, json={"role": "rotating"}
        )
        assert response.status_code == 404

    async def test_edit_question_text(self, client, seeded):
        questions = (await client.get("/admin/questions", headers=AUTH)).json()
        rotating_id = next(q["id"] for q in questions if q["role"] == "rotating")

        response = await client.patch(
            f"/admin/questions/{rotating_id}", headers=AUTH, json={"text": "  What surprised you?  "}
        )

        assert response.status_code == 200
        assert response.json()["text"] == "What surprised you?"

    async def test_deactivate_rotating_question_leaves_queue(self, client, seeded):
        questions = (await client.get("/admin/questions", headers=AUTH)).json()
        rotating_id = next(q["id"] for q in questions if q["role"] == "rotating")

        response = await client.patch(
            f"/admin/questions/{rotating_id}", headers=AUTH, json={"is_active": False}
        )

        assert response.status_code == 200
        assert response.json()["is_active"] is False
        assert response.json()["queue_position"] is None
        active = (await client.get("/admin/questions", headers=AUTH)).json()
        assert rotating_id not in [q["id"] for q in active]

    async def test_deactivating_sole_core_question_is_400(self, client, seeded):
        questions = (await client.get("/admin/questions", headers=AUTH)).json()
        went_well_id = next(q["id"] for q in questions if q["role"] == "went_well")

        response = await client.patch(
            f"/admin/questions/{went_well_id}", headers=AUTH, json={"is_active": False}
        )

        assert response.status_code == 400
        assert "went_well" in response.json()["detail"]

    async def test_edit_unknown_question_is_404(self, client, seeded):
        response = await client.patch("/admin/questions/999", headers=AUTH, json={"text": "Hi"})
        assert response.status_code == 404

    async def test_reorder(self, client, seeded):
        questions = (await client.get("/admin/questions", headers=AUTH)).json()
        rotating_ids = [q["id"] for q in questions if q["role"] == "rotating"]
        new_order = list(reversed(rotating_ids))

        response = await client.post(
            "/admin/questions/reorder", headers=AUTH, json={"question_ids": new_order}
        )

        assert response.status_code == 200
        assert [q["id"] for q in response.json()] == new_order
        assert [q["queue_position"] for q in response.json()] == list(range(len(new_order)))


@pytest.mark.asyncio
class TestUserEndpoints:
    async def test_create_user(self, client):
        response = await client.post(
            "/admin/users",
            headers=AUTH,
            json={"user_id": "U123", "display_name": "Kim", "timezone": "Europe/Prague"},
        )

        assert response.status_code == 201
        data = response.json()
        assert data["slack_user_id"] == "U123"
        assert data["timezone"] == "Europe/Prague"
        assert data["is_active"] is True

    async def test_create_user_with_manager(self, client, user):
        response = await client.post(
            "/admin/users", headers=AUTH, json={"user_id": "U124", "manager_id": "U001"}
        )

        assert response.status_code == 201
        assert response.json()["manager_id"] == user.id
        assert response.json()["timezone"] == "America/New_York"

    async def test_duplicate_user_is_400(self, client, user):
        response = await client.post("/admin/users", headers=AUTH, json={"user_id": "U001"})

        assert response.status_code == 400
        assert "already exists" in response.json()["detail"]

    async def test_unknown_timezone_is_rejected(self, client):
        response = await client.post(
            "/admin/users", headers=AUTH, json={"user_id": "U125", "timezone": "Mars/Olympus"}
        )
        assert response.status_code == 422

    async def test_deactivate_user(self, client, user):
        response = await client.post("/admin/users/U001/deactivate", headers=AUTH)

        assert response.status_code == 200
        assert response.json()["is_active"] is False

    async def test_deactivate_unknown_user_is_404(self, client):
        response = await client.post("/admin/users/U404/deactivate", headers=AUTH)
        assert response.status_code == 404


@pytest.mark.asyncio
class TestRuntimeEndpoints:
    async def test_trigger_without_bot_is_503(self, client):
        response = await client.post("/admin/trigger-checkin", headers=AUTH, json={"user_id": "U001"})
        assert response.status_code == 503

    async def test_tick_without_scheduler_is_503(self, client):
        response = await client.post("/admin/tick", headers=AUTH)
        assert response.status_code == 503

    async def test_trigger_launches_with_replace(self, client, api_app):
        engine = MagicMock()
        engine.launch = AsyncMock(return_value=LaunchResult(LaunchResult.STARTED, check_in_id=7))
        api_app.state.engine = engine

        response = await client.post("/admin/trigger-checkin", headers=AUTH, json={"user_id": "U001"})

        assert response.status_code == 200
        assert response.json() == {"status": "started", "check_in_id": 7}
        engine.launch.assert_awaited_once_with("U001", None)

    async def test_tick_returns_report(self, client, api_app):
        scheduler = MagicMock()
        scheduler.tick = AsyncMock(return_value=TickReport(launched=2, skipped=3))
        api_app.state.scheduler = scheduler

        response = await client.post("/admin/tick", headers=AUTH)

        assert response.status_code == 200
        data = response.json()
        assert data["launched"] == 2
        assert data["skipped"] == 3
        assert data["rotated"] is False
