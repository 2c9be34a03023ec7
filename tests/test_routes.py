from datetime import timedelta

import httpx
import pytest
from fastapi.testclient import TestClient

from healthgame.main import create_app
from healthgame.repositories.engine_repository import SupabaseEngineRepository
from healthgame.services.events.event_types import EventType, GameEvent, Priority
from healthgame.settings import EngineSettings
from tests.conftest import NOW, FakeClient


@pytest.fixture
def client(repo, clock):
    settings = EngineSettings(timezone="UTC", cron_token="s3cret")
    with TestClient(create_app(settings=settings, repo=repo, clock=clock)) as c:
        yield c


def _pending(repo, key="k1"):
    return repo.add_event(
        GameEvent(
            user_id="u1",
            event_type=EventType.MEDICATION,
            priority=Priority.URGENT,
            scheduled_time=NOW - timedelta(minutes=1),
            trigger_key=key,
        )
    )


def test_health(client):
    assert client.get("/health").json() == {"ok": True}
    res = client.get("/health/engine")
    assert res.status_code == 200
    assert res.json()["checks"]["ledger"] is True


def test_schedule_and_list_active(client, repo):
    repo.add_medication({"user_id": "u1", "medication_name": "Iron", "reminder_times": ["08:00"]})

    res = client.post("/events/schedule", json={"user_id": "u1"})
    assert res.status_code == 200
    body = res.json()
    assert body["ok"] is True
    assert body["data"]["medication"] == 8

    active = client.get("/events/active", params={"user_id": "u1"}).json()
    assert active["meta"]["count"] == 1
    assert active["data"][0]["event_type"] == "medication"


def test_complete_event(client, repo):
    event = _pending(repo)

    res = client.post(f"/events/{event.id}/complete", json={"user_id": "u1"})

    assert res.status_code == 200
    data = res.json()["data"]
    assert data["points_earned"] == 100
    assert data["experience_earned"] == 1000
    assert data["event"]["status"] == "completed"

    again = client.post(f"/events/{event.id}/complete", json={"user_id": "u1"}).json()["data"]
    assert again["already_completed"] is True


def test_complete_failures_use_error_envelope(client, repo):
    event = _pending(repo)

    missing = client.post("/events/nope/complete", json={"user_id": "u1"})
    assert missing.status_code == 404
    assert missing.json() == {"ok": False, "error": "not_found", "message": "Event nope not found"}

    bad = client.post(f"/events/{event.id}/complete", json={"user_id": "u1", "points": 0})
    assert bad.status_code == 400
    assert bad.json()["error"] == "invalid_input"


def test_activate(client, repo):
    event = _pending(repo)

    res = client.post(f"/events/{event.id}/activate", json={"user_id": "u1"})
    assert res.json()["data"]["status"] == "active"

    missing = client.post("/events/nope/activate", json={"user_id": "u1"})
    assert missing.status_code == 404
    assert missing.json()["error"] == "not_found"


def test_cron_requires_token(client, repo):
    repo.add_user("u1", NOW - timedelta(days=1))

    assert client.post("/cron/schedule-events").status_code == 401
    assert client.post("/cron/schedule-events", headers={"X-Cron-Token": "wrong"}).status_code == 401

    res = client.post("/cron/schedule-events", headers={"X-Cron-Token": "s3cret"})
    assert res.status_code == 200
    assert res.json()["data"]["processed_users"] == 1


def test_cron_not_configured(repo, clock):
    with TestClient(create_app(settings=EngineSettings(), repo=repo, clock=clock)) as c:
        assert c.post("/cron/schedule-events", headers={"X-Cron-Token": "x"}).status_code == 501


def test_feeding_routes(client):
    put = client.put(
        "/feeding/schedule",
        json={"user_id": "u1", "member_id": "baby", "feeding_interval_hours": 2.5},
    )
    assert put.status_code == 200
    assert put.json()["data"]["member_key"] == "baby"

    got = client.get("/feeding/schedule", params={"user_id": "u1", "member_id": "baby"}).json()
    assert got["data"]["feeding_interval_hours"] == 2.5

    fed = client.post("/feeding/complete", json={"user_id": "u1", "member_id": "baby"}).json()
    assert fed["data"]["last_feeding_time"] is not None

    gone = client.delete("/feeding/schedule", params={"user_id": "u1", "member_id": "baby"}).json()
    assert gone["data"]["is_active"] is False


def test_feeding_validation_and_missing(client):
    assert client.put("/feeding/schedule", json={"user_id": "u1", "feeding_interval_hours": 0}).status_code == 422

    missing = client.get("/feeding/schedule", params={"user_id": "u1"})
    assert missing.status_code == 404
    assert missing.json()["ok"] is False

    assert client.post("/feeding/complete", json={"user_id": "u1"}).status_code == 404


def test_validator_route(client, repo):
    event = _pending(repo)
    client.post(f"/events/{event.id}/complete", json={"user_id": "u1"})

    report = client.get("/validator/u1").json()["data"]

    assert report["success"] is True
    assert len(report["results"]) == 4


def test_status_route(client):
    res = client.post(
        "/status/derive",
        json={
            "health_score": 95,
            "health_status": "needs_attention",
            "has_disease": True,
            "health_score_delta": -1,
            "sleep_minutes": 312,
        },
    )

    assert res.json()["data"]["state"] == "sick"
    assert res.json()["data"]["intensity"] == 62


def test_unreachable_storage_maps_to_503(clock):
    repo = SupabaseEngineRepository(FakeClient(error=httpx.ConnectError("connection refused")))

    with TestClient(create_app(settings=EngineSettings(), repo=repo, clock=clock)) as c:
        res = c.get("/events/active", params={"user_id": "u1"})
        assert res.status_code == 503
        assert res.json()["error"] == "storage_unavailable"

        health = c.get("/health/engine")
        assert health.status_code == 503
        assert "events_error" in health.json()["checks"]
