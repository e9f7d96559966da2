from datetime import datetime, timezone

import jwt
import pytest

from gritful.core.config import settings

ALICE = {"X-User-Id": "alice"}
BOB = {"X-User-Id": "bob"}


def _today() -> str:
    return datetime.now(timezone.utc).date().isoformat()


@pytest.fixture
def challenge(client):
    response = client.post(
        "/v1/challenges",
        json={
            "name": "API Grit",
            "starts_at": _today(),
            "duration_days": 30,
            "email": "alice@example.com",
            "metrics": [
                {"name": "Run", "type": "boolean", "points": 3},
                {"name": "Review", "type": "boolean", "points": 10, "frequency": "weekly"},
            ],
        },
        headers=ALICE,
    )
    assert response.status_code == 201
    return response.json()


def _join(client, challenge, headers=BOB, **body):
    response = client.post(f"/v1/challenges/{challenge['id']}/join", json=body or None, headers=headers)
    assert response.status_code == 200
    return response.json()


def test_healthz(client):
    assert client.get("/healthz").json() == {"status": "ok"}
    assert client.get("/readyz").status_code == 200


def test_missing_identity_is_401_with_envelope(client):
    response = client.get("/v1/challenges")
    assert response.status_code == 401
    body = response.json()
    assert body["error"]["code"] == "unauthorized"
    assert body["error"]["request_id"] == response.headers["x-request-id"]


def test_bearer_token_identifies_caller(client, monkeypatch, challenge):
    monkeypatch.setattr(settings, "AUTH_JWT_SECRET", "test-secret")
    token = jwt.encode({"sub": "alice"}, "test-secret", algorithm="HS256")

    response = client.get("/v1/challenges", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 200
    assert [c["id"] for c in response.json()["challenges"]] == [challenge["id"]]

    # The development header is ignored once tokens are required
    assert client.get("/v1/challenges", headers=ALICE).status_code == 401
    bad = client.get("/v1/challenges", headers={"Authorization": "Bearer not-a-token"})
    assert bad.status_code == 401


def test_create_and_list(client, challenge):
    assert challenge["state"]["state"] == "active"
    listed = client.get("/v1/challenges?view=active", headers=ALICE).json()
    assert [c["id"] for c in listed["challenges"]] == [challenge["id"]]
    assert client.get("/v1/challenges?view=history", headers=ALICE).json()["challenges"] == []


def test_unknown_timezone_is_rejected(client):
    response = client.post(
        "/v1/challenges",
        json={
            "name": "Bad zone",
            "starts_at": _today(),
            "tz": "Mars/Olympus_Mons",
            "metrics": [{"name": "Run", "type": "boolean"}],
        },
        headers=ALICE,
    )
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "invalid_timezone"


def test_unknown_challenge_is_404(client):
    response = client.get("/v1/challenges/nope", headers={"x-request-id": "req-123"})
    assert response.status_code == 404
    assert response.json()["error"] == {"code": "not_found", "message": "Challenge not found", "request_id": "req-123"}
    assert response.headers["x-request-id"] == "req-123"


def test_entry_flow(client, challenge):
    participant = _join(client, challenge)
    tasks = {t["name"]: t["id"] for t in challenge["metrics"]}

    saved = client.post(
        f"/v1/participants/{participant['id']}/entries",
        json={"metric_data": {tasks["Run"]: True}, "is_completed": True},
        headers=BOB,
    )
    assert saved.status_code == 200
    assert saved.json()["totals"]["current_streak"] == 1

    # Someone else's participation
    forbidden = client.post(
        f"/v1/participants/{participant['id']}/entries",
        json={"metric_data": {}, "is_completed": True},
        headers=ALICE,
    )
    assert forbidden.status_code == 403
    assert forbidden.json()["error"]["code"] == "forbidden"

    summary = client.get(f"/v1/participants/{participant['id']}/summary").json()
    assert summary["total_points"] == 3
    assert len(summary["entries"]) == 1

    calendar = client.get(
        f"/v1/participants/{participant['id']}/calendar", params={"start": _today(), "end": _today()}
    ).json()
    assert len(calendar["days"]) == 1
    assert calendar["days"][0]["status"] in ("completed", "all_complete", "late")

    deleted = client.delete(f"/v1/entries/{saved.json()['entry']['id']}", headers=BOB)
    assert deleted.json()["totals"]["total_points"] == 0


def test_future_entry_is_a_validation_error(client, challenge):
    participant = _join(client, challenge)
    response = client.post(
        f"/v1/participants/{participant['id']}/entries",
        json={"metric_data": {}, "is_completed": True, "target_date": "2999-01-01"},
        headers=BOB,
    )
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "validation_error"


def test_periodic_completion_conflict(client, challenge):
    participant = _join(client, challenge)
    review = next(t["id"] for t in challenge["metrics"] if t["frequency"] == "weekly")
    url = f"/v1/participants/{participant['id']}/periodic/{review}"

    assert client.post(url, json={"value": True}, headers=BOB).status_code == 201
    duplicate = client.post(url, json={"value": True}, headers=BOB)
    assert duplicate.status_code == 409
    assert duplicate.json()["error"]["code"] == "duplicate_completion"

    undone = client.delete(url, headers=BOB).json()
    assert undone["deleted"] is True
    assert undone["totals"]["total_points"] == 0


def test_creator_tools(client, challenge):
    _join(client, challenge, email="bob@example.com")

    added = client.post(
        f"/v1/challenges/{challenge['id']}/tasks",
        json={"name": "Essay", "type": "text", "points": 5, "frequency": "onetime"},
        headers=ALICE,
    )
    assert added.status_code == 201
    assert added.json()["frequency"] == "onetime"

    preset = client.post(
        f"/v1/challenges/{challenge['id']}/tasks",
        json={"name": "Sign up", "type": "boolean", "frequency": "onetime", "deadline_preset": "today"},
        headers=ALICE,
    )
    assert preset.json()["deadline"] == _today()

    queued = client.post(
        f"/v1/challenges/{challenge['id']}/updates",
        json={"message": "Keep it up"},
        headers=ALICE,
    )
    assert queued.status_code == 202
    assert queued.json() == {"queued": 1}

    # Fixed-length challenges cannot be ended early
    ended = client.post(f"/v1/challenges/{challenge['id']}/end", headers=ALICE)
    assert ended.status_code == 409
    assert ended.json()["error"]["code"] == "challenge_not_ongoing"

    participants = client.get(f"/v1/challenges/{challenge['id']}/participants").json()["participants"]
    assert {p["user_id"] for p in participants} == {"alice", "bob"}


def test_period_lookup(client):
    response = client.get("/v1/periods", params={"frequency": "weekly", "date": "2025-01-22"})
    assert response.status_code == 200
    body = response.json()
    assert body["period_start"] == "2025-01-20"
    assert body["period_end"] == "2025-01-26"
    assert body["label"] == "Week of Jan 20"

    assert client.get("/v1/periods", params={"frequency": "daily"}).status_code == 422


def test_batch_tasks_and_settings_routes(client, challenge):
    batch = client.post(
        f"/v1/challenges/{challenge['id']}/tasks/batch",
        json={
            "tasks": [
                {"name": "Stretch", "type": "boolean"},
                {"name": "Sign up", "type": "boolean", "frequency": "onetime", "deadline_preset": "today"},
            ]
        },
        headers=ALICE,
    )
    assert batch.status_code == 201
    added = batch.json()["tasks"]
    assert [t["order"] for t in added] == [2, 3]
    assert added[1]["deadline"] == _today()

    run = next(t for t in challenge["metrics"] if t["name"] == "Run")
    updated = client.patch(
        f"/v1/challenges/{challenge['id']}",
        json={"name": "API Grit v2", "metrics": [{"id": run["id"], "name": "Run", "type": "boolean", "points": 4}]},
        headers=ALICE,
    )
    assert updated.status_code == 200
    assert updated.json()["name"] == "API Grit v2"
    assert [t["id"] for t in updated.json()["metrics"]] == [run["id"]]

    forbidden = client.patch(f"/v1/challenges/{challenge['id']}", json={"grace_period_days": 1}, headers=BOB)
    assert forbidden.status_code == 403


def test_leave_and_delete_routes(client, challenge):
    _join(client, challenge)

    left = client.post(f"/v1/challenges/{challenge['id']}/leave", headers=BOB)
    assert left.status_code == 200
    assert left.json()["left"] is True
    assert client.post(f"/v1/challenges/{challenge['id']}/leave", headers=BOB).status_code == 404

    assert client.delete(f"/v1/challenges/{challenge['id']}", headers=BOB).status_code == 403
    deleted = client.delete(f"/v1/challenges/{challenge['id']}", headers=ALICE)
    assert deleted.json() == {"deleted": True, "challenge_id": challenge["id"]}
    assert client.get(f"/v1/challenges/{challenge['id']}").status_code == 404
