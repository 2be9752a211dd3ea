"""HTTP API tests against an in-process orchestrator."""

import json

import pytest
from fastapi.testclient import TestClient

from backend.main import app
from genflow.jobs.models import UnitKind


@pytest.fixture
def client(orchestrator):
    app.state.orchestrator = orchestrator
    with TestClient(app) as c:
        yield c
    del app.state.orchestrator


def _events(body: str) -> list[dict]:
    """Parse an SSE body into [{"id", "event", "data"}, ...]."""
    events = []
    for block in body.strip().split("\n\n"):
        event = {}
        for line in block.splitlines():
            field, _, value = line.partition(": ")
            event[field] = value
        if "data" in event:
            event["data"] = json.loads(event["data"])
        events.append(event)
    return events


def test_health(client):
    for path in ("/health", "/api/health"):
        resp = client.get(path)
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"


def test_register_and_get_owner(client):
    resp = client.post("/api/owners", json={"owner_id": "app_new"})
    assert resp.status_code == 201
    assert resp.json()["owner_id"] == "app_new"
    assert resp.json()["attachments"] == {}
    assert resp.json()["description"] is None

    resp = client.get("/api/owners/app_new")
    assert resp.status_code == 200
    assert resp.json()["attachments"] == {}


def test_register_owner_with_profile_then_improve_description(client):
    resp = client.post(
        "/api/owners",
        json={"owner_id": "app_store", "name": "Pace", "description": "Tracks runs."},
    )
    assert resp.status_code == 201
    assert resp.json()["name"] == "Pace"

    resp = client.post("/api/owners/app_store/jobs", json={"kind": "improveDescription", "params": {}})
    assert resp.status_code == 201
    events = _events(client.get(f"/api/jobs/{resp.json()['job_id']}/events").text)
    assert events[-1]["data"]["status"] == "completed"

    owner = client.get("/api/owners/app_store").json()
    assert owner["description"].startswith("KEY FEATURES")
    assert owner["name"] == "Pace"


def test_register_owner_generates_id(client):
    resp = client.post("/api/owners")
    assert resp.status_code == 201
    assert resp.json()["owner_id"].startswith("app_")


def test_unknown_owner(client):
    assert client.get("/api/owners/app_missing").status_code == 404
    resp = client.post("/api/owners/app_missing/jobs", json={"kind": "icon", "params": {"prompt": "x"}})
    assert resp.status_code == 404


def test_icon_job_lifecycle(client, owner_id):
    resp = client.post(f"/api/owners/{owner_id}/jobs", json={"kind": "icon", "params": {"prompt": "A shoe"}})
    assert resp.status_code == 201
    body = resp.json()
    assert body["status"] == "pending"
    job_id = body["job_id"]

    resp = client.get(f"/api/jobs/{job_id}/events")
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/event-stream")
    events = _events(resp.text)
    assert events[-1]["event"] == "done"
    assert all(e["event"] == "snapshot" for e in events[:-1])
    versions = [int(e["id"]) for e in events]
    assert versions == sorted(versions)
    assert events[-1]["data"]["status"] == "completed"

    snap = client.get(f"/api/jobs/{job_id}").json()
    assert snap["jobId"] == job_id
    assert snap["status"] == "completed"
    assert snap["progressPercentage"] == 100
    assert snap["currentStep"] == "Icon generated"
    assert snap["failedUnits"] == []

    owner = client.get(f"/api/owners/{owner_id}").json()
    assert owner["attachments"]["icon"] == f"memory://{snap['payload']['icon_ref']}"


def test_full_app_job_with_failed_screen(client, provider, owner_id):
    provider.fail(UnitKind.SCREEN, "the Profile screen")
    resp = client.post(
        f"/api/owners/{owner_id}/jobs",
        json={"kind": "fullAppGeneration", "params": {"description": "Meal planner", "screens_count": 4}},
    )
    job_id = resp.json()["job_id"]
    final = _events(client.get(f"/api/jobs/{job_id}/events").text)[-1]["data"]
    assert final["status"] == "partial"
    assert final["screensGenerated"] == 3
    assert final["screensTotal"] == 4
    assert final["failedUnits"] == [{"unitName": "Screen 4: Profile", "errorMessage": "scripted failure"}]


def test_invalid_params(client, owner_id):
    resp = client.post(
        f"/api/owners/{owner_id}/jobs",
        json={"kind": "fullAppGeneration", "params": {"description": "x", "screens_count": 0}},
    )
    assert resp.status_code == 400
    detail = resp.json()["detail"]
    assert "screens_count" in detail["message"]
    assert detail["errors"][0]["loc"] == "screens_count"


def test_unknown_kind(client, owner_id):
    resp = client.post(f"/api/owners/{owner_id}/jobs", json={"kind": "poster", "params": {}})
    assert resp.status_code == 400


def test_cancel(client, provider, owner_id):
    provider.set_latency(UnitKind.CONCEPT, 0.5)
    job_id = client.post(
        f"/api/owners/{owner_id}/jobs",
        json={"kind": "fullAppGeneration", "params": {"description": "Slow idea"}},
    ).json()["job_id"]

    resp = client.post(f"/api/jobs/{job_id}/cancel")
    assert resp.status_code == 200
    assert resp.json() == {"jobId": job_id, "status": "failed", "cancelled": True}

    snap = client.get(f"/api/jobs/{job_id}").json()
    assert snap["status"] == "failed"
    assert snap["error"] == "cancelled"

    again = client.post(f"/api/jobs/{job_id}/cancel").json()
    assert again["cancelled"] is False


def test_unknown_job(client):
    assert client.get("/api/jobs/job_missing").status_code == 404
    assert client.get("/api/jobs/job_missing/events").status_code == 404
    assert client.post("/api/jobs/job_missing/cancel").status_code == 404


def test_list_jobs(client, owner_id):
    for prompt in ("One", "Two"):
        job_id = client.post(
            f"/api/owners/{owner_id}/jobs", json={"kind": "icon", "params": {"prompt": prompt}},
        ).json()["job_id"]
        client.get(f"/api/jobs/{job_id}/events")
    client.post(f"/api/owners/{owner_id}/jobs", json={"kind": "concept", "params": {"description": "Three"}})

    icons = client.get(f"/api/owners/{owner_id}/jobs", params={"kind": "icon"}).json()
    assert len(icons) == 2
    assert all(j["kind"] == "icon" for j in icons)
    assert len(client.get(f"/api/owners/{owner_id}/jobs").json()) == 3
    assert client.get(f"/api/owners/{owner_id}/jobs", params={"kind": "poster"}).status_code == 400
