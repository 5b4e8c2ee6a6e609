"""
Integration tests for the console HTTP API.

The API runs against a real SQLite registry and an in-memory execution host.
"""

import json
import time

import pytest
from fastapi.testclient import TestClient

from ingest_console.api.main import app, get_controller, get_settings
from ingest_console.config.settings import Paths, Settings
from ingest_console.errors import TransportError
from ingest_console.execution.host import HostProbe
from ingest_console.jobs import JobRegistry, JobType


@pytest.fixture
def client(controller, tmp_path):
    """Create test client with the controller wired to fakes."""
    settings = Settings(paths=Paths(app_path=str(tmp_path), state_dir=str(tmp_path / "state")))

    app.dependency_overrides[get_controller] = lambda: controller
    app.dependency_overrides[get_settings] = lambda: settings

    client = TestClient(app)
    yield client

    # Clean up
    app.dependency_overrides.clear()


def read_events(response):
    """Parse an SSE body into (event, data) pairs."""
    events = []
    event = None
    for line in response.iter_lines():
        if line.startswith("event: "):
            event = line[len("event: "):]
        elif line.startswith("data: "):
            events.append((event, json.loads(line[len("data: "):])))
    return events


def test_root_endpoint(client):
    response = client.get("/")
    assert response.status_code == 200
    assert "version" in response.json()


def test_health_endpoint(client):
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["context"] == "local"
    assert data["jobTypes"] == ["ingestion", "backfill"]


def test_launch_and_status(client):
    response = client.post("/jobs/ingestion/launch", json={})
    assert response.status_code == 202
    data = response.json()
    assert data["jobType"] == "ingestion"
    assert data["status"] == "started"
    assert data["runId"]

    status = client.get("/jobs/ingestion/status").json()
    assert status["running"] is True
    assert status["sessionActive"] is True
    assert status["state"] == "running"
    assert status["startedAt"] == data["startedAt"]


def test_launch_without_body(client):
    response = client.post("/jobs/backfill/launch")
    assert response.status_code == 202
    assert response.json()["params"] == {"months": 6}
    assert response.json()["message"] == "Backfill started for 6 months in background session."


def test_second_launch_conflicts(client):
    first = client.post("/jobs/ingestion/launch", json={}).json()
    response = client.post("/jobs/ingestion/launch", json={})
    assert response.status_code == 409
    body = response.json()
    assert body == {
        "error": "Ingestion is already running",
        "jobType": "ingestion",
        "startedAt": first["startedAt"],
    }


def test_conflict_with_adopted_session_has_null_start(client, host):
    host.sessions[JobType.BACKFILL] = HostProbe(running=False, session_active=True, started_at=None)

    status = client.get("/jobs/backfill/status").json()
    assert status["state"] == "finishing"
    assert status["startedAt"] is None

    response = client.post("/jobs/backfill/launch", json={})
    assert response.status_code == 409
    assert response.json()["startedAt"] is None


@pytest.mark.parametrize("months", [0, 121])
def test_backfill_months_out_of_range(client, months):
    response = client.post("/jobs/backfill/launch", json={"months": months})
    assert response.status_code == 422


def test_ingestion_rejects_months(client):
    response = client.post("/jobs/ingestion/launch", json={"months": 3})
    assert response.status_code == 422


def test_unknown_job_type(client):
    assert client.post("/jobs/reindex/launch", json={}).status_code == 404
    assert client.get("/jobs/reindex/status").status_code == 404


def test_transport_failure_is_502(client, host):
    host.launch_error = TransportError("SSH connection failed: no route to host")
    response = client.post("/jobs/ingestion/launch", json={})
    assert response.status_code == 502
    assert "no route to host" in response.json()["error"]

    host.probe_error = TransportError("SSH connection failed")
    assert client.get("/jobs/ingestion/status").status_code == 502


def test_never_run_status_is_idle(client):
    for _ in range(2):
        status = client.get("/jobs/backfill/status").json()
        assert status == {
            "jobType": "backfill",
            "running": False,
            "sessionActive": False,
            "output": "",
            "startedAt": None,
            "state": "idle",
            "lastResult": None,
        }


def test_finished_run_reports_result_and_history(client, host, clock):
    client.post("/jobs/ingestion/launch", json={})
    host.finish(JobType.INGESTION, "Fetched: 500\nAdded: 10\nModified: 2\nErrors: 0\nINGESTION COMPLETE")
    clock.advance(60)

    status = client.get("/jobs/ingestion/status").json()
    assert status["state"] == "idle"
    result = status["lastResult"]
    assert result["success"] is True
    assert result["summary"] == {"added": 10, "modified": 2, "fetched": 500, "errors": 0}

    runs = client.get("/jobs/history", params={"job_type": "ingestion"}).json()["runs"]
    assert len(runs) == 1
    assert runs[0]["result"]["outcome"] == "succeeded"
    assert runs[0]["finishedAt"]


def test_history_rejects_bad_limit(client):
    assert client.get("/jobs/history", params={"limit": 0}).status_code == 422


def test_events_stream_until_result(client, host, clock):
    client.post("/jobs/backfill/launch", json={"months": 2})
    clock.advance(60)
    host.queued[JobType.BACKFILL] = [
        HostProbe(running=True, session_active=True, output="Added: 3", started_at="2024-05-01T10:00:00Z"),
        HostProbe(running=False, session_active=True, output="Added: 7\nBACKFILL COMPLETE"),
    ]
    host.finish(JobType.BACKFILL, "Added: 7\nBACKFILL COMPLETE")

    with client.stream("GET", "/jobs/backfill/events", params={"interval": 0.01}) as response:
        assert response.status_code == 200
        assert "text/event-stream" in response.headers["content-type"]
        events = read_events(response)

    assert [name for name, _ in events] == ["status", "status", "status", "result"]
    assert [data["state"] for _, data in events[:3]] == ["running", "finishing", "idle"]
    assert events[-1][1]["success"] is True
    assert events[-1][1]["summary"]["added"] == 7


def test_events_for_idle_job_type(client):
    with client.stream("GET", "/jobs/ingestion/events") as response:
        events = read_events(response)
    assert [name for name, _ in events] == ["status", "result"]
    assert events[1][1] is None


def test_events_transport_error(client, host):
    host.probe_error = TransportError("SSH connection failed")
    with client.stream("GET", "/jobs/ingestion/events") as response:
        events = read_events(response)
    assert events == [("error", {"error": "SSH connection failed"})]


def test_startup_purges_old_history(tmp_path, monkeypatch):
    state_dir = tmp_path / "state"
    state_dir.mkdir()
    day_ago = time.time() - 24 * 3600
    with JobRegistry(state_dir / "registry.db", clock=lambda: day_ago) as reg:
        record = reg.try_claim(JobType.INGESTION)
        reg.finish(record, None)

    monkeypatch.setenv("INGEST_CONSOLE_APP_PATH", str(tmp_path))
    monkeypatch.setenv("INGEST_CONSOLE_STATE_DIR", str(state_dir))
    monkeypatch.setenv("INGEST_CONSOLE_HISTORY_RETENTION_HOURS", "1")
    with TestClient(app) as started:
        assert started.get("/health").status_code == 200

    with JobRegistry(state_dir / "registry.db") as reg:
        assert reg.history() == []
