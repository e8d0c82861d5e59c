from __future__ import annotations

from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from codecoach.errors import NetworkError
from codecoach.main import app
from codecoach.models import StarterBundleRef
from codecoach.session_routes import get_session_manager

from test_session_manager import Harness


@pytest.fixture
def harness() -> Iterator[Harness]:
    harness = Harness()
    app.dependency_overrides[get_session_manager] = lambda: harness.manager
    yield harness
    app.dependency_overrides.pop(get_session_manager, None)


def test_healthz() -> None:
    client = TestClient(app)
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_connect_chat_and_submit_over_http(harness: Harness) -> None:
    client = TestClient(app)

    connected = client.post("/api/session/connect", json={"assignmentId": "a-1"})
    assert connected.status_code == 200
    assert connected.json()["state"] == "active"
    assert connected.json()["session_id"] == "sess-1"

    chat = client.post("/api/session/chat", json={"message": "How do I loop?", "contextText": "xs = [1, 2]"})
    assert chat.status_code == 200
    assert chat.json()["reply"]
    assert chat.json()["status"]["buffered_events"] == 2

    checkpoint = client.post("/api/session/checkpoint", json={"data": {"file": "main.py"}})
    assert checkpoint.json()["recorded"] is True

    submitted = client.post("/api/session/submit")
    assert submitted.status_code == 200
    assert submitted.json()["state"] == "submitted"
    assert harness.sessions.batches == [("sess-1", ["chat_user", "chat_model", "checkpoint"])]

    events = client.get("/api/session/events", params={"after": 0}).json()["events"]
    assert any(event["kind"] == "message" and event["role"] == "assistant" for event in events)
    last_seq = events[-1]["seq"]
    assert client.get("/api/session/events", params={"after": last_seq}).json()["events"] == []


def test_errors_map_to_http_statuses(harness: Harness) -> None:
    client = TestClient(app)
    harness.assignments.failures["broken"] = NetworkError("assignment store unavailable")

    failed = client.post("/api/session/connect", json={"assignmentId": "broken"})
    assert failed.status_code == 502
    assert failed.json()["detail"] == "assignment store unavailable"

    assert client.post("/api/session/submit").status_code == 409
    assert client.post("/api/session/chat", json={"message": "  "}).status_code == 422
    assert client.post("/api/session/export").status_code == 422
    assert client.get("/api/session/status").json()["state"] == "disconnected"


def test_checkpoint_without_session_is_not_recorded(harness: Harness) -> None:
    client = TestClient(app)

    response = client.post("/api/session/checkpoint", json={"data": {"line": 3}})

    assert response.status_code == 200
    assert response.json()["recorded"] is False


def test_open_and_activate_report_install_results(harness: Harness) -> None:
    harness.assignments.bundles["a-1"] = StarterBundleRef(archive_ref="starter.zip")
    client = TestClient(app)

    opened = client.post("/api/session/open", json={"assignmentId": "a-1"}).json()
    assert opened["install"]["outcome"] == "installed"
    assert opened["install"]["written"] == ["main.py"]

    activated = client.post("/api/session/activate").json()
    assert activated["install"] is None
    assert harness.installer.resumed == 1
