from __future__ import annotations

import asyncio
import json
from typing import Callable

import httpx
import pytest

from codecoach.errors import AuthError, InvalidRequestError, NetworkError
from codecoach.learning_profile import LearningProfile
from codecoach.models import TraceEvent
from codecoach.store_clients import (
    ApiClient,
    ArchiveStoreClient,
    AssignmentStoreClient,
    HttpProfileStore,
    SessionStoreClient,
)

Handler = Callable[[httpx.Request], httpx.Response]


def _api(handler: Handler, *, token: str | None = "secret") -> ApiClient:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ApiClient("http://store.test/", token=token, client=client)


def test_assignment_fetch_sends_bearer_token_and_normalizes() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"assignment": {"id": "a-1", "title": "Loops"}})

    assignment = asyncio.run(AssignmentStoreClient(_api(handler)).fetch("a-1"))

    assert assignment.title == "Loops"
    assert str(seen[0].url) == "http://store.test/assignments/a-1"
    assert seen[0].headers["Authorization"] == "Bearer secret"


@pytest.mark.parametrize(
    ("status_code", "error_type", "retryable"),
    [
        (401, AuthError, False),
        (403, AuthError, False),
        (422, InvalidRequestError, False),
        (404, NetworkError, False),
        (429, NetworkError, True),
        (503, NetworkError, True),
    ],
)
def test_status_codes_map_onto_error_taxonomy(status_code: int, error_type: type, retryable: bool) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json={"error": "nope"})

    with pytest.raises(error_type) as excinfo:
        asyncio.run(AssignmentStoreClient(_api(handler)).fetch("a-1"))

    assert excinfo.value.retryable is retryable
    assert str(excinfo.value) == "nope"


def test_transport_failure_is_a_retryable_network_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(NetworkError) as excinfo:
        asyncio.run(SessionStoreClient(_api(handler)).start("a-1"))

    assert excinfo.value.retryable is True


def test_session_store_round_trip() -> None:
    requests: list[tuple[str, str, dict]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else {}
        requests.append((request.method, request.url.path, body))
        if request.url.path == "/sessions/start":
            return httpx.Response(201, json={"sessionId": "sess-1"})
        if request.url.path.endswith("/events"):
            return httpx.Response(200, json={"ok": True, "inserted": len(body["events"])})
        return httpx.Response(200, json={"ok": True})

    sessions = SessionStoreClient(_api(handler))

    async def scenario() -> tuple[str, int]:
        session_id = await sessions.start("a-1")
        inserted = await sessions.append_events(
            session_id, [TraceEvent.user_message("hi"), TraceEvent.coach_message("hello")]
        )
        await sessions.submit(session_id)
        return session_id, inserted

    session_id, inserted = asyncio.run(scenario())

    assert session_id == "sess-1"
    assert inserted == 2
    assert requests[0] == ("POST", "/sessions/start", {"assignmentId": "a-1"})
    events = requests[1][2]["events"]
    assert [event["type"] for event in events] == ["chat_user", "chat_model"]
    assert events[0]["payload"] == {"text": "hi"}
    assert events[0]["ts"].endswith("Z")
    assert requests[2][:2] == ("POST", "/sessions/sess-1/submit")


def test_session_start_without_id_is_rejected() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"ok": True})

    with pytest.raises(NetworkError) as excinfo:
        asyncio.run(SessionStoreClient(_api(handler)).start("a-1"))
    assert excinfo.value.retryable is False


def test_http_profile_store_treats_missing_profile_as_none() -> None:
    stored: dict[str, dict] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        key = f"{request.url.path}?{request.url.params.get('courseId', '')}"
        if request.method == "PUT":
            stored[key] = json.loads(request.content)
            return httpx.Response(200, json={"ok": True})
        if key not in stored:
            return httpx.Response(404, json={"error": "not found"})
        return httpx.Response(200, json={"profile": stored[key]})

    store = HttpProfileStore(_api(handler))

    async def scenario() -> tuple[LearningProfile | None, LearningProfile | None, LearningProfile | None]:
        before = await store.get("learner-1")
        await store.put("learner-1", LearningProfile(mastered=["loops"]), "cs101")
        return before, await store.get("learner-1", "cs101"), await store.get("learner-1")

    before, course, overall = asyncio.run(scenario())

    assert before is None
    assert course is not None and course.mastered == ["loops"]
    assert overall is None


def test_archive_store_resolves_paths_to_signed_urls() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["path"] == "cs101/starter.zip"
        return httpx.Response(200, json={"signedUrl": "https://files.test/signed.zip"})

    archives = ArchiveStoreClient(_api(handler))

    assert asyncio.run(archives.resolve_url("https://cdn.test/direct.zip")) == "https://cdn.test/direct.zip"
    assert asyncio.run(archives.resolve_url("cs101/starter.zip")) == "https://files.test/signed.zip"


def test_missing_base_url_is_invalid_request() -> None:
    api = ApiClient("", client=httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200))))

    with pytest.raises(InvalidRequestError):
        asyncio.run(api.request("GET", "/anything"))
