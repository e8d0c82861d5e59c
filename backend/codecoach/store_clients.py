"""HTTP clients for the external assignment, session, profile, and archive stores."""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional, Sequence

import httpx

from .errors import AuthError, InvalidRequestError, NetworkError
from .learning_profile import LearningProfile
from .models import Assignment, TraceEvent, normalize_assignment

logger = logging.getLogger(__name__)


def normalize_base_url(url: str) -> str:
    return url.strip().rstrip("/")


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, Mapping):
        for key in ("error", "message", "detail"):
            value = data.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return f"{response.status_code} {response.reason_phrase}".strip()


class ApiClient:
    """Bearer-authenticated JSON client; maps transport and status failures onto the error taxonomy."""

    def __init__(
        self,
        base_url: str,
        *,
        token: Optional[str] = None,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._base_url = normalize_base_url(base_url)
        self._token = token
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    @property
    def base_url(self) -> str:
        return self._base_url

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Optional[Mapping[str, str]] = None,
        allow_not_found: bool = False,
    ) -> Any:
        if not self._base_url:
            raise InvalidRequestError("API base URL is not configured.")
        url = f"{self._base_url}{path}"
        try:
            response = await self._client.request(method, url, json=json, params=params, headers=self._headers())
        except httpx.HTTPError as exc:
            raise NetworkError(f"{method} {path} failed: {exc}") from exc

        if allow_not_found and response.status_code == 404:
            return None
        if response.is_error:
            message = _error_message(response)
            status_code = response.status_code
            logger.warning("%s %s returned %s: %s", method, path, status_code, message)
            if status_code in (401, 403):
                raise AuthError(message)
            if status_code in (400, 422):
                raise InvalidRequestError(message)
            raise NetworkError(message, status_code=status_code, retryable=status_code >= 500 or status_code == 429)

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise NetworkError(f"{method} {path} returned a non-JSON body.", retryable=False) from exc

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class AssignmentStoreClient:
    def __init__(self, api: ApiClient) -> None:
        self._api = api

    async def fetch(self, assignment_id: str) -> Assignment:
        ref = (assignment_id or "").strip()
        if not ref:
            raise InvalidRequestError("Assignment id is required.")
        payload = await self._api.request("GET", f"/assignments/{ref}")
        return normalize_assignment(payload)


class SessionStoreClient:
    def __init__(self, api: ApiClient) -> None:
        self._api = api

    async def start(self, assignment_id: str) -> str:
        payload = await self._api.request("POST", "/sessions/start", json={"assignmentId": assignment_id})
        session_id = payload.get("sessionId") if isinstance(payload, Mapping) else None
        if not isinstance(session_id, str) or not session_id:
            raise NetworkError("Session store did not return a session id.", retryable=False)
        return session_id

    async def append_events(self, session_id: str, events: Sequence[TraceEvent]) -> int:
        payload = await self._api.request(
            "POST",
            f"/sessions/{session_id}/events",
            json={"events": [event.to_wire() for event in events]},
        )
        inserted = payload.get("inserted", payload.get("insertedCount")) if isinstance(payload, Mapping) else None
        return inserted if isinstance(inserted, int) else len(events)

    async def submit(self, session_id: str) -> None:
        await self._api.request("POST", f"/sessions/{session_id}/submit", json={})


class HttpProfileStore:
    """Remote profile store; a 404 means the learner has no profile yet."""

    def __init__(self, api: ApiClient) -> None:
        self._api = api

    @staticmethod
    def _params(course_id: Optional[str]) -> Optional[Dict[str, str]]:
        return {"courseId": course_id} if course_id else None

    async def get(self, learner_id: str, course_id: Optional[str] = None) -> Optional[LearningProfile]:
        payload = await self._api.request(
            "GET", f"/profiles/{learner_id}", params=self._params(course_id), allow_not_found=True
        )
        if not payload:
            return None
        if isinstance(payload, Mapping) and isinstance(payload.get("profile"), Mapping):
            payload = payload["profile"]
        return LearningProfile.model_validate(payload)

    async def put(
        self, learner_id: str, profile: LearningProfile, course_id: Optional[str] = None
    ) -> LearningProfile:
        await self._api.request("PUT", f"/profiles/{learner_id}", params=self._params(course_id), json=profile.to_wire())
        return profile


class ArchiveStoreClient:
    """Resolves starter archive references to downloadable URLs."""

    def __init__(self, api: ApiClient) -> None:
        self._api = api

    async def resolve_url(self, archive_ref: str) -> str:
        ref = archive_ref.strip()
        if ref.startswith(("http://", "https://")):
            return ref
        payload = await self._api.request("GET", "/starter-bundles/signed-url", params={"path": ref})
        url = None
        if isinstance(payload, Mapping):
            url = payload.get("signedUrl") or payload.get("url")
        if not isinstance(url, str) or not url:
            raise NetworkError(f"Archive store returned no download URL for {ref}.", retryable=False)
        return url


__all__ = [
    "ApiClient",
    "ArchiveStoreClient",
    "AssignmentStoreClient",
    "HttpProfileStore",
    "SessionStoreClient",
    "normalize_base_url",
]
