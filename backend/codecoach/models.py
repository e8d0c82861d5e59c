"""Domain models shared by the session engine and the store boundary."""

from __future__ import annotations

import html
import json
import re
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from .errors import InvalidRequestError


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    ACTIVE = "active"
    SUBMITTING = "submitting"
    SUBMITTED = "submitted"


class StarterBundleRef(BaseModel):
    """Pointer to an instructor starter archive plus the files to open after install."""

    archive_ref: str
    open: List[str] = Field(default_factory=list)


class Assignment(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    course_id: str = ""
    title: str = "Untitled assignment"
    instructions: str = ""
    fundamentals: List[str] = Field(default_factory=list)
    objectives: List[str] = Field(default_factory=list)
    tutorial_url: Optional[str] = None
    starter_bundle: Optional[StarterBundleRef] = None


TraceEventKind = Literal["chat_user", "chat_model", "checkpoint"]


class TraceEvent(BaseModel):
    """One immutable, timestamped record of session activity."""

    model_config = ConfigDict(frozen=True)

    kind: TraceEventKind
    ts: datetime = Field(default_factory=_now)
    payload: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def user_message(cls, text: str) -> "TraceEvent":
        return cls(kind="chat_user", payload={"text": text})

    @classmethod
    def coach_message(cls, text: str) -> "TraceEvent":
        return cls(kind="chat_model", payload={"text": text})

    @classmethod
    def checkpoint(cls, data: Mapping[str, Any]) -> "TraceEvent":
        return cls(kind="checkpoint", payload=dict(data))

    @property
    def text(self) -> Optional[str]:
        value = self.payload.get("text")
        return value if isinstance(value, str) else None

    def to_wire(self) -> Dict[str, Any]:
        return {
            "type": self.kind,
            "ts": self.ts.isoformat().replace("+00:00", "Z"),
            "payload": self.payload,
        }


class ChatTurn(BaseModel):
    role: Literal["user", "model"]
    text: str


class PendingStarterInstallation(BaseModel):
    archive_ref: str
    suggested_open: List[str] = Field(default_factory=list)
    # Folder chosen when the install was deferred; the restarted host opens it.
    destination: Optional[Path] = None
    created_at: datetime = Field(default_factory=_now)


# Store boundary normalization -------------------------------------------------

_TAG_RE = re.compile(r"<[^>]+>")
_BLOCK_TAG_RE = re.compile(r"</?(p|div|br|li|h[1-6]|ul|ol)\b[^>]*>", re.IGNORECASE)


def _first(payload: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = payload.get(key)
        if value is not None:
            return value
    return None


def _string_list(value: Any) -> List[str]:
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.startswith("["):
            try:
                value = json.loads(stripped)
            except ValueError:
                return [stripped]
        else:
            return [part.strip() for part in stripped.split(",") if part.strip()]
    if not isinstance(value, (list, tuple)):
        return []
    return [str(item).strip() for item in value if isinstance(item, (str, int, float)) and str(item).strip()]


def html_to_text(markup: str) -> str:
    """Reduce rich-text instructions to readable plain text."""
    text = _BLOCK_TAG_RE.sub("\n", markup)
    text = _TAG_RE.sub("", text)
    text = html.unescape(text)
    lines = [line.strip() for line in text.splitlines()]
    return "\n".join(line for line in lines if line)


def _starter_bundle(value: Any) -> Optional[StarterBundleRef]:
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            return None
    if not isinstance(value, Mapping):
        return None
    archive_ref = _first(value, "zipPath", "zip_path", "archiveRef", "archive_ref", "zipUrl", "zip_url")
    if not isinstance(archive_ref, str) or not archive_ref.strip():
        return None
    return StarterBundleRef(archive_ref=archive_ref.strip(), open=_string_list(value.get("open")))


def normalize_assignment(payload: Any) -> Assignment:
    """Map an assignment payload from any known store shape onto :class:`Assignment`."""
    if isinstance(payload, Mapping) and isinstance(payload.get("assignment"), Mapping):
        payload = payload["assignment"]
    if not isinstance(payload, Mapping):
        raise InvalidRequestError("Assignment payload must be a JSON object.")

    assignment_id = _first(payload, "id", "assignmentId", "assignment_id")
    if assignment_id is None or not str(assignment_id).strip():
        raise InvalidRequestError("Assignment payload is missing an id.")

    instructions = _first(payload, "instructions")
    if not isinstance(instructions, str) or not instructions.strip():
        markup = _first(payload, "instructions_html", "instructionsHtml")
        instructions = html_to_text(markup) if isinstance(markup, str) else ""

    title = _first(payload, "title")
    tutorial_url = _first(payload, "tutorial_url", "tutorialUrl")
    return Assignment(
        id=str(assignment_id).strip(),
        course_id=str(_first(payload, "courseId", "course_id") or ""),
        title=str(title).strip() if title else "Untitled assignment",
        instructions=instructions.strip(),
        fundamentals=_string_list(_first(payload, "fundamentals", "fundamentalsJson")),
        objectives=_string_list(_first(payload, "objectives", "objectivesJson")),
        tutorial_url=str(tutorial_url).strip() if tutorial_url else None,
        starter_bundle=_starter_bundle(_first(payload, "starter_bundle", "starterBundle", "starter")),
    )


__all__ = [
    "Assignment",
    "ChatTurn",
    "PendingStarterInstallation",
    "SessionState",
    "StarterBundleRef",
    "TraceEvent",
    "TraceEventKind",
    "html_to_text",
    "normalize_assignment",
]
