"""Learning profile models, the mastery-ratchet merge, and profile persistence."""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, List, Mapping, Optional, Protocol, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .db.session import session_scope
from .errors import StructuredOutputError

logger = logging.getLogger(__name__)

STRUCTURED_OUTPUT_ERROR = "model did not return valid structured output"

_FENCE_RE = re.compile(r"^```[a-zA-Z0-9_-]*\s*|\s*```$")

if TYPE_CHECKING:
    from .repositories.learning_profiles import LearningProfileRepository


def _repo() -> "LearningProfileRepository":
    from .repositories.learning_profiles import learning_profiles as repository

    return repository


def _now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_labels(values: Any) -> List[str]:
    """Trim, drop empties, and de-duplicate labels in first-seen order.

    Anything that is not a list of strings contributes nothing.
    """
    if not isinstance(values, (list, tuple)):
        return []
    seen: dict[str, None] = {}
    for value in values:
        if not isinstance(value, str):
            continue
        label = value.strip()
        if label:
            seen.setdefault(label, None)
    return list(seen)


class LearningProfile(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    updated_at: datetime = Field(default_factory=_now, alias="updatedAtISO")
    mastered: List[str] = Field(default_factory=list)
    developing: List[str] = Field(default_factory=list)
    topics: List[str] = Field(default_factory=list)
    notes: str = ""

    @field_validator("mastered", "developing", "topics", mode="before")
    @classmethod
    def _coerce_labels(cls, value: Any) -> List[str]:
        return normalize_labels(value)

    @field_validator("notes", mode="before")
    @classmethod
    def _coerce_notes(cls, value: Any) -> str:
        return value if isinstance(value, str) else ""

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class ProfileUpdate(BaseModel):
    """Session-derived partial profile produced by the summarization step."""

    mastered: List[str] = Field(default_factory=list)
    developing: List[str] = Field(default_factory=list)
    topics: List[str] = Field(default_factory=list)
    notes: Optional[str] = None

    @field_validator("mastered", "developing", "topics", mode="before")
    @classmethod
    def _coerce_labels(cls, value: Any) -> List[str]:
        return normalize_labels(value)

    @field_validator("notes", mode="before")
    @classmethod
    def _coerce_notes(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        return str(value)


class SessionSummary(BaseModel):
    topics_discussed: List[str] = Field(default_factory=list, alias="topicsDiscussed")
    fundamentals_mastered: List[str] = Field(default_factory=list, alias="fundamentalsMastered")
    fundamentals_developing: List[str] = Field(default_factory=list, alias="fundamentalsDeveloping")
    highlights: List[str] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)

    @field_validator(
        "topics_discussed",
        "fundamentals_mastered",
        "fundamentals_developing",
        "highlights",
        mode="before",
    )
    @classmethod
    def _coerce_labels(cls, value: Any) -> List[str]:
        return normalize_labels(value)


def merge_profiles(
    existing: Optional[LearningProfile],
    incoming: ProfileUpdate | Mapping[str, Any],
    *,
    now: Optional[datetime] = None,
) -> LearningProfile:
    """Fold a session update into a persisted profile.

    Mastery only accumulates: any label in the merged mastered set is removed
    from developing, whichever order merges are applied in. Notes are replaced
    by non-empty incoming notes.
    """
    base = existing or LearningProfile()
    update = incoming if isinstance(incoming, ProfileUpdate) else ProfileUpdate.model_validate(dict(incoming))

    mastered = normalize_labels([*base.mastered, *update.mastered])
    mastered_set = set(mastered)
    developing = [
        label for label in normalize_labels([*base.developing, *update.developing]) if label not in mastered_set
    ]
    topics = normalize_labels([*base.topics, *update.topics])
    incoming_notes = (update.notes or "").strip()

    return LearningProfile(
        updated_at=now or _now(),
        mastered=mastered,
        developing=developing,
        topics=topics,
        notes=incoming_notes if incoming_notes else base.notes,
    )


def _strip_fences(raw: str) -> str:
    return _FENCE_RE.sub("", raw.strip()).strip()


def parse_summary_output(raw: str) -> Tuple[ProfileUpdate, SessionSummary]:
    """Parse the summarization model output into a profile update and session summary.

    Accepts either ``{"session": {...}, "overallUpdate": {...}}`` or a bare
    ``{"mastered": [...], "developing": [...], "topics": [...], "notes": ...}``.
    """
    try:
        document = json.loads(_strip_fences(raw or ""))
    except ValueError as exc:
        raise StructuredOutputError(STRUCTURED_OUTPUT_ERROR) from exc
    if not isinstance(document, dict):
        raise StructuredOutputError(STRUCTURED_OUTPUT_ERROR)

    if "overallUpdate" in document:
        update_payload = document.get("overallUpdate")
        session_payload = document.get("session")
    elif any(key in document for key in ("mastered", "developing", "topics")):
        update_payload = document
        session_payload = None
    else:
        raise StructuredOutputError(f"{STRUCTURED_OUTPUT_ERROR} (missing expected fields)")

    if not isinstance(update_payload, dict):
        raise StructuredOutputError(f"{STRUCTURED_OUTPUT_ERROR} (missing expected fields)")
    try:
        update = ProfileUpdate.model_validate(update_payload)
        summary = SessionSummary.model_validate(session_payload if isinstance(session_payload, dict) else {})
    except ValidationError as exc:
        raise StructuredOutputError(STRUCTURED_OUTPUT_ERROR) from exc
    return update, summary


# Persistence -----------------------------------------------------------------


class ProfileStore(Protocol):
    """Keyed profile storage; ``course_id=None`` addresses the overall profile."""

    async def get(self, learner_id: str, course_id: Optional[str] = None) -> Optional[LearningProfile]:
        ...

    async def put(
        self, learner_id: str, profile: LearningProfile, course_id: Optional[str] = None
    ) -> LearningProfile:
        ...


class DatabaseProfileStore:
    """SQLAlchemy-backed profile store used when no remote profile API is configured."""

    async def get(self, learner_id: str, course_id: Optional[str] = None) -> Optional[LearningProfile]:
        with session_scope(commit=False) as session:
            return _repo().get(session, learner_id, course_id)

    async def put(
        self, learner_id: str, profile: LearningProfile, course_id: Optional[str] = None
    ) -> LearningProfile:
        with session_scope() as session:
            stored = _repo().upsert(session, learner_id, profile, course_id)
        logger.debug("Stored learning profile (learner=%s, course=%s)", learner_id, course_id or "-")
        return stored


__all__ = [
    "DatabaseProfileStore",
    "LearningProfile",
    "ProfileStore",
    "ProfileUpdate",
    "STRUCTURED_OUTPUT_ERROR",
    "SessionSummary",
    "merge_profiles",
    "normalize_labels",
    "parse_summary_output",
]
