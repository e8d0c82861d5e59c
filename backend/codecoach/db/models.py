"""ORM models backing local profile and client-state persistence."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import DateTime, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from .base import Base, TimestampMixin

JSONType = JSON


class LearningProfileModel(TimestampMixin, Base):
    __tablename__ = "learning_profiles"
    __table_args__ = (
        UniqueConstraint("learner_id", "course_id", name="uq_learning_profiles_learner_course"),
        Index("ix_learning_profiles_learner", "learner_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    learner_id: Mapped[str] = mapped_column(String(128), nullable=False)
    # Empty string marks the learner's overall profile.
    course_id: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    mastered: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    developing: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    topics: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    notes: Mapped[str] = mapped_column(Text, default="", nullable=False)
    profile_updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )


class ClientStateModel(TimestampMixin, Base):
    __tablename__ = "client_state"

    key: Mapped[str] = mapped_column(String(128), primary_key=True)
    value: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)


__all__ = ["ClientStateModel", "JSONType", "LearningProfileModel"]
