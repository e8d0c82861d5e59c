"""Database-backed learning profile repository."""

from __future__ import annotations

from datetime import timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..db.models import LearningProfileModel
from ..learning_profile import LearningProfile

OVERALL_COURSE_KEY = ""


def _normalize_learner(learner_id: str) -> str:
    normalized = learner_id.strip()
    if not normalized:
        raise ValueError("Learner id cannot be empty.")
    return normalized


def _course_key(course_id: Optional[str]) -> str:
    return (course_id or "").strip() or OVERALL_COURSE_KEY


class LearningProfileRepository:
    """Profile rows keyed by (learner, course); the empty course key is the overall profile."""

    def _find(self, session: Session, learner_id: str, course_id: Optional[str]) -> Optional[LearningProfileModel]:
        stmt = select(LearningProfileModel).where(
            LearningProfileModel.learner_id == _normalize_learner(learner_id),
            LearningProfileModel.course_id == _course_key(course_id),
        )
        return session.execute(stmt).scalar_one_or_none()

    def get(self, session: Session, learner_id: str, course_id: Optional[str] = None) -> LearningProfile | None:
        model = self._find(session, learner_id, course_id)
        if model is None:
            return None
        return self._to_domain(model)

    def upsert(
        self,
        session: Session,
        learner_id: str,
        profile: LearningProfile,
        course_id: Optional[str] = None,
    ) -> LearningProfile:
        model = self._find(session, learner_id, course_id)
        if model is None:
            model = LearningProfileModel(
                learner_id=_normalize_learner(learner_id),
                course_id=_course_key(course_id),
            )
            session.add(model)
        model.mastered = list(profile.mastered)
        model.developing = list(profile.developing)
        model.topics = list(profile.topics)
        model.notes = profile.notes
        model.profile_updated_at = profile.updated_at
        session.flush()
        return self._to_domain(model)

    @staticmethod
    def _to_domain(model: LearningProfileModel) -> LearningProfile:
        updated_at = model.profile_updated_at
        # SQLite drops tzinfo on round trip.
        if updated_at.tzinfo is None:
            updated_at = updated_at.replace(tzinfo=timezone.utc)
        return LearningProfile(
            updated_at=updated_at,
            mastered=list(model.mastered or []),
            developing=list(model.developing or []),
            topics=list(model.topics or []),
            notes=model.notes or "",
        )


learning_profiles = LearningProfileRepository()

__all__ = ["LearningProfileRepository", "OVERALL_COURSE_KEY", "learning_profiles"]
