"""Database-backed learning profile repository."""

from __future__ import annotations

from typing import Any, Dict, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from ..db.models import LearningProfileModel
from ..learning_profile import LearningProfile, profile_to_payload, storage_key


class LearningProfileRepository:
    """Row-level persistence for learning profiles, one row per storage key.

    The repository works on raw payloads; validation belongs to the caller
    so damaged rows can be reported instead of crashing the query.
    """

    def get_payload(self, session: Session, user_id: str) -> Optional[Dict[str, Any]]:
        model = self._find(session, user_id)
        if model is None:
            return None
        return self._to_payload(model)

    def upsert(self, session: Session, profile: LearningProfile) -> Dict[str, Any]:
        key = storage_key(profile.user_id)
        model = self._find(session, profile.user_id)
        if model is None:
            model = LearningProfileModel(storage_key=key, user_id=profile.user_id)
            session.add(model)

        payload = profile_to_payload(profile)
        model.personality = payload["personality"]
        model.momentum = payload["momentum"]
        model.cognitive_load = payload["cognitive_load"]
        model.motivation = payload["motivation"]
        model.profile_metadata = payload["metadata"]
        model.observation_count = profile.metadata.observation_count
        model.last_updated = profile.metadata.last_updated
        session.flush()
        return self._to_payload(model)

    def delete(self, session: Session, user_id: str) -> bool:
        stmt = delete(LearningProfileModel).where(LearningProfileModel.storage_key == storage_key(user_id))
        result = session.execute(stmt)
        return bool(result.rowcount)

    def count(self, session: Session) -> int:
        return int(session.execute(select(func.count()).select_from(LearningProfileModel)).scalar_one())

    @staticmethod
    def _find(session: Session, user_id: str) -> Optional[LearningProfileModel]:
        stmt = select(LearningProfileModel).where(LearningProfileModel.storage_key == storage_key(user_id))
        return session.execute(stmt).scalar_one_or_none()

    @staticmethod
    def _to_payload(model: LearningProfileModel) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"user_id": model.user_id}
        groups = {
            "personality": model.personality,
            "momentum": model.momentum,
            "cognitive_load": model.cognitive_load,
            "motivation": model.motivation,
            "metadata": model.profile_metadata,
        }
        for group, value in groups.items():
            if value is not None:
                payload[group] = value
        return payload


learning_profiles = LearningProfileRepository()

__all__ = ["LearningProfileRepository", "learning_profiles"]
