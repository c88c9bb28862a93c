"""ORM models backing the learning profile persistence layer."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from .base import Base, TimestampMixin

JSONType = JSON


class LearningProfileModel(TimestampMixin, Base):
    """One row per learner; each profile group lives in its own JSON column.

    Group columns are nullable so that a damaged row can be read back and
    reported as malformed instead of failing the whole query.
    """

    __tablename__ = "learning_profiles"
    __table_args__ = (Index("ix_learning_profiles_storage_key", "storage_key", unique=True),)

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    storage_key: Mapped[str] = mapped_column(String(255), nullable=False)
    user_id: Mapped[str] = mapped_column(String(200), nullable=False)
    personality: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    momentum: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    cognitive_load: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    motivation: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    profile_metadata: Mapped[dict | None] = mapped_column("metadata", JSONType, nullable=True)
    observation_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )


__all__ = ["JSONType", "LearningProfileModel"]
