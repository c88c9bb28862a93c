"""Learning profile models and serialization helpers."""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Mapping, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .errors import InvalidEventError, MalformedRecordError


STORAGE_KEY_PREFIX = "user-learning-profile"
PROFILE_GROUPS = ("personality", "momentum", "cognitive_load", "motivation", "metadata")

LearningStyle = Literal["visual", "auditory", "kinesthetic", "reading-writing", "multimodal"]
ProcessingSpeed = Literal["fast", "moderate", "deliberate"]
MomentumState = Literal["building", "steady", "declining", "stalled"]
CognitiveLoadLevel = Literal["low", "optimal", "high", "overloaded"]
RecommendedAction = Literal["continue", "simplify", "break", "challenge"]

UnitFloat = Annotated[float, Field(ge=0.0, le=1.0)]
# One hour.
MAX_RESPONSE_MS = 3_600_000.0

Millis = Annotated[float, Field(gt=0.0, le=MAX_RESPONSE_MS, allow_inf_nan=False)]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def normalize_user_id(value: str) -> str:
    normalized = value.strip() if isinstance(value, str) else ""
    if not normalized:
        raise ValueError("User id cannot be empty.")
    return normalized


def storage_key(user_id: str) -> str:
    """Persistence key shared by every store backend and the operator scripts."""
    return f"{STORAGE_KEY_PREFIX}-{normalize_user_id(user_id)}"


class LearningPersonality(BaseModel):
    learning_style: LearningStyle = "multimodal"
    processing_speed: ProcessingSpeed = "moderate"
    modality_counts: Dict[LearningStyle, int] = Field(default_factory=dict)


class LearningMomentum(BaseModel):
    state: MomentumState = "steady"
    trend: float = 0.0
    recent_accuracy: List[UnitFloat] = Field(default_factory=list)
    flat_streak: int = Field(default=0, ge=0)


class CognitiveLoad(BaseModel):
    level: CognitiveLoadLevel = "optimal"
    error_rate: UnitFloat = 0.0
    response_time_mean_ms: float = Field(default=0.0, ge=0.0, le=MAX_RESPONSE_MS, allow_inf_nan=False)
    response_time_variation: float = Field(default=0.0, ge=0.0, allow_inf_nan=False)
    recommended_action: RecommendedAction = "continue"
    recent_error_rates: List[UnitFloat] = Field(default_factory=list)
    recent_response_ms: List[Millis] = Field(default_factory=list)


class MotivationProfile(BaseModel):
    current_level: UnitFloat = 0.7
    trend: float = Field(default=0.0, ge=-1.0, le=1.0)


class ProfileMetadata(BaseModel):
    confidence_score: UnitFloat = 0.0
    observation_count: int = Field(default=0, ge=0)
    profile_version: int = Field(default=1, ge=1)
    created_at: datetime = Field(default_factory=_now)
    last_updated: datetime = Field(default_factory=_now)

    @field_validator("created_at", "last_updated")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return _as_utc(value)


class LearningProfile(BaseModel):
    """Per-user record of inferred learning characteristics.

    Every group is required: a profile either validates with all of them
    present or is not a profile at all.
    """

    user_id: str = Field(..., min_length=1)
    personality: LearningPersonality
    momentum: LearningMomentum
    cognitive_load: CognitiveLoad
    motivation: MotivationProfile
    metadata: ProfileMetadata


def new_profile(user_id: str, now: Optional[datetime] = None) -> LearningProfile:
    """Build the documented default profile for a user that has no evidence yet."""
    timestamp = _as_utc(now) if now is not None else _now()
    return LearningProfile(
        user_id=normalize_user_id(user_id),
        personality=LearningPersonality(),
        momentum=LearningMomentum(),
        cognitive_load=CognitiveLoad(),
        motivation=MotivationProfile(),
        metadata=ProfileMetadata(created_at=timestamp, last_updated=timestamp),
    )


def profile_to_payload(profile: LearningProfile) -> Dict[str, Any]:
    return profile.model_dump(mode="json")


def missing_groups(payload: Any) -> List[str]:
    if not isinstance(payload, Mapping):
        return list(PROFILE_GROUPS)
    return [group for group in PROFILE_GROUPS if not isinstance(payload.get(group), Mapping)]


def profile_from_payload(user_id: str, payload: Any) -> LearningProfile:
    """Validate a stored payload, raising ``MalformedRecordError`` on any structural problem."""
    absent = missing_groups(payload)
    if absent:
        raise MalformedRecordError(user_id, absent)
    try:
        profile = LearningProfile.model_validate(payload)
    except ValidationError as exc:
        raise MalformedRecordError(user_id, detail=f"{exc.error_count()} validation error(s)") from exc
    if profile.user_id != user_id:
        raise MalformedRecordError(user_id, detail=f"record belongs to '{profile.user_id}'")
    return profile


class SelfReport(BaseModel):
    motivation: Optional[UnitFloat] = None
    perceived_difficulty: Optional[UnitFloat] = None


class LearningEvent(BaseModel):
    """One learning-session observation folded into a profile."""

    attempts: int = Field(..., ge=1)
    correct: int = Field(..., ge=0)
    response_times_ms: List[Millis] = Field(..., min_length=1)
    occurred_at: datetime = Field(default_factory=_now)
    modality: Optional[LearningStyle] = None
    completed: bool = True
    self_report: Optional[SelfReport] = None

    @field_validator("occurred_at")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @model_validator(mode="after")
    def _check_correct(self) -> "LearningEvent":
        if self.correct > self.attempts:
            raise ValueError("correct cannot exceed attempts")
        return self

    @property
    def accuracy(self) -> float:
        return self.correct / self.attempts

    @property
    def error_rate(self) -> float:
        return 1.0 - self.accuracy

    @property
    def mean_response_ms(self) -> float:
        return math.fsum(self.response_times_ms) / len(self.response_times_ms)


def parse_event(raw: Any) -> LearningEvent:
    """Coerce a mapping or model into a validated ``LearningEvent``."""
    if isinstance(raw, LearningEvent):
        return raw
    try:
        if isinstance(raw, BaseModel):
            return LearningEvent.model_validate(raw.model_dump())
        return LearningEvent.model_validate(raw)
    except ValidationError as exc:
        fields = sorted({".".join(str(part) for part in error["loc"]) or "event" for error in exc.errors()})
        raise InvalidEventError(f"Rejected learning event; invalid fields: {', '.join(fields)}") from exc


__all__ = [
    "CognitiveLoad",
    "CognitiveLoadLevel",
    "LearningEvent",
    "LearningMomentum",
    "LearningPersonality",
    "LearningProfile",
    "LearningStyle",
    "MAX_RESPONSE_MS",
    "MomentumState",
    "MotivationProfile",
    "PROFILE_GROUPS",
    "ProcessingSpeed",
    "ProfileMetadata",
    "STORAGE_KEY_PREFIX",
    "SelfReport",
    "missing_groups",
    "new_profile",
    "normalize_user_id",
    "parse_event",
    "profile_from_payload",
    "profile_to_payload",
    "storage_key",
]
