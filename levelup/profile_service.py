"""Profile service: the single owner of learning profile persistence."""

from __future__ import annotations

import asyncio
import logging
import weakref
from datetime import datetime
from typing import Any, Callable, Iterable, List, Literal, Optional

from pydantic import BaseModel, Field

from .cache import FallbackProfileCache
from .errors import InvalidEventError, MalformedRecordError, StorageFailure
from .learning_profile import (
    LearningEvent,
    LearningProfile,
    _now,
    new_profile,
    normalize_user_id,
    parse_event,
    storage_key,
)
from .performance_tracker import PerformanceTracker
from .profile_estimator import EstimatorConfig, ProfileEstimator
from .profile_store import ProfileStore
from .telemetry import EventBus, Listener, default_bus

logger = logging.getLogger(__name__)

PROFILE_INVALIDATED = "profile_invalidated"


class ProfileInspection(BaseModel):
    user_id: str
    storage_key: str
    status: Literal["ok", "missing", "malformed"]
    missing_groups: List[str] = Field(default_factory=list)
    detail: Optional[str] = None
    observation_count: Optional[int] = None
    confidence_score: Optional[float] = None
    last_updated: Optional[datetime] = None
    fallback: bool = False
    fallback_reason: Optional[str] = None


class LearningProfileService:
    """Mediates every read and write of learning profiles.

    Callers always get a fully populated profile or an explicit failure.
    Writes for one user are serialized by a per-user lock so concurrent
    events never overwrite each other's contribution.
    """

    def __init__(
        self,
        store: ProfileStore,
        estimator: Optional[ProfileEstimator] = None,
        *,
        bus: Optional[EventBus] = None,
        fallback_cache: Optional[FallbackProfileCache] = None,
        tracker: Optional[PerformanceTracker] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._estimator = estimator or ProfileEstimator()
        self._bus = bus or default_bus
        self._fallbacks = fallback_cache if fallback_cache is not None else FallbackProfileCache()
        self._tracker = tracker
        self._clock = clock or _now
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    @classmethod
    def from_settings(cls, settings: Any, store: ProfileStore, **kwargs: Any) -> "LearningProfileService":
        kwargs.setdefault("fallback_cache", FallbackProfileCache(settings.fallback_cache_size))
        return cls(store, ProfileEstimator(EstimatorConfig.from_settings(settings)), **kwargs)

    @property
    def store(self) -> ProfileStore:
        return self._store

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    async def _load(self, user_id: str) -> Optional[LearningProfile]:
        try:
            return await self._store.get(user_id)
        except MalformedRecordError as exc:
            logger.warning("Discarding malformed learning profile: %s", exc)
            self._bus.emit(
                "profile_malformed",
                user_id=user_id,
                missing_groups=exc.missing_groups,
                detail=exc.detail,
            )
            return None

    def is_fallback(self, user_id: str) -> bool:
        return normalize_user_id(user_id) in self._fallbacks

    async def get_or_create(self, user_id: str) -> LearningProfile:
        """Return the stored profile, creating the default when there is none.

        Never raises ``StorageFailure``: when the store is unavailable an
        unpersisted default is served instead and kept for later reads.
        """
        normalized = normalize_user_id(user_id)
        now = self._clock()
        async with self._lock_for(normalized):
            try:
                profile = await self._load(normalized)
                if profile is None:
                    profile = await self._store.put(normalized, new_profile(normalized, now))
                    self._bus.emit("profile_created", user_id=normalized)
            except StorageFailure as exc:
                return self._fallback(normalized, exc, now)
        self._fallbacks.invalidate(normalized)
        return self._estimator.decay(profile, now)

    def _fallback(self, user_id: str, exc: StorageFailure, now: datetime) -> LearningProfile:
        cached = self._fallbacks.get(user_id)
        if cached is not None:
            return cached
        logger.warning("Serving in-memory default profile for %s: %s", user_id, exc)
        profile = new_profile(user_id, now)
        self._fallbacks.set(user_id, profile, reason=str(exc))
        self._bus.emit("profile_fallback", user_id=user_id, operation=exc.operation, reason=exc.reason)
        return profile

    async def record_event(self, user_id: str, event: Any) -> LearningProfile:
        return await self.record_events(user_id, [event])

    async def record_events(self, user_id: str, events: Iterable[Any]) -> LearningProfile:
        """Fold events into the user's profile and persist the result.

        Events are validated before anything is read. A ``StorageFailure``
        propagates and nothing is applied.
        """
        normalized = normalize_user_id(user_id)
        parsed: List[LearningEvent] = [parse_event(raw) for raw in events]
        if not parsed:
            raise InvalidEventError("At least one learning event is required.")

        async with self._lock_for(normalized):
            now = self._clock()
            current = await self._load(normalized)
            base = current if current is not None else new_profile(normalized, now)
            if self._tracker is not None:
                updated = self._tracker.track("estimator.apply", self._estimator.apply, base, parsed, now)
            else:
                updated = self._estimator.apply(base, parsed, now)
            if current is not None:
                updated.metadata.profile_version = current.metadata.profile_version + 1
            stored = await self._store.put(normalized, updated)

        self._fallbacks.invalidate(normalized)
        meta = stored.metadata
        logger.debug(
            "Recorded %d event(s) for %s (observations=%d, confidence=%.3f)",
            len(parsed),
            normalized,
            meta.observation_count,
            meta.confidence_score,
        )
        self._bus.emit(
            "profile_updated",
            user_id=normalized,
            events=len(parsed),
            observation_count=meta.observation_count,
            confidence_score=round(meta.confidence_score, 4),
        )
        return stored

    async def refresh(self, user_id: str) -> LearningProfile:
        normalized = normalize_user_id(user_id)
        async with self._lock_for(normalized):
            now = self._clock()
            current = await self._load(normalized)
            if current is None:
                refreshed = new_profile(normalized, now)
            else:
                refreshed = self._estimator.refresh(current, now)
                refreshed.metadata.profile_version = current.metadata.profile_version + 1
            stored = await self._store.put(normalized, refreshed)
        self._fallbacks.invalidate(normalized)
        self._bus.emit("profile_refreshed", user_id=normalized)
        return stored

    async def reset(self, user_id: str) -> bool:
        """Delete the stored profile. Returns whether a record was removed."""
        return await self._remove(user_id, reason="reset")

    async def delete(self, user_id: str) -> bool:
        return await self._remove(user_id, reason="account_removed")

    async def _remove(self, user_id: str, *, reason: str) -> bool:
        normalized = normalize_user_id(user_id)
        async with self._lock_for(normalized):
            removed = await self._store.delete(normalized)
        self._fallbacks.invalidate(normalized)
        logger.info("Learning profile for %s invalidated (%s, removed=%s)", normalized, reason, removed)
        self._bus.emit(PROFILE_INVALIDATED, user_id=normalized, reason=reason, removed=removed)
        return removed

    async def clear_and_recreate(self, user_id: str) -> LearningProfile:
        """Recovery action: drop whatever is stored and hand back a fresh default."""
        await self.reset(user_id)
        return await self.get_or_create(user_id)

    async def inspect(self, user_id: str) -> ProfileInspection:
        normalized = normalize_user_id(user_id)
        summary = {
            "user_id": normalized,
            "storage_key": storage_key(normalized),
            "fallback": normalized in self._fallbacks,
            "fallback_reason": self._fallbacks.reason(normalized),
        }
        try:
            profile = await self._store.get(normalized)
        except MalformedRecordError as exc:
            return ProfileInspection(
                status="malformed",
                missing_groups=exc.missing_groups,
                detail=exc.detail,
                **summary,
            )
        if profile is None:
            return ProfileInspection(status="missing", **summary)
        return ProfileInspection(
            status="ok",
            observation_count=profile.metadata.observation_count,
            confidence_score=profile.metadata.confidence_score,
            last_updated=profile.metadata.last_updated,
            **summary,
        )

    def subscribe(self, listener: Listener) -> None:
        """Register a listener for ``profile_invalidated`` signals."""
        self._bus.subscribe(listener, PROFILE_INVALIDATED)

    def unsubscribe(self, listener: Listener) -> bool:
        return self._bus.unsubscribe(listener)


__all__ = ["LearningProfileService", "PROFILE_INVALIDATED", "ProfileInspection"]
