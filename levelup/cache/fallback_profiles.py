"""Process-local holder for unpersisted fallback profiles."""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from ..learning_profile import LearningProfile, normalize_user_id

DEFAULT_MAX_ENTRIES = 1000


@dataclass
class _FallbackEntry:
    profile: LearningProfile
    reason: str
    cached_at: datetime


class FallbackProfileCache:
    """Default profiles served while the store is unavailable.

    Entries live until a later store call for the same user succeeds, or
    until ``max_entries`` is exceeded, at which point the least recently
    served user is dropped. A dropped user simply gets a new default on the
    next failed read.
    """

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1.")
        self._max_entries = max_entries
        self._entries: "OrderedDict[str, _FallbackEntry]" = OrderedDict()

    @property
    def max_entries(self) -> int:
        return self._max_entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, user_id: str) -> Optional[LearningProfile]:
        key = normalize_user_id(user_id)
        entry = self._entries.get(key)
        if entry is None:
            return None
        self._entries.move_to_end(key)
        return entry.profile.model_copy(deep=True)

    def set(self, user_id: str, profile: LearningProfile, reason: str = "") -> None:
        key = normalize_user_id(user_id)
        self._entries[key] = _FallbackEntry(
            profile=profile.model_copy(deep=True),
            reason=reason,
            cached_at=datetime.now(timezone.utc),
        )
        self._entries.move_to_end(key)
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)

    def reason(self, user_id: str) -> Optional[str]:
        entry = self._entries.get(normalize_user_id(user_id))
        return entry.reason if entry else None

    def __contains__(self, user_id: object) -> bool:
        return isinstance(user_id, str) and user_id.strip() in self._entries

    def invalidate(self, user_id: str) -> bool:
        return self._entries.pop(normalize_user_id(user_id), None) is not None


__all__ = ["DEFAULT_MAX_ENTRIES", "FallbackProfileCache"]
