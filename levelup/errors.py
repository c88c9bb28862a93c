"""Error taxonomy for the learning profile subsystem."""

from __future__ import annotations

from typing import Iterable, List, Optional


class ProfileError(Exception):
    """Base class for learning profile failures."""


class MalformedRecordError(ProfileError):
    """A stored record failed structural validation."""

    def __init__(self, user_id: str, missing_groups: Iterable[str] = (), detail: Optional[str] = None) -> None:
        self.user_id = user_id
        self.missing_groups: List[str] = list(missing_groups)
        self.detail = detail
        message = f"Stored learning profile for '{user_id}' is malformed"
        if self.missing_groups:
            message += f" (missing: {', '.join(self.missing_groups)})"
        elif detail:
            message += f": {detail}"
        super().__init__(message)


class StorageFailure(ProfileError):
    """The persistence backend failed a read or write."""

    def __init__(self, operation: str, user_id: str, reason: str) -> None:
        self.operation = operation
        self.user_id = user_id
        self.reason = reason
        super().__init__(f"Profile store {operation} failed for '{user_id}': {reason}")


class InvalidEventError(ProfileError, ValueError):
    """A learning-session event lacks the timing or correctness signals."""


__all__ = [
    "InvalidEventError",
    "MalformedRecordError",
    "ProfileError",
    "StorageFailure",
]
