"""Durable key-value persistence for learning profiles.

Every backend exposes the same async contract:

* ``get(user_id)`` returns the profile, ``None`` when absent, and raises
  :class:`MalformedRecordError` for a record that fails validation;
* ``put(user_id, profile)`` writes the whole profile or nothing;
* ``delete(user_id)`` returns ``False`` when there was nothing to delete.

Backend failures surface as :class:`StorageFailure`. A failed write never
replaces the previously stored record.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Protocol, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .config import Settings
from .db.session import get_session_factory, session_scope
from .errors import StorageFailure
from .learning_profile import (
    LearningProfile,
    normalize_user_id,
    profile_from_payload,
    profile_to_payload,
    storage_key,
)
from .repositories.learning_profiles import LearningProfileRepository, learning_profiles

logger = logging.getLogger(__name__)

DATA_DIR = Path(__file__).resolve().parent / "data"

T = TypeVar("T")


class ProfileStore(Protocol):
    async def get(self, user_id: str) -> Optional[LearningProfile]:  # pragma: no cover - protocol definition
        ...

    async def put(self, user_id: str, profile: LearningProfile) -> LearningProfile:  # pragma: no cover
        ...

    async def delete(self, user_id: str) -> bool:  # pragma: no cover
        ...


def _owned_payload(user_id: str, profile: LearningProfile) -> Dict[str, Any]:
    normalized = normalize_user_id(user_id)
    if profile.user_id != normalized:
        raise ValueError(f"Profile for '{profile.user_id}' cannot be stored under '{normalized}'.")
    return profile_to_payload(profile)


class InMemoryProfileStore:
    """Process-local store keeping serialized payloads, used in tests and ``memory`` mode."""

    def __init__(self) -> None:
        self._records: Dict[str, Dict[str, Any]] = {}

    async def get(self, user_id: str) -> Optional[LearningProfile]:
        normalized = normalize_user_id(user_id)
        payload = self._records.get(storage_key(normalized))
        if payload is None:
            return None
        return profile_from_payload(normalized, copy.deepcopy(payload))

    async def put(self, user_id: str, profile: LearningProfile) -> LearningProfile:
        payload = _owned_payload(user_id, profile)
        self._records[storage_key(user_id)] = payload
        return profile.model_copy(deep=True)

    async def delete(self, user_id: str) -> bool:
        return self._records.pop(storage_key(user_id), None) is not None

    def keys(self) -> list[str]:
        return sorted(self._records)


class JsonFileProfileStore:
    """JSON-document store used for offline and legacy deployments.

    The whole document is rewritten through a temporary file and
    ``os.replace``, so readers see either the old or the new document.
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self._path = Path(path) if path is not None else DATA_DIR / "learning_profiles.json"
        self._lock = threading.RLock()

    @property
    def path(self) -> Path:
        return self._path

    def _load_unlocked(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        with self._path.open("r", encoding="utf-8") as handle:
            raw = json.load(handle)
        if not isinstance(raw, dict):
            raise ValueError(f"{self._path} does not contain a JSON object")
        return raw

    def _write_unlocked(self, records: Dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self._path.name}.", dir=str(self._path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(records, handle, indent=2, sort_keys=True)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self._path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def _read_payload(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self._load_unlocked().get(key)

    def _write_payload(self, key: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            records = self._load_unlocked()
            records[key] = payload
            self._write_unlocked(records)

    def _delete_payload(self, key: str) -> bool:
        with self._lock:
            records = self._load_unlocked()
            if key not in records:
                return False
            records.pop(key)
            self._write_unlocked(records)
        return True

    async def _run(self, operation: str, user_id: str, fn: Callable[..., T], *args: Any) -> T:
        try:
            return await asyncio.to_thread(fn, *args)
        except (OSError, ValueError) as exc:
            logger.warning("JSON profile store %s failed for %s: %s", operation, user_id, exc)
            raise StorageFailure(operation, user_id, str(exc)) from exc

    async def get(self, user_id: str) -> Optional[LearningProfile]:
        normalized = normalize_user_id(user_id)
        payload = await self._run("get", normalized, self._read_payload, storage_key(normalized))
        if payload is None:
            return None
        return profile_from_payload(normalized, payload)

    async def put(self, user_id: str, profile: LearningProfile) -> LearningProfile:
        payload = _owned_payload(user_id, profile)
        normalized = normalize_user_id(user_id)
        await self._run("put", normalized, self._write_payload, storage_key(normalized), payload)
        return profile.model_copy(deep=True)

    async def delete(self, user_id: str) -> bool:
        normalized = normalize_user_id(user_id)
        return await self._run("delete", normalized, self._delete_payload, storage_key(normalized))


class DatabaseProfileStore:
    """SQLAlchemy-backed store; each call is one transaction run in a worker thread."""

    def __init__(
        self,
        session_factory: Optional[sessionmaker[Session]] = None,
        repository: Optional[LearningProfileRepository] = None,
    ) -> None:
        self._session_factory = session_factory
        self._repo = repository or learning_profiles

    def _factory(self) -> sessionmaker[Session]:
        return self._session_factory or get_session_factory()

    def _get_payload(self, user_id: str) -> Optional[Dict[str, Any]]:
        with session_scope(commit=False, factory=self._factory()) as session:
            return self._repo.get_payload(session, user_id)

    def _upsert(self, profile: LearningProfile) -> None:
        with session_scope(factory=self._factory()) as session:
            self._repo.upsert(session, profile)

    def _delete(self, user_id: str) -> bool:
        with session_scope(factory=self._factory()) as session:
            return self._repo.delete(session, user_id)

    async def _run(self, operation: str, user_id: str, fn: Callable[..., T], *args: Any) -> T:
        try:
            return await asyncio.to_thread(fn, *args)
        except (SQLAlchemyError, RuntimeError) as exc:
            logger.warning("Database profile store %s failed for %s: %s", operation, user_id, exc)
            raise StorageFailure(operation, user_id, str(exc)) from exc

    async def get(self, user_id: str) -> Optional[LearningProfile]:
        normalized = normalize_user_id(user_id)
        payload = await self._run("get", normalized, self._get_payload, normalized)
        if payload is None:
            return None
        return profile_from_payload(normalized, payload)

    async def put(self, user_id: str, profile: LearningProfile) -> LearningProfile:
        _owned_payload(user_id, profile)
        normalized = normalize_user_id(user_id)
        await self._run("put", normalized, self._upsert, profile)
        return profile.model_copy(deep=True)

    async def delete(self, user_id: str) -> bool:
        normalized = normalize_user_id(user_id)
        return await self._run("delete", normalized, self._delete, normalized)


def build_profile_store(
    settings: Settings,
    *,
    session_factory: Optional[sessionmaker[Session]] = None,
) -> ProfileStore:
    """Pick the store backend configured by ``LEVELUP_PERSISTENCE_MODE``."""
    mode = settings.persistence_mode
    if mode == "memory":
        return InMemoryProfileStore()
    if mode == "json":
        path = Path(settings.json_store_path) if settings.json_store_path else None
        return JsonFileProfileStore(path)
    return DatabaseProfileStore(session_factory)


__all__ = [
    "DatabaseProfileStore",
    "InMemoryProfileStore",
    "JsonFileProfileStore",
    "ProfileStore",
    "build_profile_store",
]
