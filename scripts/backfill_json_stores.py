from __future__ import annotations

import argparse
import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Tuple

from sqlalchemy.orm import Session, sessionmaker

from levelup.db.base import Base
from levelup.db.session import get_engine, session_scope
from levelup.errors import MalformedRecordError
from levelup.learning_profile import STORAGE_KEY_PREFIX, profile_from_payload
from levelup.repositories.learning_profiles import learning_profiles
from levelup.profile_store import DATA_DIR


logger = logging.getLogger("backfill")

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def _ensure_database() -> None:
    engine = get_engine()
    Base.metadata.create_all(engine)


def _load_json(path: Path) -> Any:
    with path.open(encoding="utf-8") as handle:
        return json.load(handle)


def _snake_keys(value: Any) -> Any:
    """Exports written by the browser client use camelCase keys."""
    if isinstance(value, dict):
        return {_CAMEL_BOUNDARY.sub("_", str(key)).lower(): _snake_keys(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_snake_keys(item) for item in value]
    return value


def _user_id_for(key: str, payload: Dict[str, Any]) -> Optional[str]:
    user_id = payload.get("user_id")
    if isinstance(user_id, str) and user_id.strip():
        return user_id.strip()
    prefix = f"{STORAGE_KEY_PREFIX}-"
    if key.startswith(prefix) and len(key) > len(prefix):
        return key[len(prefix):]
    return None


def iter_legacy_profiles(payload: Any) -> Iterator[Tuple[str, Dict[str, Any]]]:
    """Yield ``(user_id, payload)`` pairs from a keyed document or a plain list."""
    if isinstance(payload, dict):
        entries = payload.items()
    elif isinstance(payload, list):
        entries = ((str(index), entry) for index, entry in enumerate(payload))
    else:
        logger.warning("Legacy profile document is neither a mapping nor a list; skipping")
        return
    for key, entry in entries:
        if not isinstance(entry, dict):
            logger.warning("Skipping non-object profile entry %s", key)
            continue
        record = _snake_keys(entry)
        user_id = _user_id_for(key, record)
        if user_id is None:
            logger.warning("Skipping profile entry %s; no user id", key)
            continue
        record["user_id"] = user_id
        yield user_id, record


def backfill_profiles(
    path: Path,
    *,
    dry_run: bool = False,
    factory: Optional[sessionmaker[Session]] = None,
) -> int:
    if not path.exists():
        logger.info("No legacy profiles found at %s", path)
        return 0
    imported = 0
    with session_scope(commit=not dry_run, factory=factory) as session:
        for user_id, record in iter_legacy_profiles(_load_json(path)):
            try:
                profile = profile_from_payload(user_id, record)
            except MalformedRecordError as exc:
                logger.warning("Skipping invalid profile payload: %s", exc)
                continue
            learning_profiles.upsert(session, profile)
            imported += 1
    logger.info("%s %d learning profiles", "Validated" if dry_run else "Imported", imported)
    return imported


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Backfill a legacy JSON profile store into the database.")
    parser.add_argument("--profiles", type=Path, default=DATA_DIR / "learning_profiles.json")
    parser.add_argument("--dry-run", action="store_true", help="Validate and roll back instead of committing.")
    return parser.parse_args()


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    args = parse_args()
    _ensure_database()
    total = backfill_profiles(args.profiles, dry_run=args.dry_run)
    logger.info("Backfill completed: %d profiles", total)


if __name__ == "__main__":
    main()
