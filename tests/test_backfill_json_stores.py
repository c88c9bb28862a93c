from __future__ import annotations

import asyncio
import json
from pathlib import Path

from levelup.db.base import Base
from levelup.db.session import build_engine, make_session_factory, session_scope
from levelup.learning_profile import new_profile, profile_to_payload, storage_key
from levelup.profile_store import DatabaseProfileStore, JsonFileProfileStore
from levelup.repositories.learning_profiles import learning_profiles
from scripts import backfill_json_stores as backfill


def _factory(tmp_path: Path):
    engine = build_engine(f"sqlite:///{tmp_path / 'backfill.db'}")
    Base.metadata.create_all(engine)
    return make_session_factory(engine)


def test_backfill_imports_json_store_document(tmp_path: Path) -> None:
    source = JsonFileProfileStore(tmp_path / "learning_profiles.json")
    trained = new_profile("ada")
    trained.metadata.observation_count = 4
    asyncio.run(source.put("ada", trained))
    asyncio.run(source.put("grace", new_profile("grace")))
    factory = _factory(tmp_path)

    imported = backfill.backfill_profiles(source.path, factory=factory)

    assert imported == 2
    restored = asyncio.run(DatabaseProfileStore(factory).get("ada"))
    assert restored == trained


def test_backfill_accepts_camel_case_exports_and_skips_invalid(tmp_path: Path) -> None:
    legacy = {
        storage_key("lin"): {
            "personality": {"learningStyle": "visual", "processingSpeed": "fast"},
            "momentum": {"state": "building"},
            "cognitiveLoad": {"level": "high", "recommendedAction": "simplify"},
            "motivation": {"currentLevel": 0.6},
            "metadata": {"confidenceScore": 0.3, "observationCount": 7},
        },
        storage_key("broken"): {"personality": {}},
        "no-user": {"personality": {}},
    }
    path = tmp_path / "legacy.json"
    path.write_text(json.dumps(legacy), encoding="utf-8")
    factory = _factory(tmp_path)

    imported = backfill.backfill_profiles(path, factory=factory)

    assert imported == 1
    profile = asyncio.run(DatabaseProfileStore(factory).get("lin"))
    assert profile.personality.learning_style == "visual"
    assert profile.cognitive_load.recommended_action == "simplify"
    assert profile.metadata.observation_count == 7


def test_backfill_dry_run_commits_nothing(tmp_path: Path) -> None:
    path = tmp_path / "profiles.json"
    path.write_text(json.dumps([profile_to_payload(new_profile("ada"))]), encoding="utf-8")
    factory = _factory(tmp_path)

    assert backfill.backfill_profiles(path, dry_run=True, factory=factory) == 1

    with session_scope(factory=factory) as session:
        assert learning_profiles.count(session) == 0


def test_backfill_missing_file_is_noop(tmp_path: Path) -> None:
    assert backfill.backfill_profiles(tmp_path / "absent.json", factory=_factory(tmp_path)) == 0
