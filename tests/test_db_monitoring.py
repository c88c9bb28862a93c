from __future__ import annotations

from sqlalchemy import create_engine, text

from levelup.db import monitoring
from levelup.performance_tracker import PerformanceTracker


def test_instrument_engine_emits_telemetry(monkeypatch) -> None:
    emitted: list[tuple[str, dict[str, object]]] = []

    def record(event_name: str, **payload: object) -> None:
        emitted.append((event_name, payload))

    monkeypatch.setattr(monitoring, "_TELEMETRY_INTERVAL", 0)
    monkeypatch.setattr(monitoring, "emit_event", record)

    engine = create_engine("sqlite:///:memory:", future=True)
    try:
        monitoring.instrument_engine(engine)
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        assert emitted, "Expected telemetry emission when instrumentation is active."
        event_name, payload = emitted[0]
        assert event_name == "db_pool_status"
        assert payload["connects"] >= 1
    finally:
        engine.dispose()


def test_statement_timings_feed_the_tracker(monkeypatch) -> None:
    monkeypatch.setattr(monitoring, "emit_event", lambda *_, **__: None)
    tracker = PerformanceTracker()
    engine = create_engine("sqlite:///:memory:", future=True)
    try:
        monitoring.instrument_engine(engine, tracker)
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
            tracker.enable()
            connection.execute(text("CREATE TABLE learning_profiles (id INTEGER)"))
            connection.execute(text("SELECT id FROM learning_profiles"))

        samples = tracker.snapshot()
        assert [sample.category for sample in samples] == ["db", "db"]
        assert samples[-1].name == "sql.select learning_profiles"
        assert monitoring.get_pool_snapshot(engine)["statements"] >= 3
    finally:
        engine.dispose()


def test_statement_names() -> None:
    assert monitoring._statement_name("INSERT INTO learning_profiles (id) VALUES (?)") == "sql.insert learning_profiles"
    assert monitoring._statement_name("UPDATE learning_profiles SET x = 1") == "sql.update learning_profiles"
    assert monitoring._statement_name("DELETE FROM learning_profiles WHERE id = 1") == "sql.delete learning_profiles"
    assert monitoring._statement_name("SELECT 1") == "sql.select"
    assert monitoring._statement_name("   ") == "sql"
