"""Database observability helpers: pool counters and statement timings."""

from __future__ import annotations

import os
import time
import weakref
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, Optional

from sqlalchemy import event
from sqlalchemy.engine import Engine

from ..telemetry import emit_event

if TYPE_CHECKING:
    from ..performance_tracker import PerformanceTracker


@dataclass
class PoolTelemetryState:
    connects: int = 0
    checkouts: int = 0
    checkins: int = 0
    statements: int = 0
    last_emit: float = 0.0


_STATE_BY_ENGINE: "weakref.WeakKeyDictionary[Engine, PoolTelemetryState]" = weakref.WeakKeyDictionary()
_TELEMETRY_INTERVAL = float(os.getenv("LEVELUP_DB_TELEMETRY_INTERVAL", "30"))
_START_KEY = "levelup_statement_start"


def _statement_name(statement: str) -> str:
    words = statement.strip().split(None, 3)
    if not words:
        return "sql"
    verb = words[0].upper()
    table = ""
    if verb == "SELECT" and "FROM" in statement.upper():
        tail = statement.upper().split("FROM", 1)[1].split()
        table = tail[0].lower() if tail else ""
    elif verb in {"INSERT", "DELETE"} and len(words) >= 3:
        table = words[2].lower()
    elif verb == "UPDATE" and len(words) >= 2:
        table = words[1].lower()
    return f"sql.{verb.lower()} {table}".strip()


def instrument_engine(engine: Engine, tracker: Optional["PerformanceTracker"] = None) -> None:
    """Attach pool listeners that emit telemetry and, optionally, statement timings."""
    if engine in _STATE_BY_ENGINE:
        return

    state = PoolTelemetryState()
    _STATE_BY_ENGINE[engine] = state

    def snapshot(event_name: str) -> None:
        now = time.time()
        should_emit = _TELEMETRY_INTERVAL <= 0 or (now - state.last_emit) >= _TELEMETRY_INTERVAL
        if not should_emit:
            return
        state.last_emit = now
        payload = {
            "status": _safe_pool_status(engine),
            "event": event_name,
            "connects": state.connects,
            "checkouts": state.checkouts,
            "checkins": state.checkins,
        }
        emit_event("db_pool_status", **payload)

    @event.listens_for(engine, "connect", retval=False)
    def _on_connect(dbapi_connection, connection_record) -> None:  # type: ignore[no-untyped-def]
        state.connects += 1
        snapshot("db_pool_connect")

    @event.listens_for(engine, "checkout")
    def _on_checkout(dbapi_connection, connection_record, connection_proxy) -> None:  # type: ignore[no-untyped-def]
        state.checkouts += 1
        snapshot("db_pool_checkout")

    @event.listens_for(engine, "checkin")
    def _on_checkin(dbapi_connection, connection_record) -> None:  # type: ignore[no-untyped-def]
        state.checkins += 1
        snapshot("db_pool_checkin")

    if tracker is None:
        return

    @event.listens_for(engine, "before_cursor_execute")
    def _before_execute(conn, cursor, statement, parameters, context, executemany) -> None:  # type: ignore[no-untyped-def]
        conn.info.setdefault(_START_KEY, []).append(time.perf_counter())

    @event.listens_for(engine, "after_cursor_execute")
    def _after_execute(conn, cursor, statement, parameters, context, executemany) -> None:  # type: ignore[no-untyped-def]
        starts = conn.info.get(_START_KEY)
        if not starts:
            return
        elapsed_ms = (time.perf_counter() - starts.pop()) * 1000.0
        state.statements += 1
        tracker.record(_statement_name(statement), elapsed_ms, category="db")


def get_pool_snapshot(engine: Engine) -> Dict[str, object]:
    """Return the latest counters and pool status for the provided engine."""
    state = _STATE_BY_ENGINE.get(engine)
    status = _safe_pool_status(engine)
    return {
        "status": status,
        "connects": state.connects if state else 0,
        "checkouts": state.checkouts if state else 0,
        "checkins": state.checkins if state else 0,
        "statements": state.statements if state else 0,
    }


def _safe_pool_status(engine: Engine) -> str:
    try:
        return engine.pool.status()  # type: ignore[no-untyped-call]
    except Exception as exc:  # pragma: no cover - status is informational only
        return f"unavailable: {exc}"


__all__ = [
    "get_pool_snapshot",
    "instrument_engine",
]
