"""Structured event bus shared by the profile service and the HTTP surface."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from threading import RLock
from typing import Any, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger("levelup.telemetry")

Listener = Callable[["TelemetryEvent"], None]


@dataclass(frozen=True)
class TelemetryEvent:
    name: str
    payload: Dict[str, Any]


class EventBus:
    """Fan-out of named events to in-process listeners.

    Listeners may subscribe to a single event name or to everything
    (``name=None``). A failing listener is logged and never interrupts
    delivery to the others.
    """

    def __init__(self, *, log_events: bool = True) -> None:
        self._listeners: List[Tuple[Optional[str], Listener]] = []
        self._lock = RLock()
        self._log_events = log_events

    def subscribe(self, listener: Listener, name: Optional[str] = None) -> None:
        with self._lock:
            self._listeners.append((name, listener))

    def unsubscribe(self, listener: Listener) -> bool:
        with self._lock:
            before = len(self._listeners)
            self._listeners = [entry for entry in self._listeners if entry[1] != listener]
            return len(self._listeners) != before

    def clear(self) -> None:
        with self._lock:
            self._listeners.clear()

    def emit(self, name: str, **fields: Any) -> TelemetryEvent:
        event = TelemetryEvent(name=name, payload=_sanitize(fields))

        with self._lock:
            listeners = [listener for wanted, listener in self._listeners if wanted in (None, name)]

        for listener in listeners:
            try:
                listener(event)
            except Exception:  # noqa: BLE001
                logger.exception("Telemetry listener failed for %s", name)

        if self._log_events:
            structured = {"event": name, **event.payload}
            logger.info("TELEMETRY %s", json.dumps(structured, default=_json_default))
        return event


default_bus = EventBus()


def emit_event(name: str, **fields: Any) -> TelemetryEvent:
    return default_bus.emit(name, **fields)


def _sanitize(fields: Dict[str, Any]) -> Dict[str, Any]:
    sanitized: Dict[str, Any] = {}
    for key, value in fields.items():
        if isinstance(value, datetime):
            sanitized[key] = value.isoformat()
        else:
            sanitized[key] = value
    return sanitized


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


__all__ = [
    "EventBus",
    "Listener",
    "TelemetryEvent",
    "default_bus",
    "emit_event",
]
