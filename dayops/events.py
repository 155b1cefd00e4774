"""Store event bus.

Every store event lands in a bounded in-memory history, reaches subscribers,
and is appended to the JSONL audit log once one is attached. Events emitted
before the log is attached are held (bounded by the same limit) and written
when `set_log_path` is called.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Callable
import json
import secrets
import time
from pathlib import Path
from typing import Any

from .model import utc_now_iso

INIT_READY = "store.init.ready"
INIT_DEGRADED = "store.init.degraded"
MIGRATION_WARNING = "store.migration.warning"
ROLLOVER_APPLIED = "store.rollover.applied"
STORAGE_RECOVERED = "store.storage.recovered"
PERSIST_RETRY = "store.persist.retry"
PERSIST_FAILED = "store.persist.failed"
COMMAND_OK = "store.command.ok"
COMMAND_FAILED = "store.command.failed"
IMPORT_REJECTED = "store.import.rejected"
IMPORT_MERGED = "store.import.merged"

GENERIC_EVENT = "store.event"
SEVERITIES = ("info", "warn", "error")
DEFAULT_HISTORY = 200

EventHandler = Callable[[dict[str, Any]], Any]


def new_event_id() -> str:
    return f"evt-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


def _severity(value: Any) -> str:
    text = str(value or "").strip().lower()
    if text == "warning":
        text = "warn"
    return text if text in SEVERITIES else "info"


def make_event(event_type: str, message: str, *, severity: str = "info", metadata: Any = None) -> dict[str, Any]:
    return {
        "id": new_event_id(),
        "ts": utc_now_iso(),
        "type": str(event_type or "").strip() or GENERIC_EVENT,
        "severity": _severity(severity),
        "source": "store",
        "message": str(message or ""),
        "metadata": dict(metadata) if isinstance(metadata, dict) else {},
    }


class EventBus:
    def __init__(self, log_path: Path | None = None, *, history: int = DEFAULT_HISTORY) -> None:
        limit = max(1, int(history))
        self._history: deque[dict[str, Any]] = deque(maxlen=limit)
        self._unwritten: deque[dict[str, Any]] = deque(maxlen=limit)
        self._handlers: list[EventHandler] = []
        self._log_path: Path | None = None
        if log_path is not None:
            self.set_log_path(log_path)

    @property
    def log_path(self) -> Path | None:
        return self._log_path

    def set_log_path(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.touch(exist_ok=True)
        self._log_path = path
        held = list(self._unwritten)
        self._unwritten.clear()
        self._write(held)

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        self._handlers.append(handler)

        def _unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return _unsubscribe

    def publish_event(
        self,
        event_type: str,
        message: str,
        *,
        severity: str = "info",
        metadata: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        event = make_event(event_type, message, severity=severity, metadata=metadata)
        self._history.append(event)
        if self._log_path is None:
            self._unwritten.append(event)
        else:
            self._write([event])
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception:  # noqa: BLE001
                continue
        return event

    def recent(self, *, limit: int = 50) -> list[dict[str, Any]]:
        """Newest `limit` events from the history, oldest first."""

        if limit <= 0:
            return []
        return list(self._history)[-limit:]

    def _write(self, events: list[dict[str, Any]]) -> None:
        if not events or self._log_path is None:
            return
        with self._log_path.open("a", encoding="utf-8") as handle:
            for event in events:
                handle.write(json.dumps(event, sort_keys=True, ensure_ascii=True) + "\n")
