"""JSONL event log for savepoint, retention and undo activity."""
from __future__ import annotations

import json
import logging
from collections import deque
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Dict, List, Mapping

LOGGER = logging.getLogger("archivedash.savepoints")

DEFAULT_LOG_FILENAME = "savepoints.jsonl"


class SavepointLogger:
    """Append one JSON object per savepoint event and mirror it to ``logging``.

    Every entry carries ``ts``, ``event`` and ``ok``; phase-level events
    (reconcile, retention, undo) also carry ``phase``.
    """

    def __init__(self, logs_dir: Path, *, filename: str = DEFAULT_LOG_FILENAME) -> None:
        self._log_path = Path(logs_dir) / filename
        self._log_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = Lock()

    @property
    def log_path(self) -> Path:
        return self._log_path

    def _emit(self, level: int, event: str, ok: bool, fields: Mapping[str, Any]) -> None:
        entry: Dict[str, Any] = {"ts": datetime.now(timezone.utc).isoformat(), "event": event}
        entry.update(fields)
        entry["ok"] = bool(ok)
        line = json.dumps(entry, sort_keys=True, default=str)
        with self._lock:
            try:
                with self._log_path.open("a", encoding="utf-8") as handle:
                    handle.write(line + "\n")
            except OSError as exc:
                LOGGER.warning("Unable to append to %s: %s", self._log_path, exc)
        LOGGER.log(level, "%s", line)

    def event(self, *, event: str, phase: str, ok: bool, **extra: Any) -> None:
        self._emit(logging.INFO if ok else logging.ERROR, event, ok, {"phase": phase, **extra})

    def info(self, event: str, **extra: Any) -> None:
        self._emit(logging.INFO, event, True, extra)

    def warning(self, event: str, **extra: Any) -> None:
        self._emit(logging.WARNING, event, False, extra)

    def error(self, event: str, **extra: Any) -> None:
        self._emit(logging.ERROR, event, False, extra)

    def recent(self, limit: int = 50) -> List[Dict[str, Any]]:
        """Return the last *limit* parsed entries, skipping unreadable lines."""

        if not self._log_path.exists():
            return []
        tail: deque = deque(maxlen=max(int(limit), 0))
        with self._lock, self._log_path.open("r", encoding="utf-8") as handle:
            for raw in handle:
                raw = raw.strip()
                if not raw:
                    continue
                try:
                    tail.append(json.loads(raw))
                except json.JSONDecodeError:
                    continue
        return list(tail)


__all__ = ["DEFAULT_LOG_FILENAME", "SavepointLogger"]
