"""Bounded queue of whole-database savepoints backing single-step undo."""
from __future__ import annotations

import os
import re
import shutil
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from archive.store import ArchiveStore
from archive.version import VersionStamp
from core.errors import EmptyHistory, RestoreFailure, SavepointCorrupt, SnapshotFailure

from .logs import SavepointLogger
from .restore import restore_savepoint
from .retention import DEFAULT_MAX_ENTRIES, enforce_limit
from .types import EvictionSummary, SavepointInfo


class SavepointManager:
    """Copy the live database before each mutation and restore it on undo.

    The in-memory queue is ordered oldest first and is only an index over the
    savepoint directory; :meth:`reconcile` rebuilds it from the files on disk.
    Savepoints are named ``<prefix><n><extension>`` where ``n`` grows by one
    per savepoint, so names are never reused while an entry is queued.
    """

    def __init__(
        self,
        store: ArchiveStore,
        directory: Path,
        *,
        logger: SavepointLogger,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        prefix: str = "sp",
        extension: str = ".db",
    ) -> None:
        self._store = store
        self._directory = Path(directory)
        self._logger = logger
        self._max_entries = max(int(max_entries), 1)
        self._prefix = prefix
        self._extension = extension
        self._pattern = re.compile(rf"^{re.escape(prefix)}(\d+){re.escape(extension)}$")
        self._queue: List[str] = []
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    @property
    def directory(self) -> Path:
        return self._directory

    @property
    def max_entries(self) -> int:
        return self._max_entries

    @property
    def entries(self) -> List[str]:
        with self._lock:
            return list(self._queue)

    def __len__(self) -> int:
        with self._lock:
            return len(self._queue)

    def _index_of(self, name: str) -> Optional[int]:
        match = self._pattern.match(name)
        return int(match.group(1)) if match else None

    def _next_name(self) -> str:
        # Reconcile orders by mtime, so the newest entry need not hold the highest index.
        indexes = [self._index_of(name) for name in self._queue]
        index = max((value for value in indexes if value is not None), default=-1) + 1
        return f"{self._prefix}{index}{self._extension}"

    # ------------------------------------------------------------------
    def reconcile(self) -> List[str]:
        """Rebuild the queue from the directory, oldest modification first."""

        with self._lock:
            found: List[Tuple[int, int, str]] = []
            if self._directory.exists():
                for child in self._directory.iterdir():
                    if not child.is_file():
                        continue
                    if child.name.endswith(".tmp"):
                        child.unlink(missing_ok=True)
                        continue
                    index = self._index_of(child.name)
                    if index is None:
                        continue
                    found.append((child.stat().st_mtime_ns, index, child.name))
            found.sort()
            self._queue = [name for _, _, name in found]
            enforce_limit(self._queue, self._directory, self._max_entries, logger=self._logger)
            self._logger.event(
                event="savepoints_reconciled",
                phase="startup",
                ok=True,
                count=len(self._queue),
            )
            return list(self._queue)

    def create(self) -> str:
        """Copy the live database to a new savepoint and return its name.

        Raises:
            SnapshotFailure: If the directory or the copy cannot be written.
                The queue and the live database are left untouched.
        """

        with self._lock:
            live_path = self._store.path
            self._store.connection()
            name = self._next_name()
            target = self._directory / name
            tmp = target.with_name(name + ".tmp")
            try:
                self._directory.mkdir(parents=True, exist_ok=True)
                # copyfile (not copy2) so the savepoint gets its own mtime.
                shutil.copyfile(live_path, tmp)
                os.replace(tmp, target)
            except (OSError, shutil.Error) as exc:
                try:
                    tmp.unlink(missing_ok=True)
                except OSError:
                    pass
                self._logger.error("savepoint_failed", name=name, error=str(exc))
                raise SnapshotFailure(f"Unable to write savepoint {name}: {exc}") from exc
            self._queue.append(name)
            self._logger.info("savepoint_created", name=name, size=target.stat().st_size)
            self._evict()
            return name

    def discard(self, name: str) -> bool:
        """Forget the newest savepoint when the mutation it guarded failed."""

        with self._lock:
            if not self._queue or self._queue[-1] != name:
                return False
            self._queue.pop()
            try:
                (self._directory / name).unlink(missing_ok=True)
            except OSError as exc:
                self._logger.warning("savepoint_discard_failed", name=name, error=str(exc))
            self._logger.info("savepoint_discarded", name=name)
            return True

    def _evict(self) -> EvictionSummary:
        return enforce_limit(self._queue, self._directory, self._max_entries, logger=self._logger)

    def undo(self) -> int:
        """Restore the most recent savepoint and return the restored version stamp.

        Raises:
            EmptyHistory: If no savepoint is queued; nothing is touched.
            SavepointCorrupt: If the savepoint is missing or fails verification.
                The broken entry is dropped and the live database is kept.
            RestoreFailure: If the swap itself fails. The entry stays queued
                so the undo can be retried.
        """

        with self._lock:
            if not self._queue:
                raise EmptyHistory("No savepoints available to undo")
            name = self._queue[-1]
            self._store.close()
            try:
                restore_savepoint(self._directory / name, self._store.path, logger=self._logger)
            except SavepointCorrupt:
                self._queue.pop()
                # Keep reconcile from queueing the broken file again.
                (self._directory / name).unlink(missing_ok=True)
                self._logger.event(event="undo_failed", phase="undo", ok=False, name=name, dropped=True)
                raise
            except RestoreFailure:
                self._logger.event(event="undo_failed", phase="undo", ok=False, name=name, dropped=False)
                raise
            finally:
                self._store.reopen()
            self._queue.pop()
            version = VersionStamp(self._store).read()
            self._logger.event(
                event="undo_applied",
                phase="undo",
                ok=True,
                name=name,
                version=version,
                remaining=len(self._queue),
            )
            return version

    # ------------------------------------------------------------------
    def describe(self) -> List[SavepointInfo]:
        with self._lock:
            names = list(self._queue)
        results: List[SavepointInfo] = []
        for name in names:
            path = self._directory / name
            try:
                stat = path.stat()
            except OSError:
                continue
            results.append(
                SavepointInfo(
                    name=name,
                    index=self._index_of(name) or 0,
                    path=path,
                    size_bytes=int(stat.st_size),
                    modified_utc=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc).isoformat(),
                )
            )
        return results

    def history(self, limit: int = 20) -> List[Dict[str, Any]]:
        """Most recent savepoint log entries, oldest first."""

        return self._logger.recent(limit)


__all__ = ["SavepointManager"]
