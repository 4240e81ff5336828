"""Version stamp persisted in the SQLite header (``PRAGMA user_version``)."""
from __future__ import annotations

import logging
import sqlite3
import time
from typing import Callable, Optional

from core.errors import StorageWriteFailure

from .store import ArchiveStore

LOGGER = logging.getLogger("archivedash.version")


class VersionStamp:
    """Freshness token stored inside the database file itself.

    Keeping the value in the file header means a restored savepoint brings its
    own stamp back with it, so undo needs no separate bookkeeping.
    """

    def __init__(self, store: ArchiveStore, *, clock: Callable[[], float] = time.time) -> None:
        self._store = store
        self._clock = clock

    def read(self) -> int:
        row = self._store.connection().execute("PRAGMA user_version").fetchone()
        return int(row[0]) if row else 0

    def bump(self, conn: Optional[sqlite3.Connection] = None) -> int:
        """Persist ``max(now, current + 1)`` and return it.

        Pass the connection of an open transaction to make the new stamp
        commit or roll back together with that transaction's writes.
        """

        target = conn if conn is not None else self._store.connection()
        current = self.read()
        value = max(int(self._clock()), current + 1)
        try:
            target.execute(f"PRAGMA user_version={value}")
        except sqlite3.Error as exc:
            raise StorageWriteFailure(f"Unable to persist version stamp: {exc}") from exc
        LOGGER.debug("version stamp %s -> %s", current, value)
        return value


__all__ = ["VersionStamp"]
