"""SQLite storage for archives and their source records.

:class:`ArchiveStore` is the single owner of the live database handle. Undo
replaces the database file underneath it, so callers must always go through
:meth:`ArchiveStore.connection` instead of keeping a connection around.
"""
from __future__ import annotations

import logging
import sqlite3
import threading
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from core.db import DEFAULT_BUSY_TIMEOUT_MS, connect, transaction
from core.errors import StorageWriteFailure

from .types import SourceRecord

LOGGER = logging.getLogger("archivedash.store")

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS archives (
  name TEXT PRIMARY KEY
);
CREATE TABLE IF NOT EXISTS sources (
  id INTEGER PRIMARY KEY,
  archive TEXT NOT NULL,
  filename TEXT NOT NULL,
  folder TEXT,
  description TEXT,
  tags TEXT,
  license TEXT,
  hidden INTEGER
);
CREATE INDEX IF NOT EXISTS idx_sources_archive ON sources(archive);
"""

_SOURCE_COLUMNS = "id, archive, filename, folder, description, tags, license, hidden"

# Columns a metadata update may touch.
UPDATABLE_COLUMNS = ("description", "tags", "license", "hidden")

# Called with the connection inside the write transaction, e.g. VersionStamp.bump.
StampWriter = Callable[[sqlite3.Connection], object]


def _row_to_record(row: sqlite3.Row) -> SourceRecord:
    hidden = row["hidden"]
    return SourceRecord(
        id=int(row["id"]),
        archive=str(row["archive"]),
        filename=str(row["filename"]),
        folder=row["folder"],
        description=row["description"],
        tags=row["tags"],
        license=row["license"],
        hidden=None if hidden is None else bool(hidden),
    )


class ArchiveStore:
    """Own the live SQLite handle and the archive/source schema."""

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS) -> None:
        self._path = Path(db_path)
        self._busy_timeout_ms = int(busy_timeout_ms)
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    @property
    def path(self) -> Path:
        return self._path

    def connection(self) -> sqlite3.Connection:
        with self._lock:
            if self._conn is None:
                self._conn = self._open()
            return self._conn

    def _open(self) -> sqlite3.Connection:
        conn = connect(self._path, busy_timeout_ms=self._busy_timeout_ms)
        conn.executescript(_SCHEMA_SQL)
        LOGGER.debug("opened archive database %s", self._path)
        return conn

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def reopen(self) -> sqlite3.Connection:
        """Drop the current handle and open the file found at :attr:`path`."""

        with self._lock:
            self.close()
            self._conn = self._open()
            LOGGER.info("archive database handle reopened", extra={"db_path": str(self._path)})
            return self._conn

    # ------------------------------------------------------------------
    def list_archives(self) -> List[str]:
        rows = self.connection().execute("SELECT name FROM archives ORDER BY name").fetchall()
        return [str(row["name"]) for row in rows]

    def archive_exists(self, name: str) -> bool:
        row = self.connection().execute("SELECT 1 FROM archives WHERE name = ?", (name,)).fetchone()
        return row is not None

    def get_source(self, record_id: int) -> Optional[SourceRecord]:
        row = self.connection().execute(
            f"SELECT {_SOURCE_COLUMNS} FROM sources WHERE id = ?", (int(record_id),)
        ).fetchone()
        return _row_to_record(row) if row else None

    def find_source(self, archive: str, filename: str) -> Optional[SourceRecord]:
        row = self.connection().execute(
            f"SELECT {_SOURCE_COLUMNS} FROM sources WHERE archive = ? AND filename = ? ORDER BY id LIMIT 1",
            (archive, filename),
        ).fetchone()
        return _row_to_record(row) if row else None

    def list_sources(self, archive: Optional[str] = None) -> List[SourceRecord]:
        query = f"SELECT {_SOURCE_COLUMNS} FROM sources"
        params: Tuple[object, ...] = ()
        if archive is not None:
            query += " WHERE archive = ?"
            params = (archive,)
        query += " ORDER BY archive, filename, id"
        return [_row_to_record(row) for row in self.connection().execute(query, params).fetchall()]

    def iter_visible_sources(self) -> Iterator[SourceRecord]:
        """Yield every record whose hidden flag is not explicitly true."""

        cursor = self.connection().execute(
            f"SELECT {_SOURCE_COLUMNS} FROM sources WHERE hidden IS NULL OR hidden = 0 "
            "ORDER BY archive, filename, id"
        )
        while True:
            chunk = cursor.fetchmany(500)
            if not chunk:
                break
            for row in chunk:
                yield _row_to_record(row)

    # ------------------------------------------------------------------
    def create_archive(self, name: str, *, stamp: Optional[StampWriter] = None) -> bool:
        """Insert the archive row; return False when it already existed."""

        conn = self.connection()
        try:
            with transaction(conn):
                cursor = conn.execute("INSERT OR IGNORE INTO archives(name) VALUES (?)", (name,))
                created = cursor.rowcount > 0
                if stamp is not None:
                    stamp(conn)
        except sqlite3.Error as exc:
            raise StorageWriteFailure(f"Unable to create archive {name!r}: {exc}") from exc
        return created

    def insert_sources(
        self,
        archive: str,
        rows: Sequence[Tuple[int, str, Optional[str]]],
        *,
        stamp: Optional[StampWriter] = None,
    ) -> int:
        """Insert ``(id, filename, folder)`` rows for *archive* in one transaction."""

        conn = self.connection()
        try:
            with transaction(conn):
                conn.execute("INSERT OR IGNORE INTO archives(name) VALUES (?)", (archive,))
                conn.executemany(
                    "INSERT INTO sources(id, archive, filename, folder) VALUES (?, ?, ?, ?)",
                    ((record_id, archive, filename, folder) for record_id, filename, folder in rows),
                )
                if stamp is not None:
                    stamp(conn)
        except sqlite3.Error as exc:
            raise StorageWriteFailure(f"Unable to record uploads for {archive!r}: {exc}") from exc
        return len(rows)

    def update_source(
        self, record_id: int, changes: Mapping[str, object], *, stamp: Optional[StampWriter] = None
    ) -> int:
        """Apply a sparse column update; only keys present in *changes* are written."""

        unknown = set(changes) - set(UPDATABLE_COLUMNS)
        if unknown:
            raise ValueError(f"Cannot update columns: {', '.join(sorted(unknown))}")
        if not changes:
            return 0
        columns = [column for column in UPDATABLE_COLUMNS if column in changes]
        assignments = ", ".join(f"{column} = ?" for column in columns)
        params: List[object] = [changes[column] for column in columns]
        params.append(int(record_id))
        conn = self.connection()
        try:
            with transaction(conn):
                cursor = conn.execute(f"UPDATE sources SET {assignments} WHERE id = ?", params)
                updated = cursor.rowcount
                if stamp is not None:
                    stamp(conn)
        except sqlite3.Error as exc:
            raise StorageWriteFailure(f"Unable to update record {record_id}: {exc}") from exc
        return updated

    def counts(self) -> Dict[str, int]:
        row = self.connection().execute(
            "SELECT (SELECT COUNT(*) FROM archives) AS archives, (SELECT COUNT(*) FROM sources) AS sources"
        ).fetchone()
        return {"archives": int(row["archives"]), "sources": int(row["sources"])}


__all__ = ["ArchiveStore", "UPDATABLE_COLUMNS"]
