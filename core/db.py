from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

__all__ = [
    "DEFAULT_BUSY_TIMEOUT_MS",
    "connect",
    "configure_connection",
    "quick_check",
    "transaction",
]

DEFAULT_BUSY_TIMEOUT_MS = 5000


def connect(
    db_path: str | Path,
    *,
    read_only: bool = False,
    timeout: float = 5.0,
    journal_mode: Optional[str] = "DELETE",
    busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
    isolation_level: Optional[str] = None,
    check_same_thread: bool = False,
) -> sqlite3.Connection:
    """Return a configured SQLite connection with sane defaults.

    The archive store keeps the rollback journal (``DELETE``) so that every
    committed transaction lands in the main database file; savepoints copy
    that single file and must not miss pages parked in a WAL.
    """

    path = Path(db_path)
    if not read_only:
        path.parent.mkdir(parents=True, exist_ok=True)
    if read_only:
        uri = f"file:{path.resolve().as_posix()}?mode=ro"
        conn = sqlite3.connect(
            uri,
            uri=True,
            timeout=timeout,
            isolation_level=isolation_level,
            check_same_thread=check_same_thread,
        )
    else:
        conn = sqlite3.connect(
            str(path),
            timeout=timeout,
            isolation_level=isolation_level,
            check_same_thread=check_same_thread,
        )
    configure_connection(
        conn,
        journal_mode=None if read_only else journal_mode,
        busy_timeout_ms=busy_timeout_ms,
    )
    return conn


def configure_connection(
    conn: sqlite3.Connection,
    *,
    journal_mode: Optional[str] = "DELETE",
    busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
) -> None:
    conn.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
    if journal_mode:
        try:
            conn.execute(f"PRAGMA journal_mode={journal_mode}")
        except sqlite3.DatabaseError:
            pass
    conn.row_factory = sqlite3.Row


@contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    try:
        conn.execute("BEGIN IMMEDIATE")
        yield conn
    except Exception:
        conn.rollback()
        raise
    else:
        conn.commit()


def quick_check(db_path: str | Path) -> Optional[str]:
    """Run ``PRAGMA quick_check`` read-only; return the failure text or None."""

    conn = connect(db_path, read_only=True)
    try:
        row = conn.execute("PRAGMA quick_check").fetchone()
    finally:
        conn.close()
    if row and str(row[0]).lower() != "ok":
        return str(row[0])
    return None
