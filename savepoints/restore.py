"""Swap a savepoint file in as the live database."""
from __future__ import annotations

import os
import sqlite3
from pathlib import Path

from core.db import quick_check
from core.errors import RestoreFailure, SavepointCorrupt

from .logs import SavepointLogger

_SIDECAR_SUFFIXES = ("-journal", "-wal", "-shm")


def _verify(savepoint: Path) -> None:
    try:
        problem = quick_check(savepoint)
    except sqlite3.Error as exc:
        raise SavepointCorrupt(f"Savepoint {savepoint.name} is unreadable: {exc}") from exc
    if problem:
        raise SavepointCorrupt(f"quick_check failed for {savepoint.name}: {problem}")


def _drop_sidecars(live_path: Path) -> None:
    # A leftover journal would be replayed against the restored file.
    for suffix in _SIDECAR_SUFFIXES:
        sidecar = live_path.with_name(live_path.name + suffix)
        sidecar.unlink(missing_ok=True)


def restore_savepoint(savepoint: Path, live_path: Path, *, logger: SavepointLogger) -> None:
    """Atomically rename *savepoint* over *live_path*.

    The caller must have closed every connection to *live_path* first. The
    savepoint file is consumed by the rename.
    """

    if not savepoint.exists():
        raise SavepointCorrupt(f"Savepoint {savepoint.name} not found at {savepoint}")
    _verify(savepoint)
    try:
        _drop_sidecars(live_path)
        os.replace(savepoint, live_path)
    except OSError as exc:
        logger.error("restore_failed", name=savepoint.name, error=str(exc))
        raise RestoreFailure(f"Unable to restore {savepoint.name}: {exc}") from exc
    logger.info("restore_swap", name=savepoint.name, target=str(live_path))


__all__ = ["restore_savepoint"]
