"""Ring-buffer retention for savepoint files."""
from __future__ import annotations

from pathlib import Path
from typing import List

from .logs import SavepointLogger
from .types import EvictionSummary

DEFAULT_MAX_ENTRIES = 10


def enforce_limit(
    queue: List[str],
    directory: Path,
    max_entries: int = DEFAULT_MAX_ENTRIES,
    *,
    logger: SavepointLogger,
) -> EvictionSummary:
    """Drop the oldest entries of *queue* (in place) until it fits *max_entries*.

    The queue is ordered oldest first; evicted files are deleted from
    *directory*. A file that cannot be deleted is still dropped from the queue
    and reported, startup reconciliation will pick it up again later.
    """

    limit = max(int(max_entries), 1)
    removed: List[str] = []
    freed = 0
    while len(queue) > limit:
        name = queue.pop(0)
        path = directory / name
        try:
            size = path.stat().st_size
        except OSError:
            size = 0
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("savepoint_evict_failed", name=name, error=str(exc))
        else:
            freed += size
        removed.append(name)
        logger.info("savepoint_evicted", name=name, reason="retention")
    if removed:
        logger.event(
            event="retention_applied",
            phase="retention",
            ok=True,
            removed=len(removed),
            kept=len(queue),
        )
    return EvictionSummary(removed=removed, kept=list(queue), freed_bytes=freed)


__all__ = ["DEFAULT_MAX_ENTRIES", "enforce_limit"]
