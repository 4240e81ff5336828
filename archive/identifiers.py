"""Record identifier generation compatible with the legacy export format."""
from __future__ import annotations

import threading
import time
from typing import Callable, List

# Milliseconds narrowed to ten digits wrap roughly every 115 days.
_TIMESTAMP_MODULUS = 10 ** 10
_COUNTER_MODULUS = 1000


class IdentifierGenerator:
    """Build ``<node><narrowed ms timestamp><3-digit counter>`` integers.

    Uniqueness is best effort only: two processes sharing a node id, or more
    than a thousand identifiers inside the same millisecond, can collide. The
    ``sources.id`` column is the primary key, so a collision surfaces as a
    failed batch rather than a duplicated row.
    """

    def __init__(self, node_id: int = 1, *, clock: Callable[[], float] = time.time) -> None:
        node = int(node_id)
        if not 1 <= node <= 9:
            raise ValueError(f"node_id must be a single non-zero digit, got {node_id!r}")
        self._node = node
        self._clock = clock
        self._counter = 0
        self._lock = threading.Lock()

    @property
    def node_id(self) -> int:
        return self._node

    def _next_counter(self) -> int:
        with self._lock:
            value = self._counter
            self._counter = (self._counter + 1) % _COUNTER_MODULUS
        return value

    def next_id(self) -> int:
        millis = int(self._clock() * 1000) % _TIMESTAMP_MODULUS
        return int(f"{self._node}{millis:010d}{self._next_counter():03d}")

    def batch(self, size: int) -> List[int]:
        return [self.next_id() for _ in range(max(0, int(size)))]


__all__ = ["IdentifierGenerator"]
