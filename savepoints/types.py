"""Common dataclasses shared across savepoint modules."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List


@dataclass(slots=True)
class SavepointInfo:
    name: str
    index: int
    path: Path
    size_bytes: int
    modified_utc: str


@dataclass(slots=True)
class EvictionSummary:
    removed: List[str]
    kept: List[str]
    freed_bytes: int


__all__ = ["EvictionSummary", "SavepointInfo"]
