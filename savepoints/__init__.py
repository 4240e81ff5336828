"""Savepoint and undo orchestration for the archive database."""
from __future__ import annotations

from .logs import SavepointLogger
from .manager import SavepointManager
from .retention import DEFAULT_MAX_ENTRIES, enforce_limit
from .types import EvictionSummary, SavepointInfo

__all__ = [
    "DEFAULT_MAX_ENTRIES",
    "EvictionSummary",
    "SavepointInfo",
    "SavepointLogger",
    "SavepointManager",
    "enforce_limit",
]
