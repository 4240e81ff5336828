"""Archive records, version stamp and the mutation coordinator."""
from __future__ import annotations

from .store import ArchiveStore
from .types import INDETERMINATE, MutationResult, SourceRecord, UploadedFile

__all__ = [
    "ArchiveStore",
    "INDETERMINATE",
    "MutationResult",
    "SourceRecord",
    "UploadedFile",
]
