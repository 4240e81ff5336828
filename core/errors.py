"""Error hierarchy shared by the archive store, savepoints and exporter."""
from __future__ import annotations


class ArchiveError(RuntimeError):
    """Base exception for archive dashboard failures."""


class SnapshotFailure(ArchiveError):
    """Raised when the pre-mutation copy of the database cannot be written."""


class EmptyHistory(ArchiveError):
    """Raised when undo is requested and no savepoint is queued."""


class RestoreFailure(ArchiveError):
    """Raised when a savepoint cannot be swapped in as the live database."""


class SavepointCorrupt(RestoreFailure):
    """Raised when a savepoint is missing or fails verification and cannot be used again."""


class StorageWriteFailure(ArchiveError):
    """Raised when a mutation transaction fails; nothing was committed."""


class ExportFailure(ArchiveError):
    """Raised when the manifest cannot be regenerated."""


class RecordNotFound(ArchiveError, LookupError):
    """Raised when a record or archive referenced by a request is unknown."""


class InvalidName(ArchiveError, ValueError):
    """Raised when an archive name is empty once sanitised."""


__all__ = [
    "ArchiveError",
    "EmptyHistory",
    "ExportFailure",
    "InvalidName",
    "RecordNotFound",
    "RestoreFailure",
    "SavepointCorrupt",
    "SnapshotFailure",
    "StorageWriteFailure",
]
