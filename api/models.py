"""Pydantic schemas for the archive dashboard API."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    ok: bool = Field(True, description="Indicates the API server is reachable.")
    version: str = Field(..., description="Application version string.")
    time_utc: str = Field(..., description="Current UTC timestamp in ISO8601 format.")
    stamp: int = Field(..., description="Current version stamp of the archive database.")
    savepoints: int = Field(..., ge=0, description="Number of undo steps currently available.")


class VersionResponse(BaseModel):
    """Freshness token polled by clients to decide whether to refetch the manifest."""

    version: int


class ArchiveCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, description="Archive (folder) name.")


class ArchivesResponse(BaseModel):
    results: List[str]


class UploadedFileEntry(BaseModel):
    filename: str = Field(..., min_length=1, description="Name of the file already stored in the archive folder.")
    folder: Optional[str] = Field(None, description="Optional folder label; defaults to the archive name.")


class UploadRequest(BaseModel):
    files: List[UploadedFileEntry] = Field(default_factory=list)


class RecordUpdateRequest(BaseModel):
    """Sparse metadata update.

    Omitting ``hidden`` leaves the flag untouched; sending ``null`` clears it.
    """

    description: Optional[str] = None
    tags: Optional[str] = None
    license: Optional[str] = None
    hidden: Optional[bool] = None


class SourceRecordModel(BaseModel):
    id: int
    archive: str
    filename: str
    folder: Optional[str] = None
    description: str
    tags: Optional[str] = None
    license: Optional[str] = None
    hidden: Optional[bool] = None
    url: str


class ArchiveDetailResponse(BaseModel):
    archive: str
    files: List[SourceRecordModel]


class MutationResponse(BaseModel):
    ok: bool = True
    applied: bool = Field(..., description="False when the request had nothing to change.")
    version: int
    record_ids: List[int] = Field(default_factory=list)
    redirect: str = Field(..., description="View the caller should return to.")


class UndoResponse(BaseModel):
    ok: bool = True
    version: int
    remaining: int = Field(..., ge=0, description="Undo steps still available.")


class SavepointEntry(BaseModel):
    name: str
    size_bytes: int
    modified_utc: str


class SavepointsResponse(BaseModel):
    results: List[SavepointEntry]
    max_entries: int
    history: List[Dict[str, Any]] = Field(default_factory=list, description="Recent savepoint log entries.")


__all__ = [
    "ArchiveCreateRequest",
    "ArchiveDetailResponse",
    "ArchivesResponse",
    "HealthResponse",
    "MutationResponse",
    "RecordUpdateRequest",
    "SavepointEntry",
    "SavepointsResponse",
    "SourceRecordModel",
    "UndoResponse",
    "UploadRequest",
    "UploadedFileEntry",
    "VersionResponse",
]
