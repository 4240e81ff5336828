"""Dataclasses shared by the archive store, coordinator and exporter."""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional, Union


class _Indeterminate(enum.Enum):
    INDETERMINATE = "indeterminate"

    def __repr__(self) -> str:
        return "INDETERMINATE"


# Visibility input meaning "leave the hidden flag untouched".
INDETERMINATE = _Indeterminate.INDETERMINATE

HiddenInput = Union[bool, None, _Indeterminate]


@dataclass(slots=True)
class UploadedFile:
    """File already written under ``uploads/<archive>/`` by the upload handler."""

    filename: str
    folder: Optional[str] = None


@dataclass(slots=True)
class SourceRecord:
    id: int
    archive: str
    filename: str
    folder: Optional[str] = None
    description: Optional[str] = None
    tags: Optional[str] = None
    license: Optional[str] = None
    hidden: Optional[bool] = None

    @property
    def display_description(self) -> str:
        return self.description or self.filename

    @property
    def url(self) -> str:
        return f"{self.archive}/{self.filename}"

    @property
    def visible(self) -> bool:
        return self.hidden is not True


@dataclass(slots=True)
class MutationResult:
    """Outcome of one coordinated write."""

    applied: bool
    version: int
    savepoint: Optional[str] = None
    record_ids: tuple[int, ...] = ()
    manifest_rows: Optional[int] = None


__all__ = [
    "HiddenInput",
    "INDETERMINATE",
    "MutationResult",
    "SourceRecord",
    "UploadedFile",
]
