"""Tab-separated manifest of every visible source record."""
from __future__ import annotations

import csv
import logging
import os
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Iterator

from archive.store import ArchiveStore
from archive.types import SourceRecord
from core.errors import ExportFailure

LOGGER = logging.getLogger("archivedash.exports")

MANIFEST_COLUMNS = [
    "id",
    "description",
    "tags",
    "folder",
    "filename",
    "archive",
    "url",
    "license",
]


@dataclass(frozen=True)
class ExportResult:
    path: Path
    rows: int


def _format_row(record: SourceRecord, *, url_prefix: str = "") -> Dict[str, str]:
    return {
        "id": str(record.id),
        "description": record.display_description,
        "tags": record.tags or "",
        "folder": record.folder or record.archive,
        "filename": record.filename,
        "archive": record.archive,
        "url": f"{url_prefix}{record.url}",
        "license": record.license or "",
    }


def _write_tsv(rows: Iterable[Dict[str, str]], output_path: Path) -> int:
    count = 0
    output_path.parent.mkdir(parents=True, exist_ok=True)
    tmp = output_path.with_name(output_path.name + ".tmp")
    try:
        with open(tmp, "w", newline="", encoding="utf-8") as handle:
            writer = csv.DictWriter(
                handle,
                fieldnames=MANIFEST_COLUMNS,
                delimiter="\t",
                lineterminator="\n",
                extrasaction="ignore",
            )
            writer.writeheader()
            for row in rows:
                writer.writerow(row)
                count += 1
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp, output_path)
    except BaseException:
        try:
            tmp.unlink(missing_ok=True)
        except OSError:
            pass
        raise
    return count


class ManifestExporter:
    """Rewrite the whole manifest from the store's current visible records."""

    def __init__(self, store: ArchiveStore, output_path: Path, *, url_prefix: str = "") -> None:
        self._store = store
        self._output_path = Path(output_path)
        self._url_prefix = url_prefix

    @property
    def output_path(self) -> Path:
        return self._output_path

    def _rows(self) -> Iterator[Dict[str, str]]:
        for record in self._store.iter_visible_sources():
            yield _format_row(record, url_prefix=self._url_prefix)

    def regenerate(self) -> ExportResult:
        """Replace the manifest file; raises :class:`ExportFailure` on error."""

        try:
            count = _write_tsv(self._rows(), self._output_path)
        except (OSError, sqlite3.Error, csv.Error) as exc:
            raise ExportFailure(f"Unable to write manifest {self._output_path}: {exc}") from exc
        LOGGER.info("manifest regenerated", extra={"rows": count, "path": str(self._output_path)})
        return ExportResult(path=self._output_path, rows=count)


def read_manifest(path: Path) -> list[Dict[str, str]]:
    """Parse a manifest file back into row dictionaries."""

    with open(path, "r", newline="", encoding="utf-8") as handle:
        reader = csv.DictReader(handle, delimiter="\t")
        return [dict(row) for row in reader]


__all__ = ["ExportResult", "MANIFEST_COLUMNS", "ManifestExporter", "read_manifest"]
