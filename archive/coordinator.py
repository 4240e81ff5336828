"""Serialise every write as savepoint -> mutation with version bump -> export."""
from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from core.errors import ExportFailure, InvalidName, RecordNotFound, StorageWriteFailure
from core.paths import (
    get_archive_db_path,
    get_logs_dir,
    get_manifest_path,
    get_savepoints_dir,
    get_uploads_dir,
    safe_archive_name,
)
from exports import ExportResult, ManifestExporter
from savepoints import SavepointLogger, SavepointManager

from .identifiers import IdentifierGenerator
from .store import ArchiveStore
from .text import clean_optional
from .types import INDETERMINATE, HiddenInput, MutationResult, SourceRecord, UploadedFile
from .version import VersionStamp

LOGGER = logging.getLogger("archivedash.coordinator")


class MutationCoordinator:
    """Process-wide owner of the store, savepoints, version stamp and manifest.

    All mutations and undo run under one re-entrant lock, so no request can
    touch the database handle while undo is swapping the file beneath it.
    Concurrent callers queue on the lock.
    """

    def __init__(
        self,
        store: ArchiveStore,
        savepoints: SavepointManager,
        exporter: ManifestExporter,
        *,
        identifiers: Optional[IdentifierGenerator] = None,
        uploads_dir: Optional[Path] = None,
    ) -> None:
        self._store = store
        self._savepoints = savepoints
        self._exporter = exporter
        self._version = VersionStamp(store)
        self._identifiers = identifiers or IdentifierGenerator()
        self._uploads_dir = Path(uploads_dir) if uploads_dir is not None else None
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    @property
    def store(self) -> ArchiveStore:
        return self._store

    @property
    def savepoints(self) -> SavepointManager:
        return self._savepoints

    @property
    def exporter(self) -> ManifestExporter:
        return self._exporter

    def current_version(self) -> int:
        with self._lock:
            return self._version.read()

    def startup(self) -> None:
        """Rebuild the savepoint queue from disk and refresh the manifest."""

        with self._lock:
            self._store.connection()
            entries = self._savepoints.reconcile()
            self._regenerate_manifest()
            LOGGER.info(
                "coordinator ready: %d savepoint(s), version %s",
                len(entries),
                self._version.read(),
            )

    # ------------------------------------------------------------------
    def _regenerate_manifest(self) -> Optional[ExportResult]:
        try:
            return self._exporter.regenerate()
        except ExportFailure as exc:
            LOGGER.warning("Manifest regeneration failed: %s", exc)
            return None

    def _apply(self, savepoint: str, mutation: Callable[[], object]) -> None:
        try:
            mutation()
        except StorageWriteFailure:
            # The savepoint matches the untouched database; keep history clean.
            self._savepoints.discard(savepoint)
            raise

    def _commit(self, savepoint: str, record_ids: Sequence[int] = ()) -> MutationResult:
        # The stamp was written inside the mutation transaction.
        version = self._version.read()
        export = self._regenerate_manifest()
        return MutationResult(
            applied=True,
            version=version,
            savepoint=savepoint,
            record_ids=tuple(record_ids),
            manifest_rows=export.rows if export is not None else None,
        )

    def _skipped(self) -> MutationResult:
        return MutationResult(applied=False, version=self._version.read())

    def normalise_archive_name(self, name: str) -> str:
        cleaned = safe_archive_name(clean_optional(name) or "")
        if not cleaned.strip():
            raise InvalidName(f"Archive name {name!r} is empty once sanitised")
        return cleaned

    def _ensure_upload_dir(self, archive: str) -> None:
        if self._uploads_dir is None:
            return
        (self._uploads_dir / archive).mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    def create_archive(self, name: str) -> MutationResult:
        archive = self.normalise_archive_name(name)
        with self._lock:
            self._ensure_upload_dir(archive)
            if self._store.archive_exists(archive):
                return self._skipped()
            savepoint = self._savepoints.create()
            self._apply(savepoint, lambda: self._store.create_archive(archive, stamp=self._version.bump))
            LOGGER.info("archive created: %s", archive)
            return self._commit(savepoint)

    def record_uploads(self, archive: str, files: Iterable[UploadedFile | str]) -> MutationResult:
        """Insert one record per uploaded file, creating the archive if needed."""

        target = self.normalise_archive_name(archive)
        entries: List[UploadedFile] = [
            item if isinstance(item, UploadedFile) else UploadedFile(filename=str(item)) for item in files
        ]
        entries = [entry for entry in entries if entry.filename]
        if not entries:
            return self._skipped()
        with self._lock:
            self._ensure_upload_dir(target)
            savepoint = self._savepoints.create()
            ids = self._identifiers.batch(len(entries))
            rows: List[Tuple[int, str, Optional[str]]] = [
                (record_id, entry.filename, clean_optional(entry.folder))
                for record_id, entry in zip(ids, entries)
            ]
            self._apply(savepoint, lambda: self._store.insert_sources(target, rows, stamp=self._version.bump))
            LOGGER.info("recorded %d upload(s) in %s", len(rows), target)
            return self._commit(savepoint, ids)

    def update_record(
        self,
        record_id: int,
        *,
        description: Optional[str] = None,
        tags: Optional[str] = None,
        license: Optional[str] = None,
        hidden: HiddenInput = INDETERMINATE,
    ) -> MutationResult:
        """Write only the provided, non-empty fields of one record.

        ``hidden`` is tri-state: ``True`` hides, ``False`` shows, ``None``
        clears the flag and :data:`INDETERMINATE` leaves it alone. When nothing
        would change, no savepoint is taken and the version is not bumped.
        """

        changes: Dict[str, Any] = {}
        for column, value in (("description", description), ("tags", tags), ("license", license)):
            cleaned = clean_optional(value)
            if cleaned is not None:
                changes[column] = cleaned
        if hidden is not INDETERMINATE:
            changes["hidden"] = hidden
        if not changes:
            return self._skipped()
        with self._lock:
            if self._store.get_source(record_id) is None:
                raise RecordNotFound(f"Record {record_id} does not exist")
            savepoint = self._savepoints.create()
            self._apply(
                savepoint,
                lambda: self._store.update_source(record_id, changes, stamp=self._version.bump),
            )
            LOGGER.info("record %s updated: %s", record_id, ", ".join(sorted(changes)))
            return self._commit(savepoint, (int(record_id),))

    def undo(self) -> int:
        """Restore the previous savepoint and return the restored version stamp."""

        with self._lock:
            version = self._savepoints.undo()
            self._regenerate_manifest()
            LOGGER.info("undo applied, version now %s", version)
            return version

    # ------------------------------------------------------------------
    def list_archives(self) -> List[str]:
        with self._lock:
            return self._store.list_archives()

    def list_records(self, archive: str) -> List[SourceRecord]:
        with self._lock:
            if not self._store.archive_exists(archive):
                raise RecordNotFound(f"Archive {archive!r} does not exist")
            return self._store.list_sources(archive)

    def get_record(self, record_id: int) -> SourceRecord:
        with self._lock:
            record = self._store.get_source(record_id)
        if record is None:
            raise RecordNotFound(f"Record {record_id} does not exist")
        return record

    def status(self) -> Dict[str, Any]:
        with self._lock:
            payload: Dict[str, Any] = dict(self._store.counts())
            payload["version"] = self._version.read()
            payload["savepoints"] = len(self._savepoints)
            payload["max_savepoints"] = self._savepoints.max_entries
        return payload

    def close(self) -> None:
        with self._lock:
            self._store.close()


def build_coordinator(working_dir: Path, settings: Dict[str, Any]) -> MutationCoordinator:
    """Wire the store, savepoints and exporter from resolved settings."""

    storage = settings.get("storage") if isinstance(settings.get("storage"), dict) else {}
    savepoint_cfg = settings.get("savepoints") if isinstance(settings.get("savepoints"), dict) else {}
    manifest_cfg = settings.get("manifest") if isinstance(settings.get("manifest"), dict) else {}
    id_cfg = settings.get("identifiers") if isinstance(settings.get("identifiers"), dict) else {}
    uploads_cfg = settings.get("uploads") if isinstance(settings.get("uploads"), dict) else {}

    store = ArchiveStore(
        get_archive_db_path(working_dir, str(storage.get("db_filename") or "archive.db")),
        busy_timeout_ms=int(storage.get("busy_timeout_ms") or 5000),
    )
    savepoints = SavepointManager(
        store,
        get_savepoints_dir(working_dir),
        logger=SavepointLogger(get_logs_dir(working_dir)),
        max_entries=int(savepoint_cfg.get("max_entries") or 10),
        prefix=str(savepoint_cfg.get("prefix") or "sp"),
        extension=str(savepoint_cfg.get("extension") or ".db"),
    )
    exporter = ManifestExporter(
        store,
        get_manifest_path(working_dir, str(manifest_cfg.get("filename") or "sources.tsv")),
        url_prefix=str(manifest_cfg.get("url_prefix") or ""),
    )
    uploads_dirname = str(uploads_cfg.get("dirname") or "uploads")
    return MutationCoordinator(
        store,
        savepoints,
        exporter,
        identifiers=IdentifierGenerator(int(id_cfg.get("node_id") or 1)),
        uploads_dir=get_uploads_dir(working_dir, uploads_dirname),
    )


__all__ = ["MutationCoordinator", "build_coordinator"]
