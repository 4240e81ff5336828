"""End-to-end behaviour of the savepoint -> mutate -> bump -> export cycle."""

from __future__ import annotations

import logging
import sqlite3
import threading

import pytest

from archive.coordinator import MutationCoordinator
from archive.types import INDETERMINATE, UploadedFile
from core.errors import (
    EmptyHistory,
    ExportFailure,
    InvalidName,
    RecordNotFound,
    SnapshotFailure,
    StorageWriteFailure,
)
from exports import read_manifest


def _manifest_filenames(coordinator: MutationCoordinator) -> list:
    return [row["filename"] for row in read_manifest(coordinator.exporter.output_path)]


def _record_id(coordinator: MutationCoordinator, archive: str, filename: str) -> int:
    record = coordinator.store.find_source(archive, filename)
    assert record is not None
    return record.id


def test_startup_writes_header_only_manifest(coordinator):
    assert coordinator.exporter.output_path.exists()
    assert read_manifest(coordinator.exporter.output_path) == []
    assert coordinator.current_version() == 0


def test_hide_and_undo_scenario(coordinator):
    first = coordinator.record_uploads("demo", ["a.txt", "b.txt"])
    v1 = coordinator.current_version()

    assert first.applied is True
    assert v1 == first.version > 0
    assert coordinator.list_archives() == ["demo"]
    assert sorted(_manifest_filenames(coordinator)) == ["a.txt", "b.txt"]
    assert len(coordinator.savepoints) == 1

    record_id = _record_id(coordinator, "demo", "a.txt")
    second = coordinator.update_record(record_id, hidden=True)
    v2 = coordinator.current_version()

    assert second.applied is True
    assert v2 > v1
    assert _manifest_filenames(coordinator) == ["b.txt"]
    assert len(coordinator.savepoints) == 2

    restored = coordinator.undo()

    assert restored == v1
    assert coordinator.current_version() == v1
    assert coordinator.get_record(record_id).hidden is None
    assert sorted(_manifest_filenames(coordinator)) == ["a.txt", "b.txt"]
    assert len(coordinator.savepoints) == 1


def test_undo_restores_exact_bytes(coordinator):
    coordinator.record_uploads("demo", ["a.txt"])
    record_id = _record_id(coordinator, "demo", "a.txt")
    db_path = coordinator.store.path
    before = db_path.read_bytes()
    version_before = coordinator.current_version()

    coordinator.update_record(record_id, description="An annotated file", tags="alpha beta")
    assert db_path.read_bytes() != before

    assert coordinator.undo() == version_before
    assert db_path.read_bytes() == before


def test_explicit_archive_creation_is_a_mutation(coordinator, working_dir):
    result = coordinator.create_archive("photos")

    assert result.applied is True
    assert coordinator.list_archives() == ["photos"]
    assert len(coordinator.savepoints) == 1
    assert (working_dir / "uploads" / "photos").is_dir()

    again = coordinator.create_archive("photos")
    assert again.applied is False
    assert len(coordinator.savepoints) == 1


def test_archive_name_is_sanitised(coordinator):
    coordinator.create_archive("field\tnotes\n")

    assert coordinator.list_archives() == ["fieldnotes"]
    with pytest.raises(InvalidName):
        coordinator.create_archive(" \t\n")


def test_empty_update_is_a_no_op(coordinator):
    coordinator.record_uploads("demo", ["a.txt"])
    record_id = _record_id(coordinator, "demo", "a.txt")
    db_path = coordinator.store.path
    before = db_path.read_bytes()
    version = coordinator.current_version()
    queued = coordinator.savepoints.entries

    result = coordinator.update_record(record_id, description="", tags=None, license="\n\t")

    assert result.applied is False
    assert result.version == version
    assert coordinator.current_version() == version
    assert coordinator.savepoints.entries == queued
    assert db_path.read_bytes() == before


def test_update_writes_only_provided_fields(coordinator):
    coordinator.record_uploads("demo", ["a.txt"])
    record_id = _record_id(coordinator, "demo", "a.txt")
    coordinator.update_record(record_id, description="first", tags="one", license="CC-BY")

    coordinator.update_record(record_id, tags="two", description="")

    record = coordinator.get_record(record_id)
    assert record.description == "first"
    assert record.tags == "two"
    assert record.license == "CC-BY"


def test_free_text_fields_are_sanitised(coordinator):
    coordinator.record_uploads("demo", ["a.txt"])
    record_id = _record_id(coordinator, "demo", "a.txt")
    nbsp = chr(0x00A0)

    coordinator.update_record(
        record_id,
        description="line one\nline two\ttabbed",
        tags=f"a{nbsp}b c",
        license="MIT\r\n",
    )

    record = coordinator.get_record(record_id)
    assert record.description == "line oneline twotabbed"
    assert record.tags == "ab c"
    assert record.license == "MIT"


def test_hidden_flag_is_tri_state(coordinator):
    coordinator.record_uploads("demo", ["a.txt"])
    record_id = _record_id(coordinator, "demo", "a.txt")

    coordinator.update_record(record_id, hidden=True)
    assert coordinator.get_record(record_id).hidden is True

    skipped = coordinator.update_record(record_id, hidden=INDETERMINATE)
    assert skipped.applied is False
    assert coordinator.get_record(record_id).hidden is True

    coordinator.update_record(record_id, hidden=False)
    assert coordinator.get_record(record_id).hidden is False
    assert _manifest_filenames(coordinator) == ["a.txt"]

    coordinator.update_record(record_id, hidden=None)
    assert coordinator.get_record(record_id).hidden is None
    assert _manifest_filenames(coordinator) == ["a.txt"]


def test_update_unknown_record_raises(coordinator):
    with pytest.raises(RecordNotFound):
        coordinator.update_record(42, description="missing")
    assert len(coordinator.savepoints) == 0


def test_snapshot_failure_aborts_before_mutation(coordinator, monkeypatch):
    coordinator.record_uploads("demo", ["a.txt"])
    record_id = _record_id(coordinator, "demo", "a.txt")
    version = coordinator.current_version()

    def boom(*args, **kwargs):
        raise SnapshotFailure("disk full")

    monkeypatch.setattr(coordinator.savepoints, "create", boom)

    with pytest.raises(SnapshotFailure):
        coordinator.update_record(record_id, hidden=True)

    assert coordinator.get_record(record_id).hidden is None
    assert coordinator.current_version() == version
    assert _manifest_filenames(coordinator) == ["a.txt"]


class _RepeatingIdentifiers:
    def batch(self, size: int) -> list:
        return [7] * size


def test_failed_batch_inserts_nothing(coordinator):
    coordinator.record_uploads("demo", ["a.txt"])
    version = coordinator.current_version()
    queued = coordinator.savepoints.entries
    coordinator._identifiers = _RepeatingIdentifiers()

    with pytest.raises(StorageWriteFailure):
        coordinator.record_uploads("other", ["x.txt", "y.txt"])

    assert coordinator.store.list_sources("other") == []
    assert coordinator.list_archives() == ["demo"]
    assert coordinator.current_version() == version
    assert coordinator.savepoints.entries == queued


def test_export_failure_is_logged_not_raised(coordinator, monkeypatch, caplog):
    def broken():
        raise ExportFailure("read-only filesystem")

    monkeypatch.setattr(coordinator.exporter, "regenerate", broken)

    with caplog.at_level(logging.WARNING, logger="archivedash.coordinator"):
        result = coordinator.record_uploads("demo", ["a.txt"])

    assert result.applied is True
    assert result.manifest_rows is None
    assert coordinator.store.find_source("demo", "a.txt") is not None
    assert any("Manifest regeneration failed" in message for message in caplog.messages)


def test_undo_with_no_history(coordinator):
    with pytest.raises(EmptyHistory):
        coordinator.undo()


def test_uploads_record_folder_and_ids(coordinator):
    result = coordinator.record_uploads(
        "demo",
        [UploadedFile("a.txt", folder="scans"), UploadedFile("b.txt")],
    )

    assert len(result.record_ids) == 2
    assert len(set(result.record_ids)) == 2
    rows = {row["filename"]: row for row in read_manifest(coordinator.exporter.output_path)}
    assert rows["a.txt"]["folder"] == "scans"
    assert rows["b.txt"]["folder"] == "demo"
    assert rows["a.txt"]["url"] == "demo/a.txt"


def test_concurrent_mutations_are_serialised(coordinator):
    errors = []

    def upload(index: int) -> None:
        try:
            coordinator.record_uploads("demo", [f"file{index}.txt"])
        except Exception as exc:  # pragma: no cover - surfaced by assertion
            errors.append(exc)

    threads = [threading.Thread(target=upload, args=(index,)) for index in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert len(coordinator.store.list_sources("demo")) == 8
    assert len(coordinator.savepoints) == 8
    assert len(read_manifest(coordinator.exporter.output_path)) == 8


def test_startup_recovers_history(working_dir):
    from archive.coordinator import build_coordinator
    from core.settings import merge_defaults

    first = build_coordinator(working_dir, merge_defaults({}))
    first.startup()
    first.record_uploads("demo", ["a.txt"])
    first.record_uploads("demo", ["b.txt"])
    first.close()

    second = build_coordinator(working_dir, merge_defaults({}))
    second.startup()
    try:
        assert second.savepoints.entries == ["sp0.db", "sp1.db"]
        second.undo()
        assert [record.filename for record in second.store.list_sources("demo")] == ["a.txt"]
    finally:
        second.close()


def test_create_archive_then_upload_keeps_two_savepoints(coordinator):
    coordinator.create_archive("demo")
    coordinator.record_uploads("demo", ["a.txt", "b.txt"])

    assert coordinator.list_archives() == ["demo"]
    assert len(coordinator.savepoints) == 2
    assert len(read_manifest(coordinator.exporter.output_path)) == 2

    coordinator.undo()
    assert coordinator.list_archives() == ["demo"]
    assert read_manifest(coordinator.exporter.output_path) == []


def test_version_stamp_rolls_back_with_failed_write(coordinator, monkeypatch):
    coordinator.record_uploads("demo", ["a.txt"])
    version = coordinator.current_version()
    queued = coordinator.savepoints.entries

    def locked(self, conn=None):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr("archive.version.VersionStamp.bump", locked)

    with pytest.raises(StorageWriteFailure):
        coordinator.record_uploads("demo", ["b.txt"])

    assert [record.filename for record in coordinator.store.list_sources("demo")] == ["a.txt"]
    assert coordinator.current_version() == version
    assert coordinator.savepoints.entries == queued
    assert _manifest_filenames(coordinator) == ["a.txt"]


def test_version_stamp_commits_with_the_write(coordinator):
    result = coordinator.record_uploads("demo", ["a.txt"])
    coordinator.store.close()
    coordinator.store.reopen()

    assert coordinator.current_version() == result.version
