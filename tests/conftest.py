from __future__ import annotations

from pathlib import Path

import pytest

from archive.coordinator import MutationCoordinator, build_coordinator
from archive.store import ArchiveStore
from core.settings import merge_defaults


class StubLogger:
    """Record savepoint log events instead of writing JSONL."""

    def __init__(self) -> None:
        self.events = []

    def info(self, event: str, **extra):  # pragma: no cover - recorder
        self.events.append(("info", event, extra))

    def warning(self, event: str, **extra):  # pragma: no cover - recorder
        self.events.append(("warning", event, extra))

    def error(self, event: str, **extra):  # pragma: no cover - recorder
        self.events.append(("error", event, extra))

    def event(self, *, event: str, phase: str, ok: bool, **extra):  # pragma: no cover - recorder
        self.events.append(("event", event, phase, ok, extra))

    def names(self) -> list:
        return [entry[1] for entry in self.events]


@pytest.fixture
def stub_logger() -> StubLogger:
    return StubLogger()


@pytest.fixture
def working_dir(tmp_path: Path) -> Path:
    path = tmp_path / "work"
    path.mkdir()
    return path


@pytest.fixture
def store(working_dir: Path):
    archive_store = ArchiveStore(working_dir / "data" / "archive.db")
    archive_store.connection()
    yield archive_store
    archive_store.close()


@pytest.fixture
def coordinator(working_dir: Path):
    instance: MutationCoordinator = build_coordinator(working_dir, merge_defaults({}))
    instance.startup()
    yield instance
    instance.close()
