from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Optional

__all__ = [
    "ensure_working_dir_structure",
    "get_archive_db_path",
    "get_data_dir",
    "get_default_settings_paths",
    "get_exports_dir",
    "get_logs_dir",
    "get_manifest_path",
    "get_savepoints_dir",
    "get_uploads_dir",
    "resolve_working_dir",
    "safe_archive_name",
]

_PROJECT_ROOT = Path(__file__).resolve().parent.parent

DEFAULT_DB_FILENAME = "archive.db"
DEFAULT_MANIFEST_FILENAME = "sources.tsv"
DEFAULT_UPLOADS_DIRNAME = "uploads"


def _expand_path(value: str) -> Path:
    expanded = os.path.expandvars(os.path.expanduser(value))
    return Path(expanded).resolve()


def _ensure_writable_dir(path: Path) -> bool:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError:
        return False
    test_file = path / f".write_test_{os.getpid()}"
    try:
        with open(test_file, "w", encoding="utf-8") as handle:
            handle.write("ok")
        test_file.unlink(missing_ok=True)
        return True
    except OSError:
        try:
            if test_file.exists():
                test_file.unlink()
        except OSError:  # pragma: no cover - best effort cleanup
            pass
        return False


def _prepare_working_dir(candidate: Path) -> Optional[Path]:
    if not _ensure_writable_dir(candidate):
        return None
    try:
        get_data_dir(candidate).mkdir(parents=True, exist_ok=True)
        return candidate
    except OSError:
        return None


def resolve_working_dir() -> Path:
    """Resolve the archivedash working directory, creating it if required."""

    env_home = os.environ.get("ARCHIVEDASH_HOME")
    if env_home:
        try:
            env_path = _expand_path(env_home)
        except (OSError, RuntimeError):
            env_path = None
        if env_path:
            prepared = _prepare_working_dir(env_path)
            if prepared is not None:
                return prepared

    prepared = _prepare_working_dir(Path.home() / ".archivedash")
    if prepared is not None:
        return prepared

    fallback = _PROJECT_ROOT / "var"
    get_data_dir(fallback).mkdir(parents=True, exist_ok=True)
    return fallback


def get_data_dir(working_dir: Path) -> Path:
    return working_dir / "data"


def get_archive_db_path(working_dir: Path, filename: str = DEFAULT_DB_FILENAME) -> Path:
    return get_data_dir(working_dir) / filename


def get_savepoints_dir(working_dir: Path) -> Path:
    return working_dir / "savepoints"


def get_uploads_dir(working_dir: Path, dirname: str = DEFAULT_UPLOADS_DIRNAME) -> Path:
    return working_dir / dirname


_UNSAFE_SEGMENT = re.compile(r"[\\/\x00]+")


def safe_archive_name(name: str) -> str:
    """Return *name* with path separators removed so it stays one folder deep."""

    cleaned = _UNSAFE_SEGMENT.sub("_", name.strip())
    if cleaned in {".", ".."}:
        return ""
    return cleaned


def get_logs_dir(working_dir: Path) -> Path:
    return working_dir / "logs"


def get_exports_dir(working_dir: Path) -> Path:
    return working_dir / "exports"


def get_manifest_path(working_dir: Path, filename: str = DEFAULT_MANIFEST_FILENAME) -> Path:
    return get_exports_dir(working_dir) / filename


def ensure_working_dir_structure(working_dir: Path) -> None:
    for directory in (
        working_dir,
        get_data_dir(working_dir),
        get_savepoints_dir(working_dir),
        get_uploads_dir(working_dir),
        get_logs_dir(working_dir),
        get_exports_dir(working_dir),
    ):
        directory.mkdir(parents=True, exist_ok=True)


def get_default_settings_paths(working_dir: Path) -> list[Path]:
    """Return the search order for settings.json files."""

    return [working_dir / "settings.json", _PROJECT_ROOT / "settings.json"]
