from __future__ import annotations

import json
import logging
import os
import time
from pathlib import Path
from typing import Any, Dict, Iterator, Mapping, Optional

from .paths import get_default_settings_paths, get_logs_dir

__all__ = [
    "API_KEY_ENV",
    "DEFAULT_SETTINGS",
    "SETTINGS_VERSION",
    "load_settings",
    "merge_defaults",
    "save_settings",
    "update_settings",
]

LOGGER = logging.getLogger("archivedash.settings")

SETTINGS_VERSION = 1

# Overrides api.api_key for the current process only.
API_KEY_ENV = "ARCHIVEDASH_API_KEY"

DEFAULT_SETTINGS: Dict[str, Any] = {
    "version": SETTINGS_VERSION,
    "storage": {
        "db_filename": "archive.db",
        "busy_timeout_ms": 5000,
    },
    "savepoints": {
        "max_entries": 10,
        "prefix": "sp",
        "extension": ".db",
    },
    "manifest": {
        "filename": "sources.tsv",
        "url_prefix": "",
    },
    "identifiers": {
        "node_id": 1,
    },
    "uploads": {
        "dirname": "uploads",
    },
    "api": {
        "host": "127.0.0.1",
        "port": 3000,
        "api_key": None,
        "cors_origins": ["http://localhost", "http://127.0.0.1"],
    },
}


# Sections listed with "*" accept arbitrary keys; top-level scalars map to None.
_ALLOWED_KEYS: Dict[str, Any] = {
    "version": None,
    "working_dir": None,
    "api": "*",
    **{
        section: set(values)
        for section, values in DEFAULT_SETTINGS.items()
        if section != "api" and isinstance(values, dict)
    },
}


def _iter_unknown_keys(payload: Mapping[str, Any]) -> Iterator[str]:
    for key, value in payload.items():
        if key not in _ALLOWED_KEYS:
            yield key
            continue
        rule = _ALLOWED_KEYS[key]
        if isinstance(rule, set) and isinstance(value, Mapping):
            for sub in value:
                if sub not in rule:
                    yield f"{key}.{sub}"


def _merge_section(defaults: Mapping[str, Any], payload: Mapping[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = {}
    for key, default in defaults.items():
        supplied = payload.get(key, default)
        if isinstance(default, dict):
            merged[key] = _merge_section(default, supplied if isinstance(supplied, Mapping) else {})
        elif isinstance(default, list):
            merged[key] = list(supplied) if isinstance(supplied, list) else list(default)
        else:
            merged[key] = supplied
    # Unknown keys are kept so they survive a save and show up in the report.
    merged.update({key: value for key, value in payload.items() if key not in merged})
    return merged


def merge_defaults(data: Dict[str, Any]) -> Dict[str, Any]:
    """Return *data* layered over :data:`DEFAULT_SETTINGS` without mutating either."""

    return _merge_section(DEFAULT_SETTINGS, data or {})


def _coerce_int(section: Dict[str, Any], name: str, key: str, *, minimum: int, maximum: Optional[int] = None) -> None:
    default = DEFAULT_SETTINGS[name][key]
    try:
        value = int(section.get(key, default))
    except (TypeError, ValueError):
        LOGGER.warning("settings: %s=%r is not an integer, using %s", key, section.get(key), default)
        value = default
    if value < minimum or (maximum is not None and value > maximum):
        LOGGER.warning("settings: %s=%s out of range, using %s", key, value, default)
        value = default
    section[key] = value


def _normalise(settings: Dict[str, Any]) -> Dict[str, Any]:
    try:
        version = int(settings.get("version") or 0)
    except (TypeError, ValueError):
        version = 0
    settings["version"] = max(version, SETTINGS_VERSION)
    _coerce_int(settings["savepoints"], "savepoints", "max_entries", minimum=1)
    _coerce_int(settings["identifiers"], "identifiers", "node_id", minimum=1, maximum=9)
    _coerce_int(settings["storage"], "storage", "busy_timeout_ms", minimum=0)
    _coerce_int(settings["api"], "api", "port", minimum=1, maximum=65535)
    return settings


def _apply_environment(settings: Dict[str, Any]) -> Dict[str, Any]:
    api_key = os.environ.get(API_KEY_ENV)
    if api_key:
        settings["api"]["api_key"] = api_key.strip()
    return settings


def _write_unknown_report(settings: Mapping[str, Any], working_dir: Path) -> None:
    unknown = sorted(_iter_unknown_keys(settings))
    if not unknown:
        return
    target = get_logs_dir(working_dir) / "settings_unknown.json"
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(
            json.dumps({"ts": time.time(), "unknown": unknown}, ensure_ascii=False, indent=2),
            encoding="utf-8",
        )
    except OSError as exc:
        LOGGER.warning("settings: unable to write %s: %s", target, exc)


def _read_settings_file(working_dir: Path) -> Dict[str, Any]:
    for candidate in get_default_settings_paths(working_dir):
        if not candidate.is_file():
            continue
        try:
            loaded = json.loads(candidate.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            LOGGER.warning("settings: ignoring unreadable %s: %s", candidate, exc)
            continue
        if isinstance(loaded, dict):
            LOGGER.debug("settings: loaded %s", candidate)
            return loaded
    return {}


def load_settings(working_dir: Path) -> Dict[str, Any]:
    """Resolve settings for *working_dir*: file, then defaults, then environment."""

    settings = _normalise(merge_defaults(_read_settings_file(working_dir)))
    settings.setdefault("working_dir", str(working_dir))
    _write_unknown_report(settings, working_dir)
    return _apply_environment(settings)


def save_settings(settings: Dict[str, Any], working_dir: Path) -> None:
    payload = _normalise(merge_defaults(dict(settings)))
    payload.setdefault("working_dir", str(working_dir))
    path = working_dir / "settings.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
    os.replace(tmp, path)


def update_settings(working_dir: Path, **values: Any) -> None:
    """Persist *values* over the stored file; mapping values update their section key by key."""

    # Environment overrides are per process and never persisted.
    current = merge_defaults(_read_settings_file(working_dir))
    for key, value in values.items():
        if isinstance(value, Mapping) and isinstance(current.get(key), dict):
            current[key].update(value)
        else:
            current[key] = value
    save_settings(current, working_dir)
