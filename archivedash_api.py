"""CLI entry-point to launch the archive dashboard HTTP API."""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import uvicorn

from api import __version__ as API_VERSION
from api.server import APIServerConfig, create_app
from archive.coordinator import MutationCoordinator, build_coordinator
from core.errors import ArchiveError, EmptyHistory
from core.logging_utils import configure_json_logging, redact_secret
from core.paths import ensure_working_dir_structure, resolve_working_dir
from core.settings import load_settings, update_settings

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 3000
DEFAULT_CORS = ["http://localhost", "http://127.0.0.1"]

LOGGER = logging.getLogger("archivedash.cli")


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Start the archive dashboard API service.")
    parser.add_argument("--working-dir", dest="working_dir", default=None, help="Override ARCHIVEDASH_HOME")
    parser.add_argument("--host", default=None, help="Bind host (default from settings.json)")
    parser.add_argument("--port", type=int, default=None, help="Bind port (default from settings.json)")
    parser.add_argument("--api-key", dest="api_key", default=None, help="Override the API key for this session")
    parser.add_argument(
        "--cors",
        action="append",
        dest="cors",
        default=None,
        help="Additional allowed CORS origin (repeatable).",
    )
    parser.add_argument(
        "--regenerate-manifest",
        action="store_true",
        help="Rebuild the manifest export and exit.",
    )
    parser.add_argument(
        "--undo",
        action="store_true",
        help="Restore the most recent savepoint and exit.",
    )
    parser.add_argument(
        "--save-settings",
        dest="save_settings",
        action="store_true",
        help="Persist --host, --port and --cors to settings.json and exit.",
    )
    return parser.parse_args(argv)


def resolve_api_settings(
    args: argparse.Namespace, settings: Dict[str, Any]
) -> tuple[str, int, Optional[str], List[str]]:
    api_settings = settings.get("api") if isinstance(settings.get("api"), dict) else {}

    host = str(args.host or api_settings.get("host") or DEFAULT_HOST).strip() or DEFAULT_HOST
    port = args.port or api_settings.get("port") or DEFAULT_PORT
    try:
        port = int(port)
    except (TypeError, ValueError):
        port = DEFAULT_PORT

    api_key = args.api_key if args.api_key else api_settings.get("api_key")

    if args.cors:
        cors = list(args.cors)
    else:
        cors = list(api_settings.get("cors_origins") or DEFAULT_CORS)
    return host, port, api_key, cors


def _persist_overrides(args: argparse.Namespace, working_dir: Path) -> Dict[str, Any]:
    # --api-key stays session only.
    overrides: Dict[str, Any] = {}
    if args.host:
        overrides["host"] = args.host.strip()
    if args.port:
        overrides["port"] = int(args.port)
    if args.cors:
        overrides["cors_origins"] = list(args.cors)
    update_settings(working_dir, api=overrides)
    return overrides


def _run_once(coordinator: MutationCoordinator, args: argparse.Namespace) -> int:
    if args.undo:
        try:
            version = coordinator.undo()
        except EmptyHistory as exc:
            logging.warning("%s", exc)
            return 1
        except ArchiveError as exc:
            logging.error("Undo failed: %s", exc)
            return 2
        logging.info("Undo applied; version stamp is now %s", version)
    if args.regenerate_manifest:
        try:
            result = coordinator.exporter.regenerate()
        except ArchiveError as exc:
            logging.error("%s", exc)
            return 2
        logging.info("Wrote %s (%d rows)", result.path, result.rows)
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")
    args = parse_args(argv)
    working_dir = Path(args.working_dir).resolve() if args.working_dir else resolve_working_dir()
    ensure_working_dir_structure(working_dir)
    configure_json_logging(working_dir=working_dir)
    if args.save_settings:
        overrides = _persist_overrides(args, working_dir)
        LOGGER.info(
            "Saved api settings to %s: %s",
            working_dir / "settings.json",
            ", ".join(sorted(overrides)) or "defaults",
        )
        return 0
    settings = load_settings(working_dir)
    host, port, api_key, cors = resolve_api_settings(args, settings)

    coordinator = build_coordinator(working_dir, settings)
    try:
        coordinator.startup()
    except ArchiveError as exc:
        logging.error("Startup failed: %s", exc)
        return 2

    if args.undo or args.regenerate_manifest:
        try:
            return _run_once(coordinator, args)
        finally:
            coordinator.close()

    if api_key:
        LOGGER.info("API key configured (%s)", redact_secret(api_key))

    config = APIServerConfig(
        coordinator=coordinator,
        api_key=api_key,
        cors_origins=cors,
        app_version=API_VERSION,
    )
    app = create_app(config)

    print(f"API listening on http://{host}:{port}", flush=True)

    uvicorn_config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_level="info",
        access_log=False,
    )
    server = uvicorn.Server(uvicorn_config)
    try:
        server.run()
    finally:
        coordinator.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
