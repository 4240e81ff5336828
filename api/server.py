"""FastAPI application exposing the archive dashboard operations."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from fastapi import Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse

from archive.coordinator import MutationCoordinator
from archive.types import INDETERMINATE, MutationResult, SourceRecord, UploadedFile
from core.errors import (
    ArchiveError,
    EmptyHistory,
    InvalidName,
    RecordNotFound,
)

from .auth import APIKeyAuth
from .models import (
    ArchiveCreateRequest,
    ArchiveDetailResponse,
    ArchivesResponse,
    HealthResponse,
    MutationResponse,
    RecordUpdateRequest,
    SavepointEntry,
    SavepointsResponse,
    SourceRecordModel,
    UndoResponse,
    UploadRequest,
    VersionResponse,
)

LOGGER = logging.getLogger("archivedash.api")

DASHBOARD_VIEW = "/dashboard"


@dataclass(slots=True)
class APIServerConfig:
    """Runtime configuration for the FastAPI application."""

    coordinator: MutationCoordinator
    api_key: Optional[str]
    cors_origins: Sequence[str]
    app_version: str = "dev"


class DashboardError(Exception):
    """Failure reported back to the caller together with the view to return to."""

    def __init__(self, status_code: int, message: str, redirect: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.redirect = redirect


def _archive_view(archive: str) -> str:
    return f"{DASHBOARD_VIEW}/{archive}"


def _to_dashboard_error(exc: ArchiveError, redirect: str) -> DashboardError:
    if isinstance(exc, EmptyHistory):
        return DashboardError(status.HTTP_409_CONFLICT, str(exc), DASHBOARD_VIEW)
    if isinstance(exc, RecordNotFound):
        return DashboardError(status.HTTP_404_NOT_FOUND, str(exc), redirect)
    if isinstance(exc, InvalidName):
        return DashboardError(status.HTTP_400_BAD_REQUEST, str(exc), redirect)
    LOGGER.error("Mutation failed: %s", exc)
    return DashboardError(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc), redirect)


def _record_model(record: SourceRecord) -> SourceRecordModel:
    return SourceRecordModel(
        id=record.id,
        archive=record.archive,
        filename=record.filename,
        folder=record.folder,
        description=record.display_description,
        tags=record.tags,
        license=record.license,
        hidden=record.hidden,
        url=record.url,
    )


def jsonable_errors(exc: RequestValidationError) -> List[dict]:
    return [
        {key: value for key, value in error.items() if key in {"loc", "msg", "type"}}
        for error in exc.errors()
    ]


def _mutation_response(result: MutationResult, redirect: str) -> MutationResponse:
    return MutationResponse(
        applied=result.applied,
        version=result.version,
        record_ids=list(result.record_ids),
        redirect=redirect,
    )


def create_app(config: APIServerConfig) -> FastAPI:
    """Create a FastAPI application bound to the given configuration."""

    app = FastAPI(
        title="Archive Dashboard API",
        version=config.app_version,
        docs_url="/docs",
        openapi_url="/openapi.json",
    )

    allowed_origins: List[str] = [origin for origin in config.cors_origins if origin]
    if allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=allowed_origins,
            allow_methods=["GET", "POST", "PATCH"],
            allow_headers=["*"],
        )

    auth_dependency = APIKeyAuth(config.api_key)
    if not auth_dependency.configured:
        LOGGER.warning("API key is not configured; all protected requests will be rejected with 401.")
    coordinator = config.coordinator

    @app.middleware("http")
    async def log_requests(request: Request, call_next):  # type: ignore[override]
        start = time.perf_counter()
        response: Optional[Response] = None
        try:
            response = await call_next(request)
            return response
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            status_code = response.status_code if response is not None else 500
            LOGGER.info(
                "%s %s -> %s (%.1f ms)",
                request.method,
                request.url.path,
                status_code,
                duration_ms,
            )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(_request: Request, exc: HTTPException):
        detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
        return JSONResponse(status_code=exc.status_code, content={"error": detail})

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "invalid parameters", "details": jsonable_errors(exc)},
        )

    @app.exception_handler(DashboardError)
    async def dashboard_error_handler(_request: Request, exc: DashboardError):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.message, "redirect": exc.redirect},
        )

    @app.get("/v1/health", response_model=HealthResponse)
    def health() -> HealthResponse:
        snapshot = coordinator.status()
        return HealthResponse(
            version=config.app_version,
            time_utc=datetime.now(timezone.utc).isoformat(),
            stamp=int(snapshot["version"]),
            savepoints=int(snapshot["savepoints"]),
        )

    @app.get("/v1/version", response_model=VersionResponse)
    def version() -> VersionResponse:
        return VersionResponse(version=coordinator.current_version())

    @app.get("/v1/manifest")
    def manifest() -> FileResponse:
        path = coordinator.exporter.output_path
        if not path.exists():
            raise HTTPException(status_code=404, detail="manifest not generated yet")
        return FileResponse(path, media_type="text/tab-separated-values", filename=path.name)

    @app.get("/v1/archives", response_model=ArchivesResponse)
    def archives(_: str = Depends(auth_dependency)) -> ArchivesResponse:
        return ArchivesResponse(results=coordinator.list_archives())

    @app.post("/v1/archives", response_model=MutationResponse)
    def create_archive(payload: ArchiveCreateRequest, _: str = Depends(auth_dependency)) -> MutationResponse:
        try:
            name = coordinator.normalise_archive_name(payload.name)
            result = coordinator.create_archive(name)
        except ArchiveError as exc:
            raise _to_dashboard_error(exc, DASHBOARD_VIEW) from exc
        return _mutation_response(result, _archive_view(name))

    @app.get("/v1/archives/{archive}", response_model=ArchiveDetailResponse)
    def archive_detail(archive: str, _: str = Depends(auth_dependency)) -> ArchiveDetailResponse:
        try:
            records = coordinator.list_records(archive)
        except RecordNotFound as exc:
            raise _to_dashboard_error(exc, DASHBOARD_VIEW) from exc
        return ArchiveDetailResponse(archive=archive, files=[_record_model(record) for record in records])

    @app.post("/v1/archives/{archive}/records", response_model=MutationResponse)
    def record_uploads(
        archive: str,
        payload: UploadRequest,
        _: str = Depends(auth_dependency),
    ) -> MutationResponse:
        files = [UploadedFile(filename=entry.filename, folder=entry.folder) for entry in payload.files]
        try:
            result = coordinator.record_uploads(archive, files)
        except ArchiveError as exc:
            raise _to_dashboard_error(exc, _archive_view(archive)) from exc
        return _mutation_response(result, _archive_view(archive))

    @app.patch("/v1/records/{record_id}", response_model=MutationResponse)
    def update_record(
        record_id: int,
        payload: RecordUpdateRequest,
        _: str = Depends(auth_dependency),
    ) -> MutationResponse:
        hidden = payload.hidden if "hidden" in payload.model_fields_set else INDETERMINATE
        try:
            record = coordinator.get_record(record_id)
            result = coordinator.update_record(
                record_id,
                description=payload.description,
                tags=payload.tags,
                license=payload.license,
                hidden=hidden,
            )
        except RecordNotFound as exc:
            raise _to_dashboard_error(exc, DASHBOARD_VIEW) from exc
        except ArchiveError as exc:
            raise _to_dashboard_error(exc, _archive_view(record.archive)) from exc
        return _mutation_response(result, _archive_view(record.archive))

    @app.post("/v1/undo", response_model=UndoResponse)
    def undo(_: str = Depends(auth_dependency)) -> UndoResponse:
        try:
            stamp = coordinator.undo()
        except EmptyHistory as exc:
            LOGGER.info("Undo requested with empty history")
            raise _to_dashboard_error(exc, DASHBOARD_VIEW) from exc
        except ArchiveError as exc:
            raise _to_dashboard_error(exc, DASHBOARD_VIEW) from exc
        return UndoResponse(version=stamp, remaining=len(coordinator.savepoints))

    @app.get("/v1/savepoints", response_model=SavepointsResponse)
    def savepoints(_: str = Depends(auth_dependency)) -> SavepointsResponse:
        entries = [
            SavepointEntry(name=info.name, size_bytes=info.size_bytes, modified_utc=info.modified_utc)
            for info in coordinator.savepoints.describe()
        ]
        return SavepointsResponse(
            results=entries,
            max_entries=coordinator.savepoints.max_entries,
            history=coordinator.savepoints.history(),
        )

    return app


__all__ = ["APIServerConfig", "DashboardError", "create_app"]
