from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional
from urllib.parse import quote

import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.responses import PlainTextResponse, Response
from pydantic import BaseModel, ConfigDict

from zipwithpass_backend import config
from zipwithpass_backend.archiver import Archiver, build_archiver
from zipwithpass_backend.errors import ValidationError, ZipServiceError
from zipwithpass_backend.security import is_safe_basename
from zipwithpass_backend.uploads import materialize
from zipwithpass_backend.workspace import delete_stale_workspaces, ephemeral_workspace


_LOG_NAME_TO_LEVEL: dict[str, int] = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer() if config.LOG_FORMAT == "json"
        else structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(
        _LOG_NAME_TO_LEVEL.get(config.LOG_LEVEL, logging.INFO),
    ),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)


class CreateZipParams(BaseModel):
    model_config = ConfigDict(frozen=True)

    password: str
    archive_name: str = config.DEFAULT_ARCHIVE_NAME

    @classmethod
    def from_query(cls, password: Optional[str], zip_filename: Optional[str]) -> "CreateZipParams":
        trimmed = (password or "").strip()
        if not trimmed:
            raise ValidationError("Password is required")
        archive_name = zip_filename or config.DEFAULT_ARCHIVE_NAME
        if not is_safe_basename(archive_name):
            raise ValidationError("Invalid zip_filename")
        return cls(password=trimmed, archive_name=archive_name)


def get_workspaces_root() -> Path:
    return config.WORKSPACES_ROOT


def get_archiver() -> Archiver:
    return build_archiver()


def content_disposition(filename: str) -> str:
    try:
        filename.encode("ascii")
    except UnicodeEncodeError:
        return f"attachment; filename*=utf-8''{quote(filename)}"
    return f"attachment; filename={filename}"


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Workspaces left behind by a killed process are swept once at startup.
    try:
        deleted = delete_stale_workspaces()
    except OSError as exc:
        logger.warning("stale_workspace_sweep_failed", error=type(exc).__name__)
    else:
        if deleted:
            logger.info("stale_workspaces_deleted", count=deleted)
    yield


app = FastAPI(lifespan=lifespan)


@app.middleware("http")
async def _bind_request_id(request: Request, call_next):
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=uuid.uuid4().hex[:12], path=request.url.path)
    try:
        return await call_next(request)
    finally:
        structlog.contextvars.clear_contextvars()


@app.exception_handler(ZipServiceError)
async def _zip_service_error(request: Request, exc: ZipServiceError) -> PlainTextResponse:
    if exc.status_code >= 500:
        logger.error("request_failed", category=type(exc).__name__, status=exc.status_code)
    else:
        logger.info("request_rejected", category=type(exc).__name__, status=exc.status_code, reason=exc.message)
    return PlainTextResponse(exc.message, status_code=exc.status_code)


@app.post("/createzip")
async def create_zip(
    request: Request,
    password: Optional[str] = None,
    zip_filename: Optional[str] = None,
    root: Path = Depends(get_workspaces_root),
    archiver: Archiver = Depends(get_archiver),
) -> Response:
    """Bundle the uploaded `files` parts into a password-protected ZIP."""
    params = CreateZipParams.from_query(password, zip_filename)

    with ephemeral_workspace(root) as ws:
        file_names = await materialize(request.stream(), request.headers.get("content-type", ""), ws)
        if not file_names:
            raise ValidationError("No files uploaded")
        artifact = await archiver.create(ws, file_names, params.password, params.archive_name)

    headers = {"Content-Disposition": content_disposition(artifact.name)}
    return Response(content=artifact.data, media_type="application/zip", headers=headers)


if __name__ == "__main__":
    # Convenience: python server.py
    import uvicorn

    logger.info("server_starting", host=config.HOST, port=config.PORT, archiver=config.ARCHIVER)
    uvicorn.run("server:app", host=config.HOST, port=config.PORT, reload=False)
