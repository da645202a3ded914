"""FastAPI surface of the ingestion server."""

from __future__ import annotations

import logging
import re
import secrets
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Annotated, Any

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from tkproxy import __version__, errors
from tkproxy.config import ServerConfig
from tkproxy.server.ingestion import IngestionServer
from tkproxy.services.protocols import SubmitterProtocol
from tkproxy.services.schedule import utc_now_iso

logger = logging.getLogger(__name__)

_BEARER_RE = re.compile(r"^Bearer\s+(.+)$", re.IGNORECASE)
_SERVER_KEY = "ingestion"

router = APIRouter()


def get_ingestion(request: Request) -> IngestionServer:
    """Retrieve the IngestionServer stored in app state."""
    server = getattr(request.app.state, _SERVER_KEY, None)
    if server is None:
        msg = "IngestionServer not initialized"
        raise RuntimeError(msg)
    return server  # type: ignore[no-any-return]


Ingestion = Annotated[IngestionServer, Depends(get_ingestion)]


def bearer_token(header: str | None) -> str | None:
    if not header:
        return None
    match = _BEARER_RE.match(header.strip())
    return match.group(1) if match else None


def require_auth(request: Request, server: Ingestion) -> None:
    """Reject the request unless it carries the configured bearer token."""
    config = server.config
    if config.no_auth:
        return
    provided = bearer_token(request.headers.get("authorization"))
    expected = config.auth_token
    if not expected or provided is None:
        raise errors.AuthorizationError
    if not secrets.compare_digest(provided.encode(), expected.encode()):
        raise errors.AuthorizationError


async def read_body_limited(request: Request, max_bytes: int) -> bytes:
    """Read the request body, failing as soon as it exceeds ``max_bytes``."""
    too_large = f"Request body too large (max {max_bytes} bytes)"
    declared = request.headers.get("content-length", "")
    if declared.isdigit() and int(declared) > max_bytes:
        raise errors.InvalidUploadError(too_large)
    chunks: list[bytes] = []
    total = 0
    async for chunk in request.stream():
        total += len(chunk)
        if total > max_bytes:
            raise errors.InvalidUploadError(too_large)
        chunks.append(chunk)
    return b"".join(chunks)


@router.get("/healthz")
async def healthz() -> dict[str, Any]:
    return {"ok": True, "now": utc_now_iso()}


@router.get("/status", dependencies=[Depends(require_auth)])
async def status(server: Ingestion) -> dict[str, Any]:
    return await server.status()


@router.post("/v1/captures", status_code=202, dependencies=[Depends(require_auth)])
async def upload_capture(request: Request, server: Ingestion) -> dict[str, Any]:
    body = await read_body_limited(request, server.config.max_request_bytes)
    snapshot = await server.accept_upload(body)
    return {"ok": True, "clientId": snapshot.client_id, "receivedAt": snapshot.received_at}


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(errors.AuthorizationError)
    async def _unauthorized(_request: Request, exc: errors.AuthorizationError) -> JSONResponse:
        return _error(401, str(exc))

    @app.exception_handler(errors.ValidationError)
    async def _invalid(_request: Request, exc: errors.ValidationError) -> JSONResponse:
        return _error(400, str(exc))

    @app.exception_handler(errors.StorageError)
    async def _storage(_request: Request, exc: errors.StorageError) -> JSONResponse:
        logger.error("Storage failure while handling request: %s", exc)
        return _error(500, str(exc))

    @app.exception_handler(StarletteHTTPException)
    async def _http(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return _error(exc.status_code, str(exc.detail))


def create_app(server: IngestionServer, *, run_timer: bool = True) -> FastAPI:
    """Build the FastAPI app whose lifespan drives ``server``."""

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        await server.start(run_timer=run_timer)
        try:
            yield
        finally:
            await server.stop()

    app = FastAPI(
        title="tk-proxy",
        description="Capture ingestion and daily tokscale submission",
        version=__version__,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    setattr(app.state, _SERVER_KEY, server)
    app.include_router(router)
    _install_error_handlers(app)
    return app


def run_server(config: ServerConfig, submitter: SubmitterProtocol | None = None) -> None:
    """Serve until SIGINT/SIGTERM, then drain and exit."""
    server = IngestionServer(config, submitter=submitter)
    app = create_app(server)
    logger.info("Listening on http://%s:%d", config.host, config.port)
    uvicorn.run(
        app,
        host=config.host,
        port=config.port,
        log_level="info",
        timeout_graceful_shutdown=int(config.drain_timeout_s),
    )
