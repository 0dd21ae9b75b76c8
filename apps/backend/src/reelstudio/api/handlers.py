"""Exception handlers mapping the error taxonomy to HTTP responses.

Every error body has the shape ``{"error": "<message>"}``.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from reelstudio.errors import (
    Forbidden,
    InvalidInput,
    InvalidTransition,
    NoArtifact,
    NotFound,
    NotReady,
    ProviderUnavailable,
    ReelStudioError,
)

logger = logging.getLogger(__name__)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


async def _invalid_input(request: Request, exc: InvalidInput) -> JSONResponse:
    return _error(422, exc.message or "Invalid input")


async def _not_found(request: Request, exc: ReelStudioError) -> JSONResponse:
    # Forbidden is reported as not found so job ids of other users don't leak
    if isinstance(exc, Forbidden):
        logger.warning("Ownership check failed on %s: %s", request.url.path, exc)
    return _error(404, "Job not found")


async def _not_ready(request: Request, exc: NotReady) -> JSONResponse:
    return _error(409, "Job has not completed yet")


async def _no_artifact(request: Request, exc: NoArtifact) -> JSONResponse:
    return _error(404, "Job has no artifact")


async def _provider_unavailable(request: Request, exc: ProviderUnavailable) -> JSONResponse:
    logger.warning("Provider call failed on %s: %s", request.url.path, exc)
    return _error(502, "Provider is unavailable, please try again later")


async def _internal(request: Request, exc: ReelStudioError) -> JSONResponse:
    logger.error("Unhandled %s on %s: %s", exc.code, request.url.path, exc)
    return _error(500, "Internal error")


async def _http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


async def _request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return _error(422, "; ".join(parts) or "Invalid request")


def register_exception_handlers(app: FastAPI) -> None:
    """Install the handlers on ``app``."""
    app.add_exception_handler(InvalidInput, _invalid_input)
    app.add_exception_handler(NotFound, _not_found)
    app.add_exception_handler(Forbidden, _not_found)
    app.add_exception_handler(NotReady, _not_ready)
    app.add_exception_handler(NoArtifact, _no_artifact)
    app.add_exception_handler(ProviderUnavailable, _provider_unavailable)
    app.add_exception_handler(InvalidTransition, _internal)
    app.add_exception_handler(ReelStudioError, _internal)
    app.add_exception_handler(StarletteHTTPException, _http_exception)
    app.add_exception_handler(RequestValidationError, _request_validation)
