"""Middleware: API key authentication and error mapping."""

from __future__ import annotations

import logging
import secrets
from typing import TYPE_CHECKING, Annotated, cast

from fastapi import Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from classifyx.ml.errors import (
    ClassifyXError,
    FormatError,
    ImageError,
    InferenceError,
    LoadError,
    MissingArtifactError,
    NotLoadedError,
)

if TYPE_CHECKING:
    from fastapi import FastAPI

    from classifyx.config import Settings

logger = logging.getLogger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)

# Checked in order; subclasses before ClassifyXError.
_ERROR_STATUS: tuple[tuple[type[ClassifyXError], int], ...] = (
    (MissingArtifactError, status.HTTP_400_BAD_REQUEST),
    (FormatError, status.HTTP_400_BAD_REQUEST),
    (ImageError, status.HTTP_400_BAD_REQUEST),
    (LoadError, 422),
    (NotLoadedError, status.HTTP_409_CONFLICT),
    (InferenceError, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


async def verify_api_key(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer_scheme)],
) -> None:
    """Check the Bearer token against the configured API key.

    If no API key is configured (CLASSIFYX_API_KEY not set), all requests pass.
    """
    settings: Settings = request.app.state.settings
    expected = settings.api_key
    if expected is None:
        return

    supplied = credentials.credentials if credentials is not None else ""
    if not secrets.compare_digest(supplied.encode(), expected.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
            headers={"WWW-Authenticate": "Bearer"},
        )


def status_for(exc: ClassifyXError) -> int:
    for error_type, code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def _handle_classifyx_error(request: Request, exc: Exception) -> JSONResponse:
    # Registered for ClassifyXError only.
    error = cast(ClassifyXError, exc)
    code = status_for(error)
    if code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        logger.error("%s %s failed: %s", request.method, request.url.path, error)
    return JSONResponse(status_code=code, content={"detail": str(error)})


async def _handle_timeout(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Server busy, try again later"},
    )


def register_error_handlers(app: FastAPI) -> None:
    """Translate session errors into JSON error responses."""
    app.add_exception_handler(ClassifyXError, _handle_classifyx_error)
    app.add_exception_handler(TimeoutError, _handle_timeout)
