"""Exception handlers translating domain errors into the JSON error envelope.

Managers and the coordinator raise exceptions from ``errors``; routers let
them propagate.  Each handler renders ``ErrorResponse``
(``{"success": false, "error": ..., "details": ...}``) with the status code
of the exception class.  ``ExecutionError`` never reaches here: the
coordinator folds it into a ``success=false`` report returned with 200.
"""

from __future__ import annotations

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.exceptions import HTTPException as StarletteHTTPException

from coherex.agent_runtime.errors import (
    DuplicateAgentError,
    FeedbackDisabledError,
    InvalidStateError,
    NotFoundError,
    PreviewLimitReachedError,
    PreviewLinkGoneError,
    PreviewPasswordError,
    ProvisioningError,
    SessionBusyError,
    SessionConflictError,
    UnsupportedModeError,
)
from coherex.agent_runtime.models.api import ErrorResponse
from coherex.agent_runtime.registry import ShuttingDownError

STATUS_BY_EXCEPTION: dict[type[Exception], int] = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    InvalidStateError: status.HTTP_400_BAD_REQUEST,
    UnsupportedModeError: status.HTTP_400_BAD_REQUEST,
    DuplicateAgentError: status.HTTP_409_CONFLICT,
    SessionBusyError: status.HTTP_409_CONFLICT,
    SessionConflictError: status.HTTP_409_CONFLICT,
    PreviewLinkGoneError: status.HTTP_410_GONE,
    PreviewPasswordError: status.HTTP_401_UNAUTHORIZED,
    FeedbackDisabledError: status.HTTP_403_FORBIDDEN,
    PreviewLimitReachedError: status.HTTP_429_TOO_MANY_REQUESTS,
    ProvisioningError: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ShuttingDownError: status.HTTP_503_SERVICE_UNAVAILABLE,
}

_MESSAGES: dict[type[Exception], str] = {
    ProvisioningError: "Failed to provision sandbox",
    ShuttingDownError: "Service is shutting down",
}


def _status_for(exc: Exception) -> int:
    for cls in type(exc).__mro__:
        if cls in STATUS_BY_EXCEPTION:
            return STATUS_BY_EXCEPTION[cls]
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def _message_for(exc: Exception) -> str:
    for cls in type(exc).__mro__:
        if cls in _MESSAGES:
            return _MESSAGES[cls]
    return str(exc)


async def domain_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    status_code = _status_for(exc)
    message = _message_for(exc)
    details = str(exc) or None
    if details == message:
        details = None

    if status_code >= 500:
        logger.error("{} {} -> {}: {}", request.method, request.url.path, status_code, exc)
    else:
        logger.info("{} {} -> {}: {}", request.method, request.url.path, status_code, exc)

    body = ErrorResponse(error=message, details=details)
    return JSONResponse(status_code=status_code, content=body.model_dump())


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    body = ErrorResponse(error=str(exc.detail))
    return JSONResponse(status_code=exc.status_code, content=body.model_dump(), headers=exc.headers)


def register_exception_handlers(app: FastAPI) -> None:
    """Register the domain and HTTP exception handlers on *app*."""
    for exc_class in STATUS_BY_EXCEPTION:
        app.add_exception_handler(exc_class, domain_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore[arg-type]
