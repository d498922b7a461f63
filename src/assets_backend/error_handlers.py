"""Every API error renders as ``ErrorResponse{error, message, request_id, details}``."""

from __future__ import annotations

import logging
from typing import cast

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from assets_backend.library_errors import LibraryError
from assets_backend.schemas_common import ErrorResponse

logger = logging.getLogger(__name__)

# Framework-raised errors (auth, unknown routes) have no domain code of their own.
_STATUS_ERRORS: dict[int, str] = {
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    413: "payload_too_large",
}


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def _render(
    request: Request,
    status_code: int,
    *,
    error: str,
    message: str,
    details: object | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    payload = ErrorResponse(
        error=error,
        message=message,
        request_id=_request_id(request),
        # Validation contexts may hold exception instances; encode before the model sees them.
        details=jsonable_encoder(details) if details is not None else None,
    )
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(payload, exclude_none=True),
        headers=headers,
    )


async def _library_error_handler(request: Request, exc: Exception) -> JSONResponse:
    err = cast(LibraryError, exc)
    if err.status_code >= 500:
        logger.error("library error status=%s message=%s", err.status_code, err.message)
    return _render(
        request, err.status_code, error=err.error, message=err.message, details=err.details
    )


async def _http_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    http_exc = cast(StarletteHTTPException, exc)
    return _render(
        request,
        http_exc.status_code,
        error=_STATUS_ERRORS.get(http_exc.status_code, f"http_{http_exc.status_code}"),
        message=str(http_exc.detail),
        headers=getattr(http_exc, "headers", None),
    )


async def _validation_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    validation_exc = cast(RequestValidationError, exc)
    return _render(
        request,
        422,
        error="validation_error",
        message="Request validation error",
        details=validation_exc.errors(),
    )


async def _unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "unhandled exception request_id=%s method=%s path=%s",
        _request_id(request),
        request.method,
        request.url.path,
        exc_info=exc,
    )
    return _render(request, 500, error="internal_error", message="Internal server error")


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(LibraryError, _library_error_handler)
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(RequestValidationError, _validation_exception_handler)
    app.add_exception_handler(Exception, _unhandled_exception_handler)
