"""Exception handlers -- every API error leaves as one JSON shape.

    {"error": <short title>, "detail": <message or field list>, "request_id": <id>}

Domain errors carry their own status code.  4xx outcomes are logged as
warnings and 5xx as errors; a traceback is logged only for exceptions no
handler recognises, and is never sent to the client.
"""

import logging
from http import HTTPStatus

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.errors import (
    BadRequestError,
    BuildRelayError,
    NotFoundError,
    PersistenceFailure,
    ValidationFailure,
    format_error_response,
)
from app.middleware import request_id_var

logger = logging.getLogger(__name__)

# Seconds a client should wait before retrying while the build store is down.
STORE_RETRY_AFTER_SECONDS = 5

_DOMAIN_TITLES: tuple[tuple[type[BuildRelayError], str], ...] = (
    (NotFoundError, "Not Found"),
    (BadRequestError, "Bad Request"),
    (ValidationFailure, "Invalid Input"),
    (PersistenceFailure, "Build Store Unavailable"),
)


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or request_id_var.get()


def _status_title(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Error"


def _error_response(
    request: Request,
    status_code: int,
    *,
    error: str,
    detail: object,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    request_id = _request_id(request)
    log = logger.error if status_code >= 500 else logger.warning
    log(
        "%s %s -> %d %s [request_id=%s]: %s",
        request.method, request.url.path, status_code, error, request_id, detail,
    )
    return JSONResponse(
        status_code=status_code,
        content=format_error_response(error=error, detail=detail, request_id=request_id),
        headers=headers,
    )


async def domain_error_handler(request: Request, exc: BuildRelayError) -> JSONResponse:
    """Build, pipeline and settings errors raised by the services."""
    title = next(
        (t for cls, t in _DOMAIN_TITLES if isinstance(exc, cls)),
        _status_title(exc.status_code),
    )
    headers = None
    if isinstance(exc, PersistenceFailure):
        headers = {"Retry-After": str(STORE_RETRY_AFTER_SECONDS)}
    return _error_response(request, exc.status_code, error=title, detail=str(exc), headers=headers)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Auth failures, rate limiting and unknown routes."""
    title = _status_title(exc.status_code)
    return _error_response(
        request,
        exc.status_code,
        error=title,
        detail=str(exc.detail) if exc.detail else title,
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Only loc/msg/type: pydantic's ``ctx`` may hold exception objects.
    fields = [
        {"loc": list(e.get("loc", ())), "msg": e.get("msg", ""), "type": e.get("type", "")}
        for e in exc.errors()
    ]
    return _error_response(
        request, status.HTTP_422_UNPROCESSABLE_ENTITY, error="Validation failed", detail=fields,
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    request_id = _request_id(request)
    logger.error(
        "Unhandled %s on %s %s [request_id=%s]",
        type(exc).__name__, request.method, request.url.path, request_id,
        exc_info=exc,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=format_error_response(
            error="Internal Server Error",
            detail="Internal server error",
            request_id=request_id,
        ),
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register the handlers on *app*. The most specific class wins."""
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(BuildRelayError, domain_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, unhandled_exception_handler)  # type: ignore[arg-type]
