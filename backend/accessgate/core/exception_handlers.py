"""
Error responses for the HTTP layer.

WHAT: Turns AppException, request validation failures, routing errors and
anything unexpected into the one JSON error body the API uses:
{"error", "message", "status_code", "details"}.

WHY: Clients of the access check tell NETWORK_ERROR style outages (502)
apart from store outages (503) by status and error name alone, so every
failure path has to produce the same shape. Details never carry token
secrets or verification codes; AppException.to_dict filters them.

HOW: install_exception_handlers() registers all handlers on an app.
Server-side failures are logged with the request ID from the request
context so a client report can be matched to the log line.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from accessgate.core.exceptions import AppException, ValidationError
from accessgate.middleware.request_context import get_request_context


logger = logging.getLogger(__name__)


def _error_response(
    status_code: int,
    error: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": error,
            "message": message,
            "status_code": status_code,
            "details": details,
        },
        headers=headers,
    )


def _log_extra(request: Request, **fields: Any) -> Dict[str, Any]:
    context = get_request_context()
    return {
        "path": request.url.path,
        "method": request.method,
        "request_id": context.request_id if context else None,
        **fields,
    }


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    # Client errors are the caller's business; outages are ours
    if exc.status_code >= 500:
        logger.error(
            f"{exc.__class__.__name__}: {exc.message}",
            extra=_log_extra(request, status_code=exc.status_code),
        )

    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """
    Report malformed request bodies as a 400 ValidationError.

    Each entry names the offending field as a dotted path, e.g.
    "body.address", so the admin UI can mark the input.
    """
    errors = [
        {
            "field": ".".join(str(part) for part in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]
    failure = ValidationError(message="Request validation failed", errors=errors)

    return JSONResponse(status_code=failure.status_code, content=failure.to_dict())


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Unknown routes and wrong methods, raised before any route runs."""
    return _error_response(
        exc.status_code,
        "HTTPException",
        str(exc.detail),
        headers=getattr(exc, "headers", None),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Last resort for bugs.

    The traceback is logged; the client only learns that something failed.
    """
    logger.exception("Unhandled exception", extra=_log_extra(request))

    return _error_response(500, "InternalServerError", "An unexpected error occurred")


def install_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
