"""
FastAPI exception handlers for custom exceptions.

WHY: Every rejected ticket operation surfaces as an AppException subclass
with its own status code. These handlers turn them into one JSON error
shape, tagged with the request id so a support engineer can find the
matching log lines:

    {"error": ..., "message": ..., "status_code": ..., "details": ...,
     "request_id": ...}
"""

import logging
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from helpdesk.core.exceptions import AppException
from helpdesk.middleware.request_context import get_request_context

logger = logging.getLogger(__name__)


def _error_response(
    status_code: int,
    error: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
) -> JSONResponse:
    ctx = get_request_context()
    return JSONResponse(
        status_code=status_code,
        content={
            "error": error,
            "message": message,
            "status_code": status_code,
            "details": details,
            "request_id": ctx.request_id if ctx else None,
        },
    )


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """
    Handle AppException and its subclasses.

    Server-side failures (storage, database) are logged here; client errors
    were already logged where they were raised, if at all.
    """
    if exc.status_code >= 500:
        logger.error(f"{exc.__class__.__name__} on {request.method} {request.url.path}: {exc.message}")

    body = exc.to_dict()
    return _error_response(exc.status_code, body["error"], body["message"], body["details"])


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """
    Handle request body / query validation errors.

    WHY: Malformed input (unknown status value, blank comment) is a 400
    like any other ValidationError, with one entry per offending field.
    """
    errors = [
        {
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]
    return _error_response(400, "ValidationError", "Request validation failed", {"errors": errors})


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Routing errors (unknown path, wrong method) in the same shape."""
    return _error_response(exc.status_code, "HTTPException", str(exc.detail))


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Catch-all for unexpected exceptions.

    Logs the traceback but never returns internals to the caller.
    """
    logger.exception(f"Unhandled error on {request.method} {request.url.path}", exc_info=exc)
    return _error_response(500, "InternalServerError", "An unexpected error occurred")
