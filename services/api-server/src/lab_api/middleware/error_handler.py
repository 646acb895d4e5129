"""Exception handlers that normalize errors to ``{"error", "message"}`` JSON."""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from lab_shared.errors import (
    Forbidden,
    InvalidDependency,
    InvalidStatusTransition,
    LabError,
    LaunchFailed,
    NotFound,
    SchemaMismatch,
    Unauthorized,
)

logger = logging.getLogger(__name__)

# Most specific class first; InvalidToken is covered by Unauthorized.
_STATUS_BY_ERROR: tuple[tuple[type[LabError], int], ...] = (
    (InvalidDependency, 400),
    (Unauthorized, 401),
    (Forbidden, 403),
    (NotFound, 404),
    (InvalidStatusTransition, 409),
    (SchemaMismatch, 500),
    (LaunchFailed, 502),
)


def status_for(exc: LabError) -> int:
    for error_class, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_class):
            return status_code
    return 500


async def lab_error_handler(request: Request, exc: LabError) -> JSONResponse:
    """Map a domain error to its HTTP status.

    Server-side failures are logged; client errors are not.
    """
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url, exc.message)

    content: dict = {"error": exc.code, "message": exc.message}
    if isinstance(exc, InvalidDependency):
        content["invalid"] = exc.invalid
    headers = {"WWW-Authenticate": "Bearer"} if status_code == 401 else None
    return JSONResponse(status_code=status_code, content=content, headers=headers)


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch unhandled exceptions and return a structured JSON error response.

    We log the full traceback server-side but never expose internal details
    to the caller. The 500 response body is intentionally generic.
    """
    logger.exception("Unhandled exception for %s %s", request.method, request.url)
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_server_error",
            "message": "An unexpected error occurred. Please try again later.",
        },
    )
