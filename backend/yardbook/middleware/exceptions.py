"""Workflow error taxonomy and the exception handlers that render it.

Every engine failure is a YardbookException carrying the HTTP status and
error code the API boundary should surface.  All error responses share
one envelope:

    {"error": {"code": "INVALID_TRANSITION", "message": "...", "details": {...}}}

`details` is omitted when empty.  Retryable errors (Conflict,
PersistenceUnavailable) also carry a `Retry-After` header.
"""

import logging

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)

RETRY_AFTER_SECONDS = 1


class YardbookException(Exception):
    """Base exception for booking workflow errors."""

    retryable = False

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: str = "INTERNAL_ERROR",
        details: dict | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details
        super().__init__(self.message)


class NotFound(YardbookException):
    """The booking id does not resolve (or the booking was deleted)."""

    def __init__(self, resource: str, identifier: str):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="RESOURCE_NOT_FOUND",
        )


class InvalidTransition(YardbookException):
    """The event is not legal from the booking's current state."""

    def __init__(self, current_state: str, event: str, message: str | None = None):
        self.current_state = current_state
        self.event = event
        super().__init__(
            message=message or f"Cannot {event} a booking in state '{current_state}'",
            status_code=status.HTTP_409_CONFLICT,
            error_code="INVALID_TRANSITION",
            details={"current_state": current_state, "event": event},
        )


class ValidationFailed(YardbookException):
    """A transition-specific precondition on the submitted data is unmet."""

    def __init__(self, fields: dict[str, str]):
        self.fields = fields
        super().__init__(
            message="; ".join(f"{name}: {msg}" for name, msg in fields.items()),
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code="VALIDATION_FAILED",
            details={"fields": fields},
        )


class Forbidden(YardbookException):
    """The actor is not authorized for the requested action."""

    def __init__(self, message: str = "You are not allowed to perform this action"):
        super().__init__(
            message=message,
            status_code=status.HTTP_403_FORBIDDEN,
            error_code="FORBIDDEN",
        )


class Conflict(YardbookException):
    """Concurrent modification detected by the repository's version check."""

    retryable = True

    def __init__(self, booking_id: str):
        self.booking_id = booking_id
        super().__init__(
            message=f"Booking {booking_id} was modified concurrently; reload and retry",
            status_code=status.HTTP_409_CONFLICT,
            error_code="CONFLICT",
        )


class PersistenceUnavailable(YardbookException):
    """The booking store is unreachable.  Nothing was written."""

    retryable = True

    def __init__(self, message: str = "Booking store temporarily unavailable. Please try again."):
        super().__init__(
            message=message,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            error_code="PERSISTENCE_UNAVAILABLE",
        )


# ── Rendering ────────────────────────────────────────────────

def error_body(code: str, message: str, details: dict | None = None) -> dict:
    error = {"code": code, "message": message}
    if details:
        error["details"] = details
    return {"error": error}


def _request_context(request: Request) -> dict:
    return {"path": request.url.path, "method": request.method}


# ── Handlers ─────────────────────────────────────────────────

async def yardbook_exception_handler(request: Request, exc: YardbookException) -> JSONResponse:
    level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        level,
        f"{request.method} {request.url.path} → {exc.status_code} {exc.error_code}: {exc.message}",
        extra={"error_code": exc.error_code, **_request_context(request)},
    )
    headers = {"Retry-After": str(RETRY_AFTER_SECONDS)} if exc.retryable else None
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.error_code, exc.message, exc.details),
        headers=headers,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Starlette/FastAPI HTTP errors (401 from the auth scheme, 404 routes)."""
    if exc.status_code >= 500:
        logger.error(f"HTTP {exc.status_code}: {exc.detail}", extra=_request_context(request))
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(f"HTTP_{exc.status_code}", str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError | ValidationError,
) -> JSONResponse:
    """Malformed request bodies / params (schema-level, before the engine runs)."""
    errors = [
        {
            "field": " -> ".join(str(part) for part in err["loc"]),
            "message": err["msg"],
            "type": err["type"],
        }
        for err in exc.errors()
    ]
    logger.warning(
        f"Request validation failed on {request.url.path}: {len(errors)} error(s)",
        extra=_request_context(request),
    )
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=error_body("VALIDATION_ERROR", "Validation error", {"errors": errors}),
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last resort: log with traceback, never leak internals."""
    logger.error(
        f"Unhandled exception on {request.method} {request.url.path}: {exc}",
        extra=_request_context(request),
        exc_info=exc,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body("INTERNAL_SERVER_ERROR", "An unexpected error occurred. Please try again later."),
    )


def register_exception_handlers(app):
    """Register all exception handlers with the FastAPI app."""
    app.add_exception_handler(YardbookException, yardbook_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
