"""Global exception handlers for consistent error responses.

Design:
- AppError subclasses → HTTP status by type (400, 403, 503, 500)
- Request body validation → 400 with field errors
- RateLimitExceededError → the enforcement's own status, body and headers
- Unexpected Exception → generic 500 (safety net)
- All error bodies include request_id, except the 429 body which follows the
  rate limit response contract
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from admission.core.errors import (
    AppError,
    AuthenticationAppError,
    BackendUnavailableError,
    RateLimitExceededError,
    ValidationAppError,
)
from admission.core.logging import get_request_id

logger = logging.getLogger(__name__)


def status_for(exc: AppError) -> int:
    if isinstance(exc, ValidationAppError):
        return 400
    if isinstance(exc, AuthenticationAppError):
        return 403
    if isinstance(exc, BackendUnavailableError):
        return 503
    return 500


def _error_body(code: str, message: str, details: Any = None) -> dict[str, Any]:
    content: dict[str, Any] = {
        "code": code,
        "message": message,
        "request_id": get_request_id(),
    }
    if details:
        content["details"] = details
    return {"error": content}


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle domain application errors with a consistent JSON format.

    Args:
        request: FastAPI request object.
        exc: AppError instance (or subclass).

    Returns:
        JSONResponse with ``error.code``, ``error.message``,
        ``error.request_id`` and optional ``error.details``.
    """
    status_code = status_for(exc)

    logger.warning(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "error_kind": exc.kind.value if exc.kind else None,
            "error_message": exc.message,
            "status_code": status_code,
            "has_details": bool(exc.details),
            "request_path": request.url.path,
        },
    )

    return JSONResponse(
        status_code=status_code,
        content=_error_body(exc.code, exc.message, exc.details),
    )


async def request_validation_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    errors = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ())),
            "message": err.get("msg"),
            "type": err.get("type"),
        }
        for err in exc.errors()
    ]
    logger.info(
        "request_validation_failed",
        extra={"request_path": request.url.path, "error_count": len(errors)},
    )
    return JSONResponse(
        status_code=400,
        content=_error_body("validation_error", "Request validation failed", {"errors": errors}),
    )


async def rate_limit_exceeded_handler(
    request: Request,
    exc: RateLimitExceededError,
) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.body,
        headers=exc.headers or None,
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors (no details leaked to clients)."""
    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
        },
    )

    return JSONResponse(
        status_code=500,
        content=_error_body(
            "internal_server_error",
            "An unexpected error occurred. Please try again later.",
        ),
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI app."""
    app.exception_handler(RateLimitExceededError)(rate_limit_exceeded_handler)
    app.exception_handler(RequestValidationError)(request_validation_handler)
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
