"""Global exception handlers for consistent error responses.

This module provides FastAPI exception handlers that intercept all errors
(domain and unexpected) and return consistent JSON responses with proper
HTTP status codes and traceability.

Design:
- AppError subclasses → appropriate HTTP status (400, 500, 503)
- Unexpected Exception → generic 500 (safety net)
- All responses include request_id for distributed tracing

The quota gate renders its own decisions with the same envelope via
:func:`build_error_content`.
"""

import logging
from typing import Any, Mapping

from fastapi import Request
from fastapi.responses import JSONResponse

from app.core.errors import (
    AppError,
    ConfigurationAppError,
    QuotaStoreUnavailableError,
    ValidationAppError,
)
from app.core.logging import get_request_id

logger = logging.getLogger(__name__)


def build_error_content(
    *,
    code: str,
    message: str,
    details: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """Build the ``{"error": {...}}`` envelope shared by every error response.

    Args:
        code: Machine-readable error code.
        message: Human-readable message.
        details: Optional structured context; omitted when empty.

    Returns:
        JSON-serialisable response body.
    """
    error_content: dict[str, Any] = {
        "code": code,
        "message": message,
        "request_id": get_request_id(),
    }

    # Include details only if present (optional structured context)
    if details:
        error_content["details"] = dict(details)

    return {"error": error_content}


def status_code_for(exc: AppError) -> int:
    """Map a domain error to its HTTP status code."""

    if isinstance(exc, ValidationAppError):
        return 400
    if isinstance(exc, QuotaStoreUnavailableError):
        return 503
    if isinstance(exc, ConfigurationAppError):
        return 500
    return 400


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle domain application errors with consistent JSON format.

    Routes domain errors to appropriate HTTP status codes:
    - ValidationAppError (incl. FieldNotPresentedError) → 400 Bad Request
    - QuotaStoreUnavailableError → 503 Service Unavailable
    - ConfigurationAppError → 500 Internal Server Error

    Args:
        request: FastAPI request object.
        exc: AppError instance (or subclass).

    Returns:
        JSONResponse with appropriate status code and error details.
    """
    status_code = status_code_for(exc)

    logger.warning(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "status_code": status_code,
            "has_details": bool(exc.details),
            "request_id": get_request_id(),
        }
    )

    return JSONResponse(
        status_code=status_code,
        content=build_error_content(code=exc.code, message=exc.message, details=exc.details),
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors (safety net).

    Logs detailed information for debugging while returning generic message.
    Prevents information leakage (no stack traces to client).

    Args:
        request: FastAPI request object.
        exc: Exception instance (unexpected).

    Returns:
        JSONResponse with generic error (no implementation details leaked).
    """
    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
            "request_id": get_request_id(),
        }
    )

    return JSONResponse(
        status_code=500,
        content=build_error_content(
            code="internal_server_error",
            message="An unexpected error occurred. Please try again later.",
        ),
    )


def setup_exception_handlers(app) -> None:
    """Register all exception handlers with FastAPI app.

    Order matters: specific handlers registered before general fallback.

    Args:
        app: FastAPI application instance.
    """
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
