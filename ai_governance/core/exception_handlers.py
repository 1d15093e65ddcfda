"""Global exception handlers for consistent error responses.

This module provides FastAPI exception handlers that intercept domain and
unexpected errors and return consistent JSON bodies with proper HTTP status
codes and traceability.

Design:
- AppError subclasses → status by type (400, 403, 429, 503)
- Rate limit rejections carry Retry-After and X-RateLimit-* headers
- Unexpected Exception → generic 500 (safety net)
- All responses include request_id for distributed tracing
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ai_governance.core.errors import (
    AppError,
    AuthenticationAppError,
    RateLimitExceededError,
    StorageAppError,
    ValidationAppError,
)
from ai_governance.core.logging import get_request_id
from ai_governance.core.rate_limit import rate_limit_headers

logger = logging.getLogger(__name__)


def status_code_for(exc: AppError) -> int:
    """Map a domain error onto an HTTP status code.

    - ValidationAppError → 400 Bad Request (client fault)
    - AuthenticationAppError → 403 Forbidden
    - RateLimitExceededError → 429, or 503 when a global cost ceiling refused it
    - StorageAppError → 503 Service Unavailable
    - anything else → 500
    """
    if isinstance(exc, ValidationAppError):
        return 400
    if isinstance(exc, AuthenticationAppError):
        return 403
    if isinstance(exc, RateLimitExceededError):
        return 503 if exc.is_emergency_brake else 429
    if isinstance(exc, StorageAppError):
        return 503
    return 500


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle domain application errors with consistent JSON format.

    All responses include:
    - error.code: Machine-readable error code
    - error.message: Human-readable message
    - error.request_id: For distributed tracing
    - error.details: Optional structured context

    Args:
        request: FastAPI request object.
        exc: AppError instance (or subclass).

    Returns:
        JSONResponse with appropriate status code, error details and headers.
    """
    status_code = status_code_for(exc)

    logger.warning(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "status_code": status_code,
            "has_details": bool(exc.details),
            "request_path": request.url.path,
        },
    )

    error_content = {
        "code": exc.code,
        "message": exc.message,
        "request_id": get_request_id(),
    }
    if exc.details:
        error_content["details"] = dict(exc.details)

    headers: dict[str, str] | None = None
    if isinstance(exc, RateLimitExceededError) and exc.result is not None:
        headers = rate_limit_headers(exc.result) or None

    return JSONResponse(
        status_code=status_code,
        content={"error": error_content},
        headers=headers,
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors (safety net).

    Logs the failure and returns a generic message without implementation
    details or stack traces.
    """
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
        content={
            "error": {
                "code": "internal_server_error",
                "message": "An unexpected error occurred. Please try again later.",
                "request_id": get_request_id(),
            }
        },
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI app.

    Example:
        >>> from fastapi import FastAPI
        >>> from ai_governance.core.exception_handlers import setup_exception_handlers
        >>> app = FastAPI()
        >>> setup_exception_handlers(app)
    """
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
