"""
Error taxonomy for the request pipeline and the handlers that render it.
"""
import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base class for errors that map to a definite HTTP response."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        details: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details
        self.headers = headers or {}

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class PayloadValidationError(AppError):
    """Request payload violated its schema. Carries every field error."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "VALIDATION_ERROR"

    def __init__(self, errors: List[Dict[str, str]], source: str = "body"):
        super().__init__("Validation Error", details=errors)
        self.errors = errors
        self.source = source

    def to_dict(self) -> Dict[str, Any]:
        return {"error": "Validation Error", "errors": self.errors}


class ValidationInternalError(AppError):
    """Validation itself blew up. The cause is logged, never returned."""

    def to_dict(self) -> Dict[str, Any]:
        return {"error": "Internal Server Error", "message": "Validation failed"}


class RateLimitExceeded(AppError):
    """Client used up its quota for the current window."""

    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    code = "RATE_LIMIT_EXCEEDED"

    def to_dict(self) -> Dict[str, Any]:
        return {"error": "Too Many Requests", "message": self.message}


class StoreUnavailable(AppError):
    """Counter store is unreachable and the limiter is configured to fail closed."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "RATE_LIMITER_UNAVAILABLE"

    def to_dict(self) -> Dict[str, Any]:
        return {"error": "Service Unavailable", "message": self.message}


def error_response(exc: AppError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers=exc.headers or None,
    )


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render an AppError raised anywhere below the middleware stack."""
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    else:
        logger.warning(f"{exc.code} on {request.method} {request.url.path}")
    return error_response(exc)


def register_exception_handlers(app: FastAPI):
    """Install the pipeline's exception handlers on an application."""
    app.add_exception_handler(AppError, app_error_handler)
