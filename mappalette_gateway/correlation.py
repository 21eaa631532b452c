"""
Middleware and utilities for request tagging and correlation.
"""
import logging
import uuid
from contextvars import ContextVar
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

REQUEST_ID_HEADER = "X-Request-ID"

# Context variable for the request id of the request in flight
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

logger = logging.getLogger(__name__)


def assign_request_id(request: Request, request_id: str) -> str:
    """
    Attach a request id to the request state.

    The id is write-once: tagging a request that already carries one
    raises RuntimeError.
    """
    if getattr(request.state, "request_id", None) is not None:
        raise RuntimeError("Request id already assigned for this request")
    request.state.request_id = request_id
    request_id_var.set(request_id)
    return request_id


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Middleware that tags every request with a correlation id.

    A caller-supplied X-Request-ID header is adopted verbatim, otherwise a
    fresh UUID4 is generated. The id is mirrored on the response so clients
    can quote it when reporting problems.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        assign_request_id(request, request_id)

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


def get_request_id() -> str:
    """Get current request id."""
    return request_id_var.get()


class RequestIDFilter(logging.Filter):
    """Logging filter to include the request id in log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id() or "-"
        return True


def configure_logging(level: str = "INFO"):
    """Configure root logging so every line carries the request id."""
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO))
    root_logger = logging.getLogger()

    request_id_filter = RequestIDFilter()
    formatter = logging.Formatter(
        "[%(request_id)s] %(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    for handler in root_logger.handlers:
        if not any(isinstance(f, RequestIDFilter) for f in handler.filters):
            handler.addFilter(request_id_filter)
        handler.setFormatter(formatter)
