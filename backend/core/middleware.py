"""FastAPI middleware for request tracking and error mapping.

Adds an X-Request-ID header (generated if not provided) and an
X-Process-Time header to every response, logs one line per request and
maps ``AutomationException`` subclasses onto JSON error responses.
"""

import logging
import time
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.config import get_settings
from core.exceptions import AutomationException

logger = logging.getLogger(__name__)

_QUIET_PATHS = ("/api/health", "/metrics")


class RequestTrackingMiddleware(BaseHTTPMiddleware):
    """Add request ID and timing to every request/response."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID", str(uuid4()))
        request.state.request_id = request_id
        start_time = time.monotonic()

        try:
            response = await call_next(request)
        except Exception as exc:
            duration_ms = (time.monotonic() - start_time) * 1000
            logger.error(
                "Unhandled exception on %s %s after %.0fms: %s",
                request.method,
                request.url.path,
                duration_ms,
                exc,
                extra={"request_id": request_id},
                exc_info=True,
            )
            # Production responses never echo exception text
            if get_settings().is_production:
                detail = "Internal server error"
            else:
                detail = str(exc) or "Internal server error"
            return JSONResponse(
                status_code=500,
                content={"detail": detail, "request_id": request_id},
                headers={"X-Request-ID": request_id},
            )

        duration_ms = (time.monotonic() - start_time) * 1000
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{duration_ms:.2f}ms"

        if request.url.path not in _QUIET_PATHS:
            level = logging.WARNING if response.status_code >= 400 else logging.INFO
            logger.log(
                level,
                "%s %s -> %d (%.0fms)",
                request.method,
                request.url.path,
                response.status_code,
                duration_ms,
                extra={"request_id": request_id},
            )
        return response


def _error_body(request: Request, exc: AutomationException) -> dict:
    body = {"detail": exc.message, "request_id": getattr(request.state, "request_id", None)}
    report = getattr(exc, "report", None)
    if report is not None:
        body["validation"] = report.to_dict()
    return body


def setup_exception_handlers(app: FastAPI) -> None:
    """Register global exception handlers.

    Every ``AutomationException`` maps onto its own ``status_code``;
    graph validation failures carry the full report.
    """

    @app.exception_handler(AutomationException)
    async def automation_exception_handler(request: Request, exc: AutomationException):
        return JSONResponse(status_code=exc.status_code, content=_error_body(request, exc))

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return JSONResponse(
            status_code=400,
            content={"detail": str(exc), "request_id": getattr(request.state, "request_id", None)},
        )
