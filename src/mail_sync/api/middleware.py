"""Request logging and error handling for the API."""

from __future__ import annotations

import time
import uuid
from collections.abc import Awaitable, Callable

import structlog
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse, Response

from mail_sync.core.errors import AccountMissingError, SyncError

logger = structlog.get_logger(__name__)

CORRELATION_ID_HEADER = "X-Correlation-ID"


async def _account_missing_handler(request: Request, exc: Exception) -> JSONResponse:
    message = exc.message if isinstance(exc, SyncError) else str(exc)
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"success": False, "error": message},
    )


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    await logger.aexception(
        "unhandled_error",
        path=request.url.path,
        method=request.method,
        error=str(exc),
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"success": False, "error": "Internal server error"},
    )


def setup_error_handlers(app: FastAPI) -> None:
    """Register exception handlers.

    Missing accounts become 404, anything unexpected a JSON 500.

    Args:
        app: FastAPI application.
    """
    app.add_exception_handler(AccountMissingError, _account_missing_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)


def setup_logging(app: FastAPI) -> None:
    """Add request logging with a correlation ID bound to the log context.

    Args:
        app: FastAPI application.
    """

    @app.middleware("http")
    async def log_requests(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        correlation_id = request.headers.get(CORRELATION_ID_HEADER) or str(uuid.uuid4())
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(correlation_id=correlation_id)

        started = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - started) * 1000

        response.headers[CORRELATION_ID_HEADER] = correlation_id
        await logger.ainfo(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round(duration_ms, 1),
        )
        return response
