from __future__ import annotations

import logging
import time

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from .config import get_settings
from .errors import TrainerDeskError


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging() -> None:
    settings = get_settings()
    logging.basicConfig(level=settings.log_level.upper(), format=LOG_FORMAT)
    logging.getLogger().setLevel(settings.log_level.upper())


class RequestTimingLoggingMiddleware(BaseHTTPMiddleware):
    """Logs one line per request and adds an 'X-Process-Time-Ms' header."""

    def __init__(self, app: ASGIApp) -> None:
        super().__init__(app)
        self.logger = logging.getLogger("request")

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint):
        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = int((time.perf_counter() - start) * 1000)
        response.headers["X-Process-Time-Ms"] = str(duration_ms)

        self.logger.info(
            "method=%s path=%s status=%s duration_ms=%s ip=%s",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            request.client.host if request.client else "?",
        )
        return response


def _error_payload(status: int, message: str, path: str) -> dict:
    return {"ok": False, "error": {"status": status, "message": message, "path": path}}


def add_exception_handlers(app: FastAPI) -> None:
    """Register consistent error payload shapes for domain, HTTP and generic exceptions."""

    @app.exception_handler(TrainerDeskError)
    async def domain_exception_handler(request: Request, exc: TrainerDeskError):
        logging.getLogger("error").info(
            "%s on %s: %s", type(exc).__name__, request.url.path, exc.message
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_payload(exc.status_code, exc.message, request.url.path),
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        message = exc.detail if isinstance(exc.detail, str) else ""
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_payload(exc.status_code, message, request.url.path),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        # Do not leak internals
        logging.getLogger("error").exception("Unhandled exception: %s", exc)
        return JSONResponse(status_code=500, content=_error_payload(500, "Internal server error", request.url.path))
