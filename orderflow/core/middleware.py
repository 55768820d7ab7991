"""
HTTP middleware and exception handlers

Stack, outermost first:
    SecurityHeaders -> CorrelationId -> RequestLogging -> routes

Domain errors (AppException) become ``{"error": {...}}`` bodies with their own
status; anything else is logged with its traceback and answered with a bare 500.
"""
import math
import re
import time
from typing import Callable

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from orderflow.core.exceptions import AppException, ErrorCode
from orderflow.core.logging import get_correlation_id, get_logger, redact, set_correlation_id

logger = get_logger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"
_VALID_CORRELATION_ID = re.compile(r"^[A-Za-z0-9_-]{1,64}$")

# Health checks polled by the orchestrator every few seconds
_UNLOGGED_PATHS = frozenset({"/health", "/health/ready"})


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Reuse a well-formed incoming X-Correlation-ID or mint one; echo it back"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        incoming = request.headers.get(CORRELATION_HEADER)
        if incoming and not _VALID_CORRELATION_ID.match(incoming):
            incoming = None
        correlation_id = set_correlation_id(incoming)
        request.state.correlation_id = correlation_id

        response = await call_next(request)
        response.headers[CORRELATION_HEADER] = correlation_id
        return response


def _safe_query_params(request: Request) -> dict[str, str]:
    return redact(dict(request.query_params))


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One record per request, written when the response is ready"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if path in _UNLOGGED_PATHS:
            return await call_next(request)

        started = time.perf_counter()
        fields = {
            "method": request.method,
            "path": path,
            "query_params": _safe_query_params(request),
            "client_host": request.client.host if request.client else None,
        }

        try:
            response = await call_next(request)
        except Exception:
            fields["duration_ms"] = round((time.perf_counter() - started) * 1000, 1)
            logger.error(f"{request.method} {path} raised", extra_data=fields, exc_info=True)
            raise

        fields["status_code"] = response.status_code
        fields["duration_ms"] = round((time.perf_counter() - started) * 1000, 1)
        if response.status_code >= 500:
            log = logger.error
        elif response.status_code >= 400:
            log = logger.warning
        else:
            log = logger.info
        log(f"{request.method} {path} -> {response.status_code}", extra_data=fields)
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Security headers on every response.

    API responses carry balances and payouts, so they are never cached. HSTS
    and CSP upgrade-insecure-requests are left out under DEBUG so plain-HTTP
    local development works.
    """

    def __init__(self, app: FastAPI, *, debug: bool = False) -> None:
        super().__init__(app)
        self._debug = debug

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)
        headers = response.headers
        headers["X-Content-Type-Options"] = "nosniff"
        headers["X-Frame-Options"] = "DENY"
        headers["Referrer-Policy"] = "no-referrer"
        if request.url.path.startswith("/api/"):
            headers["Cache-Control"] = "no-store"
        if not self._debug:
            headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
            headers["Content-Security-Policy"] = "upgrade-insecure-requests"
        return response


def _retry_after(exc: AppException) -> str | None:
    """Retry-After for 503s the client may repeat"""
    if exc.status_code != 503:
        return None
    seconds = exc.details.get("retry_after_seconds")
    if seconds is not None:
        return str(max(1, math.ceil(seconds)))
    if exc.details.get("retry"):
        return "1"
    return None


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        f"{exc.error_code.value}: {exc.message}",
        extra_data={
            "error_code": exc.error_code.value,
            "status_code": exc.status_code,
            "details": exc.details,
            "path": request.url.path,
        },
    )

    headers = {CORRELATION_HEADER: get_correlation_id()}
    retry_after = _retry_after(exc)
    if retry_after:
        headers["Retry-After"] = retry_after
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Store outages and bugs; the message never reaches the client"""
    logger.error(
        f"Unhandled {type(exc).__name__}",
        extra_data={"exception_type": type(exc).__name__, "message": str(exc), "path": request.url.path},
        exc_info=exc,
    )
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": ErrorCode.INTERNAL_ERROR.value,
                "message": "An unexpected error occurred",
                "details": {},
            }
        },
        headers={CORRELATION_HEADER: get_correlation_id()},
    )


def setup_middleware(app: FastAPI, *, debug: bool = False) -> None:
    # add_middleware prepends: the last one added runs first
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(CorrelationIdMiddleware)
    app.add_middleware(SecurityHeadersMiddleware, debug=debug)


def setup_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
