"""Request ID and request audit middleware for FastAPI.

This module provides middleware to inject request IDs into requests and to
record every handled request as an ``http`` audit record.
"""

import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from packages.structured_logging import get_logger, get_request_id, set_request_id

from .models import AuditRecordCreate, LogCategory, LogLevel
from .sink import AuditSink

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
WALLET_HEADER = "x-wallet-address"


def level_for_status(status_code: int) -> LogLevel:
    """Map an HTTP status code to an audit level."""
    if status_code >= 500:
        return LogLevel.ERROR
    if status_code >= 400:
        return LogLevel.WARN
    if 200 <= status_code < 300:
        return LogLevel.SUCCESS
    return LogLevel.INFO


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Middleware to inject request ID into requests.

    Checks for X-Request-ID header and injects into context.
    If header is not present, generates a new UUID.
    Adds X-Request-ID header to response.
    """

    async def dispatch(
        self, request: Request, call_next: Callable
    ) -> Response:
        request_id = request.headers.get(
            REQUEST_ID_HEADER.lower(),
            str(uuid.uuid4())
        )

        set_request_id(request_id)

        response = await call_next(request)

        response.headers[REQUEST_ID_HEADER] = request_id

        return response


class RequestAuditMiddleware(BaseHTTPMiddleware):
    """Middleware that emits one ``http`` audit record per request.

    The sink is resolved per request through ``sink_getter`` so that the app
    can build its sink during startup. Requests are not recorded while no sink
    is available.
    """

    def __init__(self, app, sink_getter: Callable[[], AuditSink | None]):
        super().__init__(app)
        self._sink_getter = sink_getter

    async def dispatch(
        self, request: Request, call_next: Callable
    ) -> Response:
        started = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - started) * 1000

        sink = self._sink_getter()
        if sink is None:
            return response

        route = request.scope.get("route")
        endpoint = getattr(route, "path", None) or request.url.path
        path_params = request.scope.get("path_params") or {}
        wallet = request.headers.get(WALLET_HEADER)

        try:
            record = AuditRecordCreate(
                level=level_for_status(response.status_code),
                category=LogCategory.HTTP,
                message=f"{request.method} {request.url.path}",
                method=request.method,
                endpoint=endpoint,
                status_code=response.status_code,
                duration_ms=duration_ms,
                request_id=get_request_id() or None,
                user_address=wallet or path_params.get("employer_address"),
                employer_address=path_params.get("employer_address"),
                employee_address=path_params.get("employee_address"),
                details={
                    "query": dict(request.query_params),
                    "user_agent": request.headers.get("user-agent"),
                    "client": request.client.host if request.client else None,
                },
            )
            sink.emit(record)
        except Exception as e:
            logger.error("request_audit_failed", path=request.url.path, error=str(e))

        return response
