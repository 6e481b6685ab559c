"""
Request Logging Middleware

Gives every HTTP request a correlation id (reusing a well-formed incoming
X-Request-ID, otherwise a fresh UUID), binds it to the logging context for
the duration of the request, logs one start and one completion entry with
timing, and echoes the id back in the X-Request-ID response header.

Only the path is logged. Query strings are dropped because stream endpoints
may be called with device URLs that carry credentials.
"""
import logging
import re
import time
import uuid
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from app.core.logging_config import clear_request_id, get_request_id, set_request_id

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
_INCOMING_ID_PATTERN = re.compile(r'^[A-Za-z0-9._-]{8,64}$')


def _status_level(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Correlation ids and access logging for the API."""

    # Liveness and docs traffic is not logged
    EXCLUDED_PATHS = {'/health', '/docs', '/redoc', '/openapi.json'}

    @staticmethod
    def _request_id(request: Request) -> str:
        incoming = request.headers.get(REQUEST_ID_HEADER, "")
        if _INCOMING_ID_PATTERN.match(incoming):
            return incoming
        return str(uuid.uuid4())

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = self._request_id(request)
        token = set_request_id(request_id)
        request.state.request_id = request_id

        context = {
            "method": request.method,
            "path": request.url.path,
            "client_ip": request.client.host if request.client else "unknown",
        }
        should_log = context["path"] not in self.EXCLUDED_PATHS
        start = time.perf_counter()

        if should_log:
            logger.info(
                f"{context['method']} {context['path']} started",
                extra={"event_type": "request_start", **context},
            )

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                f"{context['method']} {context['path']} raised {type(e).__name__}",
                extra={
                    "event_type": "request_error",
                    "response_time_ms": round((time.perf_counter() - start) * 1000, 2),
                    "error_type": type(e).__name__,
                    **context,
                },
                exc_info=True,
            )
            raise
        finally:
            clear_request_id(token)

        response.headers[REQUEST_ID_HEADER] = request_id
        if should_log:
            logger.log(
                _status_level(response.status_code),
                f"{context['method']} {context['path']} -> {response.status_code}",
                extra={
                    "event_type": "request_complete",
                    "status_code": response.status_code,
                    "response_time_ms": round((time.perf_counter() - start) * 1000, 2),
                    **context,
                },
            )
        return response


def get_current_request_id() -> str:
    """Request id of the current context, or "no-request" outside a request"""
    return get_request_id() or "no-request"
