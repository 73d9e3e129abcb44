"""
Request logging middleware. Logs method, path, status, duration and request id only.
Never logs headers, body, or query params (contract lists and API keys live there).
"""
import logging
import time
import uuid
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log each request and echo a request id back on the response."""

    async def dispatch(self, request: Request, call_next) -> Response:
        method = request.method
        # Log path only; do not log query string
        path = request.scope.get("path", "")
        # Accept a caller-supplied id so traces line up across services
        request_id = (request.headers.get(REQUEST_ID_HEADER) or "").strip()[:64] or uuid.uuid4().hex
        request.state.request_id = request_id

        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000
        status = response.status_code
        response.headers[REQUEST_ID_HEADER] = request_id

        if status >= 500:
            level = logging.ERROR
        elif status >= 400:
            level = logging.WARNING
        else:
            level = logging.INFO
        logger.log(
            level,
            "request_finished method=%s path=%s status=%s duration_ms=%.1f",
            method, path, status, duration_ms,
            extra={"request_id": request_id},
        )
        return response
