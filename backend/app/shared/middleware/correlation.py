"""
Request Middleware

Provides middleware for:
1. Correlation ID - Assigns a unique ID to each request for log tracing
"""
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from app.shared.core.logging import set_correlation_id, set_log_tenant


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """
    Assigns a correlation ID to each request.

    - Reuses an incoming X-Request-ID header when the caller sends one
    - Echoes the ID back in the X-Request-ID response header
    - Resets the tenant log tag so it never leaks between requests
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        incoming_id = request.headers.get("X-Request-ID")
        correlation_id = set_correlation_id(incoming_id)
        set_log_tenant(None)

        response = await call_next(request)

        response.headers["X-Request-ID"] = correlation_id
        return response
