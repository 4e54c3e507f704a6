"""
RequestContext Middleware - Adds request tracking to all requests.

This middleware adds the following to every request:
- request_id: correlation ID (client-supplied X-Correlation-Id or a new UUID)
- ip_address: Client IP address
- user_agent: Client user agent string

These values are stored in request.state and are read by audit logging
and error reporting.
"""

import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from bff.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Add request context to all incoming requests.

    Also adds X-Correlation-Id header to responses for client-side tracing.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("x-correlation-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        request.state.ip_address = self._extract_client_ip(request)
        request.state.user_agent = request.headers.get("user-agent")

        logger.debug(
            "Request started",
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            ip_address=request.state.ip_address,
        )

        response = await call_next(request)

        response.headers["X-Correlation-Id"] = request_id

        return response

    def _extract_client_ip(self, request: Request) -> str | None:
        """
        Client IP address. X-Forwarded-For is only trusted when
        TRUST_X_FORWARDED_FOR is enabled (deployments behind a load balancer).
        """
        if request.app.state.settings.TRUST_X_FORWARDED_FOR:
            forwarded_for = request.headers.get("x-forwarded-for")
            if forwarded_for:
                # "client, proxy1, proxy2" - first IP is the original client
                return forwarded_for.split(",")[0].strip()

        return request.client.host if request.client else None
