"""
Middleware components for request processing.
"""

from bff.middleware.request_context import RequestContextMiddleware

__all__ = ["RequestContextMiddleware"]
