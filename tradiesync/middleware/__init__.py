"""
Middleware modules for the sync API.

Provides request processing middleware for:
- Correlation ID tracking so error responses and logs share a trace id
"""

from .correlation import CorrelationIdMiddleware, correlation_id_ctx, request_id_ctx

__all__ = [
    "CorrelationIdMiddleware",
    "correlation_id_ctx",
    "request_id_ctx",
]
