"""Middleware components for the Tiebreak API."""

from middleware.request_context import RequestContextMiddleware

__all__ = ["RequestContextMiddleware"]
