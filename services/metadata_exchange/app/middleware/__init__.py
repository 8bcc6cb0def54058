"""Middleware for the Metadata Exchange service."""

from services.metadata_exchange.app.middleware.logging import RequestLoggingMiddleware

__all__ = ["RequestLoggingMiddleware"]
