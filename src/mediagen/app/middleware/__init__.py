"""HTTP middleware."""

from mediagen.app.middleware.logging import LoggingMiddleware

__all__ = ["LoggingMiddleware"]
