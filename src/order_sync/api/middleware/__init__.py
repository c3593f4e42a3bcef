"""API middleware package."""

from src.order_sync.api.middleware.logging import LoggingMiddleware

__all__ = ["LoggingMiddleware"]
