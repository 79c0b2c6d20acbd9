"""Middleware for capability calls made through the dispatcher."""

from shipwright.middleware.base import Middleware
from shipwright.middleware.logging import LoggingMiddleware
from shipwright.middleware.manager import MiddlewareManager

__all__ = [
    "Middleware",
    "MiddlewareManager",
    "LoggingMiddleware",
]
