"""MiddlewareManager -- onion model execution for capability call middleware."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from shipwright.middleware.base import Middleware

if TYPE_CHECKING:
    from shipwright.context import Context

__all__ = ["MiddlewareManager"]

_logger = logging.getLogger(__name__)


class MiddlewareManager:
    """Orchestrates the middleware pipeline using onion model execution.

    ``before`` runs in registration order, ``after`` and ``on_error`` in
    reverse order over the middlewares whose ``before`` ran.
    """

    def __init__(self) -> None:
        """Initialize an empty middleware manager."""
        self._middlewares: list[Middleware] = []

    def add(self, middleware: Middleware) -> None:
        """Append a middleware to the end of the execution list."""
        self._middlewares.append(middleware)

    def remove(self, middleware: Middleware) -> bool:
        """Remove a middleware by identity (is). Returns True if found and removed."""
        for i, entry in enumerate(self._middlewares):
            if entry is middleware:
                self._middlewares.pop(i)
                return True
        return False

    def snapshot(self) -> list[Middleware]:
        """Return a copy of the current middleware list."""
        return list(self._middlewares)

    def execute_before(self, capability: str, module_name: str, context: Context) -> list[Middleware]:
        """Execute before() on all middlewares in registration order.

        Returns the middlewares that were executed. Exceptions propagate.
        """
        executed: list[Middleware] = []
        for mw in self.snapshot():
            executed.append(mw)
            mw.before(capability, module_name, context)
        return executed

    def execute_after(
        self,
        capability: str,
        module_name: str,
        result: Any,
        context: Context,
        executed: list[Middleware],
    ) -> Any:
        """Execute after() in REVERSE order; a non-None return replaces the result."""
        current = result
        for mw in reversed(executed):
            replaced = mw.after(capability, module_name, current, context)
            if replaced is not None:
                current = replaced
        return current

    def execute_on_error(
        self,
        capability: str,
        module_name: str,
        error: Exception,
        context: Context,
        executed: list[Middleware],
    ) -> None:
        """Execute on_error() in reverse order. Handler failures are logged and skipped."""
        for mw in reversed(executed):
            try:
                mw.on_error(capability, module_name, error, context)
            except Exception as e:
                _logger.error("on_error() of %s failed for capability '%s': %s", type(mw).__name__, capability, e)
