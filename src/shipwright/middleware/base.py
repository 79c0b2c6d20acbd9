"""Middleware base class for capability calls."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from shipwright.context import Context


class Middleware:
    """Base middleware class with default no-op implementations.

    Subclass and override the methods you need. Middlewares observe every
    capability call made through the AutoLoadDispatcher.
    """

    def before(self, capability: str, module_name: str, context: Context) -> None:
        """Called after auto-load and before the handler runs."""
        return None

    def after(self, capability: str, module_name: str, result: Any, context: Context) -> Any:
        """Called after the handler returns. Return a replacement result or None."""
        return None

    def on_error(self, capability: str, module_name: str, error: Exception, context: Context) -> None:
        """Called when the handler raises. The error is re-raised afterwards."""
        return None
