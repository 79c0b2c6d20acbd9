"""LoggingMiddleware for structured capability call logging."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

from shipwright.middleware.base import Middleware

if TYPE_CHECKING:
    from shipwright.context import Context

__all__ = ["LoggingMiddleware"]


class LoggingMiddleware(Middleware):
    """Logs capability call start, completion (with duration) and errors.

    Per-call start times are kept in ``context.data`` keyed by capability so
    nested calls do not overwrite each other.
    """

    def __init__(
        self,
        logger: logging.Logger | None = None,
        log_results: bool = False,
        log_errors: bool = True,
    ) -> None:
        self._logger = logger or logging.getLogger("shipwright.middleware.logging")
        self._log_results = log_results
        self._log_errors = log_errors

    def _starts(self, context: Context) -> list[float]:
        return context.data.setdefault("_logging_mw_starts", [])

    def before(self, capability: str, module_name: str, context: Context) -> None:
        """Record start time and log the call."""
        self._starts(context).append(time.time())
        self._logger.info(
            f"[{context.trace_id}] CALL {capability} ({module_name})",
            extra={
                "trace_id": context.trace_id,
                "capability": capability,
                "module": module_name,
            },
        )
        return None

    def after(self, capability: str, module_name: str, result: Any, context: Context) -> None:
        """Log completion with duration."""
        starts = self._starts(context)
        start_time = starts.pop() if starts else time.time()
        duration_ms = (time.time() - start_time) * 1000

        extra: dict[str, Any] = {
            "trace_id": context.trace_id,
            "capability": capability,
            "module": module_name,
            "duration_ms": duration_ms,
        }
        if self._log_results:
            extra["result"] = result
        self._logger.info(f"[{context.trace_id}] DONE {capability} ({duration_ms:.2f}ms)", extra=extra)
        return None

    def on_error(self, capability: str, module_name: str, error: Exception, context: Context) -> None:
        """Log the error with traceback."""
        starts = self._starts(context)
        if starts:
            starts.pop()
        if self._log_errors:
            self._logger.error(
                f"[{context.trace_id}] ERROR {capability}: {error}",
                extra={
                    "trace_id": context.trace_id,
                    "capability": capability,
                    "module": module_name,
                    "error": str(error),
                },
                exc_info=True,
            )
        return None
