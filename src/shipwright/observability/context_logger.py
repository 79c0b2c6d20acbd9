"""Structured boundary logging: ContextLogger."""

from __future__ import annotations

import json
import sys
from datetime import datetime, timezone
from typing import Any

_LEVELS = {
    "debug": 10,
    "info": 20,
    "warn": 30,
    "error": 40,
}

_REDACTED = "***REDACTED***"


class ContextLogger:
    """Standalone structured logger that stamps transaction and module context.

    Each entry carries ``transaction_id``, ``module`` and ``version`` so an
    update run or load batch can be followed through a JSON log stream.
    """

    def __init__(
        self,
        name: str,
        format: str = "json",
        level: str = "info",
        redact_sensitive: bool = True,
        output: Any = None,
    ) -> None:
        self._name = name
        self._format = format
        self._level_value = _LEVELS.get(level, 20)
        self._redact_sensitive = redact_sensitive
        self._output = output if output is not None else sys.stderr
        self._transaction_id: str | None = None
        self._module: str | None = None
        self._version: str | None = None

    def bind(
        self,
        transaction_id: str | None = None,
        module: str | None = None,
        version: str | None = None,
    ) -> ContextLogger:
        """Return a copy of this logger with the given context fields set."""
        bound = ContextLogger(
            name=self._name,
            format=self._format,
            redact_sensitive=self._redact_sensitive,
            output=self._output,
        )
        bound._level_value = self._level_value
        bound._transaction_id = transaction_id if transaction_id is not None else self._transaction_id
        bound._module = module if module is not None else self._module
        bound._version = version if version is not None else self._version
        return bound

    @classmethod
    def for_transaction(cls, transaction: Any, name: str, **kwargs: Any) -> ContextLogger:
        """Create a logger bound to an UpdateTransaction's id and candidate version."""
        logger = cls(name=name, **kwargs)
        logger._transaction_id = transaction.transaction_id
        logger._version = transaction.candidate_version
        return logger

    def _emit(self, level_name: str, message: str, extra: dict[str, Any] | None) -> None:
        if _LEVELS.get(level_name, 20) < self._level_value:
            return

        redacted_extra = extra
        if extra is not None and self._redact_sensitive:
            redacted_extra = {k: (_REDACTED if k.startswith("_secret_") else v) for k, v in extra.items()}

        now = datetime.now(timezone.utc)
        if self._format == "json":
            entry = {
                "timestamp": now.isoformat(),
                "level": level_name,
                "message": message,
                "transaction_id": self._transaction_id,
                "module": self._module,
                "version": self._version,
                "logger": self._name,
                "extra": redacted_extra,
            }
            self._output.write(json.dumps(entry, default=str) + "\n")
        else:
            ts = now.strftime("%Y-%m-%d %H:%M:%S")
            txn = self._transaction_id or "none"
            mod = self._module or "none"
            extras_str = ""
            if redacted_extra:
                extras_str = " " + " ".join(f"{k}={v}" for k, v in redacted_extra.items())
            self._output.write(f"{ts} [{level_name.upper()}] [txn={txn}] [module={mod}] {message}{extras_str}\n")

    def debug(self, message: str, extra: dict[str, Any] | None = None) -> None:
        self._emit("debug", message, extra)

    def info(self, message: str, extra: dict[str, Any] | None = None) -> None:
        self._emit("info", message, extra)

    def warn(self, message: str, extra: dict[str, Any] | None = None) -> None:
        self._emit("warn", message, extra)

    def error(self, message: str, extra: dict[str, Any] | None = None) -> None:
        self._emit("error", message, extra)


__all__ = ["ContextLogger"]
