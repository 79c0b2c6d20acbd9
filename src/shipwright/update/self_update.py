"""Self-update: the update engine applied to the manager's own installation."""

from __future__ import annotations

import logging
import os
import subprocess
import time
from pathlib import Path
from typing import TYPE_CHECKING, Any

from shipwright.errors import ConfigError
from shipwright.update.engine import UpdateEngine

if TYPE_CHECKING:
    from shipwright.config import Config
    from shipwright.update.types import UpdateTransaction

logger = logging.getLogger(__name__)

__all__ = ["SelfUpdateEngine", "probe_entry_point"]


def probe_entry_point(path: Path, args: list[str] | None = None, timeout: float | None = None) -> list[str]:
    """Check that ``path`` is an executable file and, with ``args``, that it runs.

    Returns a list of problems, empty when the probe passes.

    Raises:
        TimeoutError: If running the entry point exceeds ``timeout``.
    """
    if not path.is_file():
        return [f"entry point missing: {path}"]
    if not os.access(path, os.X_OK):
        return [f"entry point not executable: {path}"]
    if not args:
        return []

    try:
        result = subprocess.run(
            [str(path), *args],
            capture_output=True,
            text=True,
            timeout=timeout,
            cwd=str(path.parent),
        )
    except subprocess.TimeoutExpired as e:
        raise TimeoutError(f"entry point probe exceeded {timeout}s") from e
    except OSError as e:
        return [f"entry point failed to start: {e}"]
    if result.returncode != 0:
        detail = result.stderr.strip() or result.stdout.strip()
        return [f"entry point exited with status {result.returncode}" + (f": {detail}" if detail else "")]
    return []


class SelfUpdateEngine(UpdateEngine):
    """Update engine whose candidate must carry a working entry point.

    ``verify`` probes the staged ``install.entry_point``. After the swap the
    live entry point is probed again and a failure reverses the swap.
    """

    def __init__(self, config: Config, source: Any = None, **kwargs: Any) -> None:
        entry_point = config.get("install.entry_point")
        if not entry_point:
            raise ConfigError("install.entry_point is required for self-update")
        super().__init__(config, source, **kwargs)
        self._entry_point = str(entry_point)
        self._probe_args: list[str] | None = config.get("update.probe_args")

    def _verify_checks(self, txn: UpdateTransaction, deadline: float | None) -> list[str]:
        problems = super()._verify_checks(txn, deadline)
        remaining = max(deadline - time.monotonic(), 0.0) if deadline is not None else None
        problems.extend(probe_entry_point(txn.staged_tree / self._entry_point, self._probe_args, remaining))
        return problems

    def _after_swap(self, txn: UpdateTransaction) -> list[str]:
        live_entry = self.layout.live_dir / self._entry_point
        try:
            problems = probe_entry_point(live_entry, self._probe_args, self._config.get("update.verify_timeout"))
        except TimeoutError as e:
            problems = [str(e)]
        if problems:
            logger.error("Post-swap probe of %s failed: %s", live_entry, "; ".join(problems))
        return problems
