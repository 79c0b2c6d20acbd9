"""Single-flight lock: at most one update transaction per installation."""

from __future__ import annotations

import json
import logging
import os
import socket
from datetime import datetime, timezone
from pathlib import Path

import pydantic

from shipwright.errors import LockOwnershipError, UpdateInProgressError
from shipwright.update.types import LockInfo

logger = logging.getLogger(__name__)

__all__ = ["SingleFlightLock"]


class SingleFlightLock:
    """Lock file published with a hard link, so it never exists without its holder.

    The second contender fails fast; there is no waiting and no stale-lock
    reclamation. A lock left behind by a crashed process must be removed by
    an operator (or ``force_release``) after checking its owner.
    """

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def is_held(self) -> bool:
        return self._path.exists()

    def read(self) -> LockInfo | None:
        """Return the current holder, or None if the lock is free or unreadable."""
        try:
            return LockInfo.model_validate_json(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, pydantic.ValidationError) as e:
            logger.warning("Unreadable lock file %s: %s", self._path, e)
            return None

    def acquire(self, transaction_id: str) -> LockInfo:
        """Take the lock for ``transaction_id``.

        Raises:
            UpdateInProgressError: If the lock is already held.
        """
        self._path.parent.mkdir(parents=True, exist_ok=True)
        info = LockInfo(
            transaction_id=transaction_id,
            pid=os.getpid(),
            hostname=socket.gethostname(),
            created_at=datetime.now(timezone.utc).isoformat(),
        )

        # The lock appears with its holder already written: link() fails if it exists
        pending = self._path.with_name(f".{self._path.name}.{transaction_id}")
        fd = os.open(pending, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(json.dumps(info.model_dump(), sort_keys=True))
                handle.flush()
                os.fsync(handle.fileno())
            os.link(pending, self._path)
        except FileExistsError:
            holder = self.read()
            raise UpdateInProgressError(
                lock_path=str(self._path),
                transaction_id=holder.transaction_id if holder else None,
                owner_pid=holder.pid if holder else None,
            ) from None
        finally:
            pending.unlink(missing_ok=True)
        logger.debug("Lock %s acquired by %s", self._path, transaction_id)
        return info

    def release(self, transaction_id: str) -> bool:
        """Release the lock held by ``transaction_id``.

        Returns False if the lock was not held.

        Raises:
            LockOwnershipError: If another transaction holds the lock.
        """
        if not self._path.exists():
            return False
        holder = self.read()
        if holder is None or holder.transaction_id != transaction_id:
            raise LockOwnershipError(
                lock_path=str(self._path),
                transaction_id=transaction_id,
                owner=holder.transaction_id if holder else None,
            )
        self._path.unlink(missing_ok=True)
        logger.debug("Lock %s released by %s", self._path, transaction_id)
        return True

    def force_release(self) -> LockInfo | None:
        """Remove the lock regardless of owner. Returns the previous holder."""
        holder = self.read()
        self._path.unlink(missing_ok=True)
        if holder is not None:
            logger.warning("Lock %s forcibly released (was held by %s, pid %s)", self._path, holder.transaction_id, holder.pid)
        return holder
