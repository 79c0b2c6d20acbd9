"""Update types: transactions, check results and on-disk records."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel

__all__ = [
    "TransactionStatus",
    "TERMINAL_STATUSES",
    "UpdateTransaction",
    "CheckKind",
    "CheckResult",
    "LockInfo",
    "BackupRecord",
    "ApplyJournal",
]


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class TransactionStatus(str, Enum):
    """Lifecycle state of an update transaction."""

    PENDING = "pending"
    STAGED = "staged"
    VERIFIED = "verified"
    APPLIED = "applied"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset(
    {
        TransactionStatus.APPLIED,
        TransactionStatus.ROLLED_BACK,
        TransactionStatus.FAILED,
        TransactionStatus.CANCELLED,
    }
)


@dataclass
class UpdateTransaction:
    """One attempt to move the installation from one version to another."""

    transaction_id: str
    current_version: str | None
    candidate_version: str
    staging_path: Path
    backup_path: Path | None = None
    status: TransactionStatus = TransactionStatus.PENDING
    created_at: str = field(default_factory=_utc_now_iso)
    error: str | None = None
    not_reloaded: list[str] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def staged_tree(self) -> Path:
        """Directory the candidate tree is fetched into."""
        return self.staging_path / "tree"

    def to_dict(self) -> dict[str, Any]:
        return {
            "transaction_id": self.transaction_id,
            "current_version": self.current_version,
            "candidate_version": self.candidate_version,
            "staging_path": str(self.staging_path),
            "backup_path": str(self.backup_path) if self.backup_path else None,
            "status": self.status.value,
            "created_at": self.created_at,
            "error": self.error,
            "not_reloaded": list(self.not_reloaded),
        }


class CheckKind(str, Enum):
    UP_TO_DATE = "up_to_date"
    UPDATE_AVAILABLE = "update_available"
    CHECK_FAILED = "check_failed"


@dataclass(frozen=True)
class CheckResult:
    """Outcome of comparing the live version with the source's latest."""

    kind: CheckKind
    current_version: str | None = None
    latest_version: str | None = None
    error: str | None = None
    not_reloaded: list[str] = field(default_factory=list)

    @property
    def update_available(self) -> bool:
        return self.kind is CheckKind.UPDATE_AVAILABLE


class LockInfo(BaseModel):
    """Contents of ``update.lock``: who holds the installation."""

    transaction_id: str
    pid: int
    hostname: str
    created_at: str


class BackupRecord(BaseModel):
    """Contents of ``backups/<id>/backup.json``."""

    id: str
    version: str | None = None
    transaction_id: str | None = None
    created_at: str


class ApplyJournal(BaseModel):
    """Intent record written before the live tree is touched.

    A journal that survives a crash tells ``recover()`` which renames may
    have happened.
    """

    transaction_id: str
    live_path: str
    backup_tree: str
    staged_tree: str
    current_version: str | None = None
    candidate_version: str
    started_at: str
