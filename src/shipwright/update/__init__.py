"""Transactional updates: engine, rollback, backups and the single-flight lock."""

from shipwright.update.backups import BackupStore
from shipwright.update.engine import UpdateEngine, parse_checksum_manifest
from shipwright.update.layout import InstallationLayout
from shipwright.update.lock import SingleFlightLock
from shipwright.update.rollback import RollbackController
from shipwright.update.self_update import SelfUpdateEngine, probe_entry_point
from shipwright.update.types import (
    ApplyJournal,
    BackupRecord,
    CheckKind,
    CheckResult,
    LockInfo,
    TransactionStatus,
    UpdateTransaction,
)

__all__ = [
    "ApplyJournal",
    "BackupRecord",
    "BackupStore",
    "CheckKind",
    "CheckResult",
    "InstallationLayout",
    "LockInfo",
    "RollbackController",
    "SelfUpdateEngine",
    "SingleFlightLock",
    "TransactionStatus",
    "UpdateEngine",
    "UpdateTransaction",
    "parse_checksum_manifest",
    "probe_entry_point",
]
