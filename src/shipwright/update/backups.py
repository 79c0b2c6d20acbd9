"""Timestamped backups of the live tree and registry state."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path

import pydantic

from shipwright.update.types import BackupRecord
from shipwright.utils.fs import atomic_write_text, remove_tree
from shipwright.versioning import normalize_version

logger = logging.getLogger(__name__)

__all__ = ["BackupStore", "BACKUP_RECORD_FILE", "BACKUP_TREE_DIR", "BACKUP_STATE_FILE"]

BACKUP_RECORD_FILE = "backup.json"
BACKUP_TREE_DIR = "tree"
BACKUP_STATE_FILE = "registry.state"


class BackupStore:
    """Manages ``R/backups/<id>/`` directories.

    Each backup holds ``tree/`` (the displaced live tree), ``registry.state``
    and a ``backup.json`` record. Ids are UTC timestamps, so lexical order is
    chronological order.
    """

    def __init__(self, backups_dir: Path | str) -> None:
        self._dir = Path(backups_dir)

    @property
    def directory(self) -> Path:
        return self._dir

    def path_for(self, backup_id: str) -> Path:
        return self._dir / backup_id

    def tree_for(self, backup_id: str) -> Path:
        return self._dir / backup_id / BACKUP_TREE_DIR

    def state_for(self, backup_id: str) -> Path:
        return self._dir / backup_id / BACKUP_STATE_FILE

    def create(self, version: str | None, transaction_id: str | None) -> BackupRecord:
        """Allocate a new, empty backup directory and write its record.

        The caller moves the live tree into ``tree_for(record.id)``.
        """
        self._dir.mkdir(parents=True, exist_ok=True)
        now = datetime.now(timezone.utc)
        base_id = now.strftime("%Y%m%dT%H%M%S%fZ")
        backup_id = base_id
        suffix = 1
        while self.path_for(backup_id).exists():
            backup_id = f"{base_id}-{suffix}"
            suffix += 1

        self.path_for(backup_id).mkdir()
        record = BackupRecord(
            id=backup_id,
            version=version,
            transaction_id=transaction_id,
            created_at=now.isoformat(),
        )
        try:
            atomic_write_text(
                self.path_for(backup_id) / BACKUP_RECORD_FILE,
                json.dumps(record.model_dump(), indent=2, sort_keys=True) + "\n",
            )
        except OSError:
            remove_tree(self.path_for(backup_id))
            raise
        return record

    def read(self, backup_id: str) -> BackupRecord | None:
        """Read a backup record. Returns None for unknown ids."""
        path = self.path_for(backup_id)
        if not path.is_dir():
            return None
        record_path = path / BACKUP_RECORD_FILE
        try:
            return BackupRecord.model_validate_json(record_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return BackupRecord(id=backup_id, created_at="")
        except pydantic.ValidationError as e:
            logger.warning("Corrupt backup record %s: %s", record_path, e)
            return BackupRecord(id=backup_id, created_at="")

    def list(self) -> list[BackupRecord]:
        """Complete backups (those holding a tree), newest first."""
        if not self._dir.is_dir():
            return []
        records: list[BackupRecord] = []
        for entry in sorted(self._dir.iterdir(), key=lambda p: p.name, reverse=True):
            if not entry.is_dir() or entry.name.startswith("."):
                continue
            if not (entry / BACKUP_TREE_DIR).is_dir():
                continue
            record = self.read(entry.name)
            if record is not None:
                records.append(record)
        return records

    def latest(self) -> BackupRecord | None:
        backups = self.list()
        return backups[0] if backups else None

    def find(self, selector: str) -> BackupRecord | None:
        """Newest backup whose id or version matches ``selector``."""
        wanted = normalize_version(selector)
        for record in self.list():
            if record.id == selector:
                return record
            if record.version is not None and normalize_version(record.version) == wanted:
                return record
        return None

    def remove(self, backup_id: str) -> None:
        remove_tree(self.path_for(backup_id))

    def prune(self, retention: int) -> list[str]:
        """Delete all but the ``retention`` newest backup directories.

        Returns the ids removed, oldest first.
        """
        if retention < 1:
            raise ValueError("retention must be at least 1")
        if not self._dir.is_dir():
            return []
        ids = sorted(
            (p.name for p in self._dir.iterdir() if p.is_dir() and not p.name.startswith(".")),
            reverse=True,
        )
        removed = list(reversed(ids[retention:]))
        for backup_id in removed:
            self.remove(backup_id)
            logger.info("Pruned backup %s", backup_id)
        return removed
