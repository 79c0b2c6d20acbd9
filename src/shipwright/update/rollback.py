"""Rollback controller: restores a backup over the live tree."""

from __future__ import annotations

import logging
import uuid
from contextlib import nullcontext
from pathlib import Path
from typing import TYPE_CHECKING

from shipwright.collaborators import ServiceStatus
from shipwright.errors import (
    InstallationInconsistentError,
    InvalidInputError,
    ModuleReloadFailedError,
    NoBackupAvailableError,
)
from shipwright.registry.registry import ModuleRegistry
from shipwright.utils.fs import atomic_write_text, copy_tree, move_path, remove_tree

if TYPE_CHECKING:
    from shipwright.collaborators import PrivilegeEscalator, ServiceController
    from shipwright.loader import DynamicLoader
    from shipwright.update.backups import BackupStore
    from shipwright.update.layout import InstallationLayout
    from shipwright.update.lock import SingleFlightLock
    from shipwright.update.types import BackupRecord

logger = logging.getLogger(__name__)

__all__ = ["RollbackController"]


class RollbackController:
    """Restores a backup's tree and registry state, under the installation lock.

    The backup is copied rather than moved, so the same backup can be
    restored again later. Restoring clears the inconsistency flag.
    """

    def __init__(
        self,
        layout: InstallationLayout,
        backups: BackupStore,
        lock: SingleFlightLock,
        loader: DynamicLoader | None = None,
        service: ServiceController | None = None,
        service_name: str | None = None,
        escalator: PrivilegeEscalator | None = None,
    ) -> None:
        self._layout = layout
        self._backups = backups
        self._lock = lock
        self._loader = loader
        self._service = service
        self._service_name = service_name
        self._escalator = escalator

    def select(self, to_version: str | None = None) -> BackupRecord:
        """Pick the backup a rollback would restore.

        Raises:
            NoBackupAvailableError: If no backup matches.
        """
        record = self._backups.find(to_version) if to_version else self._backups.latest()
        if record is None:
            raise NoBackupAvailableError(backups_dir=str(self._backups.directory), version=to_version)
        return record

    def rollback(self, to_version: str | None = None) -> BackupRecord:
        """Restore the newest backup, or the one whose version or id is ``to_version``.

        Raises:
            UpdateInProgressError: If a transaction holds the lock.
            NoBackupAvailableError: If no backup matches.
            OSError: If the restored tree cannot be moved into place; the
                previous live tree is put back first.
            InstallationInconsistentError: If putting the previous tree back
                fails too; the installation is flagged.
            ModuleReloadFailedError: If restored modules fail to load; the
                restored tree stands.
        """
        rollback_id = f"rollback-{uuid.uuid4().hex}"
        self._lock.acquire(rollback_id)
        try:
            record = self.select(to_version)
            restored = self._restore(record, rollback_id)
            self._layout.journal_path.unlink(missing_ok=True)
        finally:
            self._lock.release(rollback_id)

        self._layout.clear_inconsistent()
        failure = self._reload(restored)
        self._restart_service()
        logger.info(
            "Rolled back to %s (backup %s)",
            record.version,
            record.id,
            extra={"backup_id": record.id, "version": record.version},
        )
        if failure is not None:
            raise ModuleReloadFailedError(
                modules=failure.modules,
                reason=failure.details["reason"],
                version=record.version,
                cause=failure.cause,
            ) from failure.cause
        return record

    def _restore(self, record: BackupRecord, rollback_id: str) -> list[str]:
        live = self._layout.live_dir
        incoming = self._layout.root / f".restore-{rollback_id}"
        displaced = self._layout.root / f".displaced-{rollback_id}"
        remove_tree(incoming)
        copy_tree(self._backups.tree_for(record.id), incoming, self._escalator)

        previously_loaded: list[str] = []
        suspend = self._loader.suspended(reload=False) if self._loader is not None else nullcontext([])
        try:
            with suspend as previously_loaded:
                had_live = live.exists()
                if had_live:
                    move_path(live, displaced, self._escalator)
                try:
                    move_path(incoming, live, self._escalator)
                except OSError as e:
                    if had_live:
                        self._put_back(displaced, live, e)
                    raise
                self._restore_state(record)
                if self._loader is not None:
                    self._loader.registry.installation_version = record.version
        finally:
            remove_tree(incoming)
        remove_tree(displaced)

        try:
            snapshot = ModuleRegistry.read_snapshot(self._backups.state_for(record.id))
        except InvalidInputError as e:
            logger.warning("Ignoring registry state of backup %s: %s", record.id, e)
            snapshot = None
        if snapshot is not None and snapshot.loaded:
            return snapshot.loaded
        return list(previously_loaded)

    def _restore_state(self, record: BackupRecord) -> None:
        state = self._backups.state_for(record.id)
        if state.is_file():
            atomic_write_text(self._layout.registry_state, state.read_text(encoding="utf-8"))

    def _put_back(self, displaced: Path, live: Path, error: OSError) -> None:
        """Return the displaced tree to ``live`` after a failed restore."""
        try:
            move_path(displaced, live, self._escalator)
        except OSError as e:
            reason = f"rollback failed ({error}) and the previous tree could not be put back; it is at {displaced}"
            self._layout.mark_inconsistent(reason)
            raise InstallationInconsistentError(root=str(self._layout.root), reason=reason, cause=e) from e

    def _reload(self, names: list[str]) -> ModuleReloadFailedError | None:
        if self._loader is None or not names:
            return None
        try:
            self._loader.resume(names)
        except ModuleReloadFailedError as e:
            return e
        return None

    def _restart_service(self) -> None:
        if self._service is None or not self._service_name:
            return
        if self._service.status(self._service_name) is ServiceStatus.RUNNING:
            if not self._service.restart(self._service_name):
                logger.error("Service '%s' failed to restart after rollback", self._service_name)
