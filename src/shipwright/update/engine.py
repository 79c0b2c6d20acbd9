"""Update engine: the transactional stage/verify/apply state machine."""

from __future__ import annotations

import json
import logging
import shutil
import subprocess
import time
import uuid
from contextlib import nullcontext
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

import pydantic

from shipwright.collaborators import NullServiceController, ServiceStatus
from shipwright.errors import (
    ApplyFailedError,
    CancellationRefusedError,
    InstallationInconsistentError,
    InvalidTransactionStateError,
    ModuleReloadFailedError,
    ShipwrightError,
    StageFailedError,
    UpdateTimeoutError,
    VerifyFailedError,
    VersionSourceError,
)
from shipwright.loader import discover_descriptors
from shipwright.registry.registry import ModuleRegistry
from shipwright.update.backups import BackupStore
from shipwright.update.layout import InstallationLayout
from shipwright.update.lock import SingleFlightLock
from shipwright.update.rollback import RollbackController
from shipwright.update.types import (
    ApplyJournal,
    BackupRecord,
    CheckKind,
    CheckResult,
    TransactionStatus,
    UpdateTransaction,
)
from shipwright.utils.fs import atomic_write_text, move_path, remove_tree, sha256_file
from shipwright.versioning import compare_versions, normalize_version

if TYPE_CHECKING:
    from shipwright.collaborators import PrivilegeEscalator, ServiceController, VersionSource
    from shipwright.config import Config
    from shipwright.loader import DynamicLoader

logger = logging.getLogger(__name__)

__all__ = ["UpdateEngine", "parse_checksum_manifest"]

_CANCELLABLE = (TransactionStatus.PENDING, TransactionStatus.STAGED, TransactionStatus.VERIFIED)


def _is_newer(latest: str, current: str | None) -> bool:
    if current is None:
        return True
    try:
        return compare_versions(latest, current) > 0
    except ValueError:
        return normalize_version(latest) != normalize_version(current)


def parse_checksum_manifest(text: str) -> list[tuple[str, str]]:
    """Parse ``sha256sum`` output into ``(digest, relative_path)`` pairs.

    Raises:
        ValueError: On a malformed line.
    """
    entries: list[tuple[str, str]] = []
    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        digest, _, name = line.partition(" ")
        name = name.lstrip(" ")
        if name.startswith("*"):
            name = name[1:]
        if len(digest) != 64 or not name:
            raise ValueError(f"line {lineno}: expected '<sha256>  <path>'")
        entries.append((digest.lower(), name))
    return entries


class UpdateEngine:
    """Moves an installation between versions one transaction at a time.

    ``Idle -> Pending -> Staged -> Verified -> Applied``, with ``Failed``,
    ``RolledBack`` and ``Cancelled`` as the other terminal states. Every step
    that fails leaves the live tree untouched or restored and releases the
    single-flight lock.
    """

    def __init__(
        self,
        config: Config,
        source: VersionSource | None = None,
        loader: DynamicLoader | None = None,
        service: ServiceController | None = None,
        escalator: PrivilegeEscalator | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            config: Installation configuration (``install.*`` and ``update.*`` keys).
            source: Where candidate versions are listed and fetched from. Without
                one, only rollback and recovery are available.
            loader: Loader suspended around the swap and reloaded afterwards.
            service: Controller used to restart the managed service.
            escalator: Used when a rename needs more privileges.
        """
        self._config = config
        self._layout = InstallationLayout.from_config(config)
        self._source = source
        self._loader = loader
        self._service = service or NullServiceController()
        self._escalator = escalator
        self._lock = SingleFlightLock(self._layout.lock_path)
        self._backups = BackupStore(self._layout.backups_dir)
        self._rollback = RollbackController(
            self._layout,
            self._backups,
            self._lock,
            loader=loader,
            service=self._service,
            service_name=config.get("service.name"),
            escalator=escalator,
        )
        self._transaction: UpdateTransaction | None = None
        self._applying = False

    @property
    def layout(self) -> InstallationLayout:
        return self._layout

    @property
    def lock(self) -> SingleFlightLock:
        return self._lock

    @property
    def backups(self) -> BackupStore:
        return self._backups

    @property
    def transaction(self) -> UpdateTransaction | None:
        """The current or most recent transaction of this engine."""
        return self._transaction

    def current_version(self) -> str | None:
        """Version marker of the live tree."""
        return self._layout.read_version()

    # ----- Check -----

    def check_update(self) -> CheckResult:
        """Compare the live version with the source's latest. Never raises for source failures."""
        current = self.current_version()
        try:
            latest = self._require_source().latest()
        except (VersionSourceError, TimeoutError, OSError) as e:
            logger.warning("Update check failed: %s", e)
            return CheckResult(kind=CheckKind.CHECK_FAILED, current_version=current, error=str(e))

        if _is_newer(latest, current):
            logger.info("Update available: %s -> %s", current, latest)
            return CheckResult(kind=CheckKind.UPDATE_AVAILABLE, current_version=current, latest_version=latest)
        return CheckResult(kind=CheckKind.UP_TO_DATE, current_version=current, latest_version=latest)

    # ----- Begin -----

    def begin_update(self, target_version: str | None = None) -> UpdateTransaction:
        """Take the installation lock and open a PENDING transaction.

        Args:
            target_version: Version to move to; defaults to the source's latest.

        Raises:
            InstallationInconsistentError: If a previous apply left the installation flagged.
            InvalidTransactionStateError: If this engine already has an open transaction.
            UpdateInProgressError: If another transaction holds the lock.
            VersionSourceError: If the latest version cannot be determined.
            StageFailedError: If the staging area cannot be created.
        """
        if self._layout.is_inconsistent():
            raise InstallationInconsistentError(
                root=str(self._layout.root), reason=self._layout.inconsistent_reason() or ""
            )
        if self._transaction is not None and not self._transaction.is_terminal:
            raise InvalidTransactionStateError(
                transaction_id=self._transaction.transaction_id,
                status=self._transaction.status.value,
                operation="begin",
            )

        transaction_id = uuid.uuid4().hex
        self._lock.acquire(transaction_id)
        try:
            candidate = normalize_version(target_version or self._require_source().latest())
        except VersionSourceError:
            self._lock.release(transaction_id)
            raise
        except TimeoutError as e:
            self._lock.release(transaction_id)
            raise VersionSourceError(message=f"Cannot determine latest version: {e}") from e

        staging_path = self._layout.staging_dir / transaction_id
        try:
            staging_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            self._lock.release(transaction_id)
            raise StageFailedError(
                transaction_id=transaction_id,
                reason=f"cannot create staging area {staging_path}: {e}",
                version=candidate,
                cause=e,
            ) from e
        self._transaction = UpdateTransaction(
            transaction_id=transaction_id,
            current_version=self.current_version(),
            candidate_version=candidate,
            staging_path=staging_path,
        )
        logger.info(
            "Update transaction %s opened: %s -> %s",
            transaction_id,
            self._transaction.current_version,
            candidate,
            extra={"transaction_id": transaction_id, "version": candidate},
        )
        return self._transaction

    # ----- Stage -----

    def stage(self, timeout: float | None = None) -> UpdateTransaction:
        """Fetch the candidate into ``staging/<txid>/tree``.

        Raises:
            InvalidTransactionStateError: If the transaction is not PENDING.
            UpdateTimeoutError: If the fetch exceeds ``timeout`` (default ``update.fetch_timeout``).
            StageFailedError: If the source cannot provide the candidate.
        """
        txn = self._require(TransactionStatus.PENDING, "stage")
        if timeout is None:
            timeout = self._config.get("update.fetch_timeout")

        dest = txn.staged_tree
        try:
            self._require_source().fetch(txn.candidate_version, dest, timeout=timeout)
        except (TimeoutError, subprocess.TimeoutExpired) as e:
            self._fail(txn, f"fetch timed out after {timeout}s")
            raise UpdateTimeoutError(transaction_id=txn.transaction_id, step="stage", timeout=timeout, cause=e) from e
        except (VersionSourceError, OSError) as e:
            self._fail(txn, str(e))
            raise StageFailedError(
                transaction_id=txn.transaction_id, reason=str(e), version=txn.candidate_version, cause=e
            ) from e

        if not dest.is_dir():
            self._fail(txn, "source produced no tree")
            raise StageFailedError(
                transaction_id=txn.transaction_id, reason="source produced no tree", version=txn.candidate_version
            )

        txn.status = TransactionStatus.STAGED
        logger.info("Staged %s for transaction %s", txn.candidate_version, txn.transaction_id)
        return txn

    # ----- Verify -----

    def verify(self, timeout: float | None = None) -> UpdateTransaction:
        """Check the staged tree before it may replace the live one.

        Raises:
            InvalidTransactionStateError: If the transaction is not STAGED.
            UpdateTimeoutError: If verification exceeds ``timeout`` (default ``update.verify_timeout``).
            VerifyFailedError: If any integrity or dependency-graph check fails.
        """
        txn = self._require(TransactionStatus.STAGED, "verify")
        if timeout is None:
            timeout = self._config.get("update.verify_timeout")
        deadline = time.monotonic() + timeout if timeout is not None else None

        try:
            problems = self._verify_checks(txn, deadline)
        except (TimeoutError, subprocess.TimeoutExpired) as e:
            self._fail(txn, f"verification timed out after {timeout}s")
            raise UpdateTimeoutError(transaction_id=txn.transaction_id, step="verify", timeout=timeout, cause=e) from e

        if problems:
            reason = "; ".join(problems)
            self._fail(txn, reason)
            raise VerifyFailedError(transaction_id=txn.transaction_id, reason=reason, version=txn.candidate_version)

        txn.status = TransactionStatus.VERIFIED
        logger.info("Verified %s for transaction %s", txn.candidate_version, txn.transaction_id)
        return txn

    def _verify_checks(self, txn: UpdateTransaction, deadline: float | None) -> list[str]:
        tree = txn.staged_tree
        problems: list[str] = []

        for entry in self._config.get("update.required_entries", []):
            if not (tree / entry).exists():
                problems.append(f"required entry missing: {entry}")

        staged_version = self._layout.read_version(tree)
        if staged_version is not None and normalize_version(staged_version) != txn.candidate_version:
            problems.append(f"version marker {staged_version} does not match candidate {txn.candidate_version}")

        problems.extend(self._verify_checksums(tree, deadline))
        self._check_deadline(deadline)
        problems.extend(self._verify_module_graph(tree))
        self._check_deadline(deadline)
        return problems

    @staticmethod
    def _check_deadline(deadline: float | None) -> None:
        if deadline is not None and time.monotonic() > deadline:
            raise TimeoutError("verification deadline exceeded")

    def _verify_checksums(self, tree: Path, deadline: float | None) -> list[str]:
        manifest = tree / self._config.get("update.checksum_file", "checksums.sha256")
        if not manifest.is_file():
            return []
        try:
            entries = parse_checksum_manifest(manifest.read_text(encoding="utf-8"))
        except ValueError as e:
            return [f"malformed checksum manifest: {e}"]

        problems: list[str] = []
        resolved_root = tree.resolve()
        for digest, name in entries:
            target = (tree / name).resolve()
            if not target.is_relative_to(resolved_root):
                problems.append(f"checksum entry escapes the tree: {name}")
                continue
            if not target.is_file():
                problems.append(f"checksummed file missing: {name}")
                continue
            if sha256_file(target) != digest:
                problems.append(f"checksum mismatch: {name}")
            self._check_deadline(deadline)
        return problems

    def _verify_module_graph(self, tree: Path) -> list[str]:
        modules_dir = tree / self._layout.tree_dir
        errors: list[tuple[Path, ShipwrightError]] = []
        descriptors = discover_descriptors(
            [modules_dir],
            max_depth=self._config.get("modules.max_depth", 8),
            follow_symlinks=self._config.get("modules.follow_symlinks", False),
            errors=errors,
        )
        resolved_tree = tree.resolve()
        problems = [f"{path.relative_to(resolved_tree)}: {err.message}" for path, err in errors]

        scratch = ModuleRegistry()
        for descriptor in descriptors:
            try:
                scratch.register(descriptor)
            except ShipwrightError as e:
                problems.append(e.message)
        try:
            scratch.resolve_load_order(scratch.list())
        except ShipwrightError as e:
            problems.append(e.message)
        return problems

    # ----- Apply -----

    def apply(self) -> UpdateTransaction:
        """Swap the verified tree into place.

        The live tree is renamed into a new backup and the staged tree is
        renamed to live; the loader is suspended around the swap. A failed
        swap is reversed (ROLLED_BACK); if reversing fails too the
        installation is flagged inconsistent (FAILED).

        Raises:
            InvalidTransactionStateError: If the transaction is not VERIFIED.
            ApplyFailedError: If preparing the backup, the swap or the post-swap check fails.
            ModuleReloadFailedError: If previously loaded modules fail to load from
                the new tree; the transaction is still APPLIED.
        """
        txn = self._require(TransactionStatus.VERIFIED, "apply")
        live = self._layout.live_dir

        record, backup_tree = self._prepare_backup(txn, live)

        self._applying = True
        try:
            suspend = self._loader.suspended() if self._loader is not None else nullcontext([])
            with suspend:
                self._swap(txn, record, live, backup_tree)
                problems = self._after_swap(txn)
                if problems:
                    self._reverse_swap(txn, record, live, backup_tree, "; ".join(problems))
                txn.status = TransactionStatus.APPLIED
                if self._loader is not None:
                    self._loader.registry.installation_version = txn.candidate_version
        except ShipwrightError as e:
            if isinstance(e, ApplyFailedError) or txn.status is not TransactionStatus.VERIFIED or backup_tree.exists():
                raise
            # Suspending the loaded modules failed; the live tree was never touched
            self._backups.remove(record.id)
            self._layout.journal_path.unlink(missing_ok=True)
            reason = f"could not release loaded modules: {e.message}"
            self._fail(txn, reason)
            raise ApplyFailedError(
                transaction_id=txn.transaction_id,
                reason=reason,
                rolled_back=True,
                version=txn.candidate_version,
                cause=e,
            ) from e
        finally:
            self._applying = False

        self._layout.journal_path.unlink(missing_ok=True)
        logger.info(
            "Applied %s (transaction %s, backup %s)",
            txn.candidate_version,
            txn.transaction_id,
            record.id,
            extra={"transaction_id": txn.transaction_id, "version": txn.candidate_version},
        )

        self._restart_service()
        self._backups.prune(self._config.get("update.backup_retention", 3))
        self._finish(txn)

        failure = self._loader.reload_failure if self._loader is not None else None
        if failure is not None:
            txn.not_reloaded = list(failure.modules)
            txn.error = failure.message
            raise ModuleReloadFailedError(
                modules=failure.modules,
                reason=failure.details["reason"],
                transaction_id=txn.transaction_id,
                version=txn.candidate_version,
                cause=failure.cause,
            ) from failure.cause
        return txn

    def _prepare_backup(self, txn: UpdateTransaction, live: Path) -> tuple[BackupRecord, Path]:
        """Allocate the backup, write the journal and copy ``registry.state``.

        Nothing here touches the live tree, so a failure fails the transaction
        with the installation as it was.
        """
        record: BackupRecord | None = None
        try:
            record = self._backups.create(version=txn.current_version, transaction_id=txn.transaction_id)
            backup_tree = self._backups.tree_for(record.id)
            txn.backup_path = self._backups.path_for(record.id)
            self._write_journal(
                ApplyJournal(
                    transaction_id=txn.transaction_id,
                    live_path=str(live),
                    backup_tree=str(backup_tree),
                    staged_tree=str(txn.staged_tree),
                    current_version=txn.current_version,
                    candidate_version=txn.candidate_version,
                    started_at=datetime.now(timezone.utc).isoformat(),
                )
            )
            if self._layout.registry_state.is_file():
                shutil.copy2(self._layout.registry_state, self._backups.state_for(record.id))
        except OSError as e:
            if record is not None:
                self._backups.remove(record.id)
            txn.backup_path = None
            self._layout.journal_path.unlink(missing_ok=True)
            reason = f"could not prepare backup: {e}"
            self._fail(txn, reason)
            raise ApplyFailedError(
                transaction_id=txn.transaction_id,
                reason=reason,
                rolled_back=True,
                version=txn.candidate_version,
                cause=e,
            ) from e
        return record, backup_tree

    def _swap(self, txn: UpdateTransaction, record: BackupRecord, live: Path, backup_tree: Path) -> None:
        try:
            if live.exists():
                move_path(live, backup_tree, self._escalator)
            move_path(txn.staged_tree, live, self._escalator)
        except OSError as e:
            self._reverse_swap(txn, record, live, backup_tree, f"swap failed: {e}", cause=e)

    def _after_swap(self, txn: UpdateTransaction) -> list[str]:
        """Checks run against the new live tree before the swap is declared done."""
        return []

    def _reverse_swap(
        self,
        txn: UpdateTransaction,
        record: BackupRecord,
        live: Path,
        backup_tree: Path,
        reason: str,
        cause: Exception | None = None,
    ) -> None:
        """Put the previous live tree back and raise ApplyFailedError."""
        try:
            if backup_tree.exists():
                if live.exists():
                    move_path(live, txn.staging_path / "rejected", self._escalator)
                move_path(backup_tree, live, self._escalator)
        except OSError as e:
            txn.status = TransactionStatus.FAILED
            txn.error = f"{reason}; restoring previous tree failed: {e}"
            self._layout.mark_inconsistent(txn.error)
            self._release(txn)
            raise ApplyFailedError(
                transaction_id=txn.transaction_id,
                reason=txn.error,
                rolled_back=False,
                version=txn.candidate_version,
                cause=cause or e,
            ) from e

        txn.status = TransactionStatus.ROLLED_BACK
        txn.error = reason
        self._backups.remove(record.id)
        self._layout.journal_path.unlink(missing_ok=True)
        logger.error("Apply of %s reversed: %s", txn.candidate_version, reason)
        self._finish(txn)
        raise ApplyFailedError(
            transaction_id=txn.transaction_id,
            reason=reason,
            rolled_back=True,
            version=txn.candidate_version,
            cause=cause,
        )

    def _restart_service(self) -> None:
        name = self._config.get("service.name")
        if not name:
            return
        if self._service.status(name) is not ServiceStatus.RUNNING:
            logger.debug("Service '%s' not running; no restart", name)
            return
        if not self._service.restart(name):
            logger.error("Service '%s' failed to restart after update", name)

    # ----- Rollback / cancel -----

    def rollback(self, to_version: str | None = None) -> BackupRecord:
        """Restore the newest backup, or the one matching a version or backup id.

        Raises:
            UpdateInProgressError: If a transaction holds the lock.
            NoBackupAvailableError: If no matching backup exists.
            InstallationInconsistentError: If the restore and the put-back both fail.
            ModuleReloadFailedError: If restored modules fail to load.
        """
        return self._rollback.rollback(to_version)

    def cancel(self) -> UpdateTransaction:
        """Abandon the open transaction before apply begins.

        Raises:
            InvalidTransactionStateError: If there is no transaction.
            CancellationRefusedError: If apply has begun or the transaction has finished.
        """
        txn = self._transaction
        if txn is None:
            raise InvalidTransactionStateError(transaction_id=None, status="idle", operation="cancel")
        if self._applying or txn.status not in _CANCELLABLE:
            raise CancellationRefusedError(transaction_id=txn.transaction_id, status=txn.status.value)

        txn.status = TransactionStatus.CANCELLED
        self._finish(txn)
        logger.info("Transaction %s cancelled", txn.transaction_id)
        return txn

    def run_update(self, target_version: str | None = None, timeout: float | None = None) -> UpdateTransaction:
        """Begin, stage, verify and apply in one call."""
        self.begin_update(target_version)
        self.stage(timeout=timeout)
        self.verify(timeout=timeout)
        return self.apply()

    # ----- Crash recovery -----

    def recover(self) -> bool:
        """Finish or undo an apply interrupted by a crash.

        If the journal shows the live tree missing, the backup tree is moved
        back and the inconsistency flag cleared. Either way the journal, the
        crashed transaction's staging area and its lock are cleared.

        Returns:
            True if a journal was found and consumed.

        Raises:
            InstallationInconsistentError: If neither the live nor the backup tree exists.
        """
        journal = self._read_journal()
        if journal is None:
            return False

        live = Path(journal.live_path)
        backup_tree = Path(journal.backup_tree)
        if not live.exists():
            if not backup_tree.exists():
                reason = f"interrupted apply {journal.transaction_id} left no live or backup tree"
                self._layout.mark_inconsistent(reason)
                raise InstallationInconsistentError(root=str(self._layout.root), reason=reason)
            move_path(backup_tree, live, self._escalator)
            remove_tree(backup_tree.parent)
            self._layout.clear_inconsistent()
            logger.warning("Recovered interrupted apply %s: previous tree restored", journal.transaction_id)
        elif not backup_tree.exists():
            remove_tree(backup_tree.parent)
            logger.warning("Recovered interrupted apply %s: swap never started", journal.transaction_id)
        else:
            logger.warning("Recovered interrupted apply %s: swap had completed", journal.transaction_id)

        holder = self._lock.read()
        if holder is not None and holder.transaction_id == journal.transaction_id:
            self._lock.force_release()
        remove_tree(self._layout.staging_dir / journal.transaction_id)
        self._layout.journal_path.unlink(missing_ok=True)
        return True

    # ----- Internals -----

    def _require_source(self) -> VersionSource:
        if self._source is None:
            raise VersionSourceError(message="No version source configured")
        return self._source

    def _require(self, status: TransactionStatus, operation: str) -> UpdateTransaction:
        txn = self._transaction
        if txn is None or txn.status is not status:
            raise InvalidTransactionStateError(
                transaction_id=txn.transaction_id if txn else None,
                status=txn.status.value if txn else "idle",
                operation=operation,
            )
        return txn

    def _fail(self, txn: UpdateTransaction, reason: str) -> None:
        txn.status = TransactionStatus.FAILED
        txn.error = reason
        logger.error(
            "Transaction %s failed: %s",
            txn.transaction_id,
            reason,
            extra={"transaction_id": txn.transaction_id, "version": txn.candidate_version},
        )
        self._finish(txn)

    def _finish(self, txn: UpdateTransaction) -> None:
        remove_tree(txn.staging_path)
        self._release(txn)

    def _release(self, txn: UpdateTransaction) -> None:
        self._lock.release(txn.transaction_id)

    def _write_journal(self, journal: ApplyJournal) -> None:
        atomic_write_text(self._layout.journal_path, json.dumps(journal.model_dump(), indent=2, sort_keys=True) + "\n")

    def _read_journal(self) -> ApplyJournal | None:
        try:
            return ApplyJournal.model_validate_json(self._layout.journal_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except pydantic.ValidationError as e:
            reason = f"unreadable apply journal: {e}"
            self._layout.mark_inconsistent(reason)
            raise InstallationInconsistentError(root=str(self._layout.root), reason=reason) from e
