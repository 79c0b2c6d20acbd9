"""Manager: the coordinator behind the command-line surface."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Iterable

from shipwright.collaborators import NullServiceController
from shipwright.config import Config
from shipwright.dispatcher import AutoLoadDispatcher
from shipwright.errors import (
    ExitCodes,
    InvalidInputError,
    ModuleReloadFailedError,
    ShipwrightError,
    exit_code_for,
)
from shipwright.loader import DynamicLoader
from shipwright.observability.context_logger import ContextLogger
from shipwright.registry.registry import ModuleRegistry
from shipwright.update.engine import UpdateEngine
from shipwright.update.layout import InstallationLayout
from shipwright.update.self_update import SelfUpdateEngine
from shipwright.update.types import BackupRecord, CheckKind, CheckResult, UpdateTransaction

if TYPE_CHECKING:
    from shipwright.collaborators import PrivilegeEscalator, ServiceController, VersionSource
    from shipwright.middleware.base import Middleware

logger = logging.getLogger(__name__)

__all__ = ["Manager"]


class Manager:
    """Owns the registry, loader, dispatcher and update engine of one installation.

    Every public operation maps to one command. ``run()`` executes a command
    by name, logs a failure once and turns it into a process exit code.

    Example:
        manager = Manager(Config({"install": {"root": "/opt/app"}}), source=DirectoryVersionSource("/srv/releases"))
        manager.module_load(["monitor"])
        manager.update_apply()
    """

    def __init__(
        self,
        config: Config | None = None,
        source: VersionSource | None = None,
        service: ServiceController | None = None,
        escalator: PrivilegeEscalator | None = None,
        middlewares: list[Middleware] | None = None,
        self_update: bool = False,
        log_output: Any = None,
    ) -> None:
        """Initialize the manager.

        Args:
            config: Installation configuration; defaults apply where unset.
            source: Version source for update checks and fetches.
            service: Controller for the managed service, if any.
            escalator: Privilege escalation for renames the process may not do.
            middlewares: Middlewares wrapped around capability calls.
            self_update: Use the self-update engine (probes ``install.entry_point``).
            log_output: Stream for the JSON boundary log (stderr by default).
        """
        self._config = config or Config()
        self._layout = InstallationLayout.from_config(self._config)
        self._service = service or NullServiceController()

        self._registry = ModuleRegistry(state_path=self._layout.registry_state)
        self._registry.installation_version = self._layout.read_version()
        self._loader = DynamicLoader(
            self._registry,
            config=self._config,
            search_paths=self._layout.search_paths(self._config),
        )
        self._dispatcher = AutoLoadDispatcher(self._loader, middlewares=middlewares)

        engine_cls = SelfUpdateEngine if self_update else UpdateEngine
        self._engine = engine_cls(
            self._config,
            source,
            loader=self._loader,
            service=self._service,
            escalator=escalator,
        )
        self._log = ContextLogger(name="shipwright.manager", output=log_output)
        self._discovered = False

    @classmethod
    def from_config_file(cls, path: str | Path, **kwargs: Any) -> Manager:
        """Build a manager from a YAML configuration file."""
        return cls(Config.load(path), **kwargs)

    @property
    def config(self) -> Config:
        return self._config

    @property
    def layout(self) -> InstallationLayout:
        return self._layout

    @property
    def registry(self) -> ModuleRegistry:
        return self._registry

    @property
    def loader(self) -> DynamicLoader:
        return self._loader

    @property
    def dispatcher(self) -> AutoLoadDispatcher:
        return self._dispatcher

    @property
    def engine(self) -> UpdateEngine:
        return self._engine

    def _ensure_discovered(self) -> None:
        if self._discovered:
            return
        self._loader.discover()
        self._discovered = True
        self._restore_loaded()

    def _restore_loaded(self) -> None:
        """Load again the modules a previous invocation left loaded.

        A module that fails to come back is reported by ``status()`` and
        dropped from ``registry.state``.
        """
        try:
            snapshot = ModuleRegistry.read_snapshot(self._layout.registry_state)
        except InvalidInputError as e:
            logger.warning("Ignoring registry state: %s", e)
            return
        if snapshot is None or not snapshot.loaded:
            return
        try:
            self._loader.resume(snapshot.loaded)
        except ModuleReloadFailedError as e:
            self._log.bind(module=e.modules[0] if e.modules else None).warn(
                "Previously loaded modules not restored",
                extra={"code": e.code, "details": e.details},
            )

    # ----- Module commands -----

    def module_load(self, names: Iterable[str]) -> list[str]:
        """Load modules and their dependencies. Returns the names newly loaded."""
        self._ensure_discovered()
        return self._loader.load(list(names))

    def module_unload(self, name: str, force: bool = False) -> list[str]:
        """Unload a module (and, with ``force``, its dependents)."""
        self._ensure_discovered()
        return self._loader.unload(name, force=force)

    def module_info(self, name: str) -> dict[str, Any]:
        self._ensure_discovered()
        return self._registry.info(name)

    def module_list(self) -> list[dict[str, Any]]:
        self._ensure_discovered()
        return [self._registry.info(name) for name in self._registry.list()]

    def call(self, capability: str, *args: Any, **kwargs: Any) -> Any:
        """Call a capability, auto-loading its provider."""
        self._ensure_discovered()
        return self._dispatcher.call(capability, *args, **kwargs)

    # ----- Update commands -----

    def update_check(self) -> CheckResult:
        return self._engine.check_update()

    def update_apply(self, version: str | None = None, timeout: float | None = None) -> UpdateTransaction:
        """Run a full update to ``version`` (the latest by default)."""
        self._engine.recover()
        self._ensure_discovered()
        txn = self._engine.run_update(version, timeout=timeout)
        self._log.bind(transaction_id=txn.transaction_id, version=txn.candidate_version).info(
            "Update applied",
            extra={"from_version": txn.current_version, "backup": str(txn.backup_path)},
        )
        return txn

    def update_rollback(self, version: str | None = None) -> BackupRecord:
        """Restore the newest backup, or the one matching a version or backup id."""
        self._engine.recover()
        self._ensure_discovered()
        record = self._engine.rollback(version)
        self._log.bind(version=record.version).info("Rollback complete", extra={"backup": record.id})
        return record

    def status(self) -> dict[str, Any]:
        """Installation report: version, consistency, lock holder, modules, backups.

        ``loaded`` is the set restored from ``registry.state``; ``reload_failure``
        names modules that were recorded as loaded but could not be loaded again.
        """
        self._ensure_discovered()
        holder = self._engine.lock.read()
        reload_failure = self._loader.reload_failure
        service_name = self._config.get("service.name")
        return {
            "root": str(self._layout.root),
            "version": self._layout.read_version(),
            "inconsistent": self._layout.is_inconsistent(),
            "inconsistent_reason": self._layout.inconsistent_reason(),
            "update_in_progress": self._engine.lock.is_held(),
            "lock_holder": holder.model_dump() if holder else None,
            "available": self._registry.list(),
            "loaded": self._registry.loaded,
            "reload_failure": reload_failure.details if reload_failure else None,
            "backups": [record.model_dump() for record in self._engine.backups.list()],
            "service": self._service.status(service_name).value if service_name else None,
        }

    # ----- Command dispatch -----

    def _commands(self) -> dict[str, Callable[..., Any]]:
        return {
            "load": lambda *names: self.module_load(names),
            "unload": self.module_unload,
            "info": self.module_info,
            "list": self.module_list,
            "call": self.call,
            "check": self.update_check,
            "apply": self.update_apply,
            "rollback": self.update_rollback,
            "status": self.status,
        }

    def run(self, command: str, *args: Any) -> int:
        """Execute ``command`` with ``args`` and return a process exit code.

        Failures are logged once here with their code and details; they are
        not re-raised.
        """
        handler = self._commands().get(command)
        try:
            if handler is None:
                raise InvalidInputError(message=f"Unknown command: {command}")
            result = handler(*args)
        except ShipwrightError as e:
            self._log.bind(
                transaction_id=e.details.get("transaction_id"),
                module=e.details.get("module"),
                version=e.details.get("version"),
            ).error(str(e), extra={"command": command, "code": e.code, "details": e.details})
            return exit_code_for(e)
        except OSError as e:
            self._log.error(
                f"{command} failed: {e}",
                extra={"command": command, "code": "OS_ERROR", "details": {"errno": e.errno, "path": e.filename}},
            )
            return ExitCodes.FAILURE

        if isinstance(result, CheckResult) and result.kind is CheckKind.CHECK_FAILED:
            self._log.error("Update check failed", extra={"command": command, "error": result.error})
            return ExitCodes.FAILURE
        self._log.info(f"{command} ok", extra={"command": command})
        return ExitCodes.SUCCESS
