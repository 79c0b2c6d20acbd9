"""Error hierarchy for the shipwright framework."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

__all__ = [
    "ShipwrightError",
    "ConfigNotFoundError",
    "ConfigError",
    "InvalidInputError",
    "ModuleLoadError",
    "DuplicateModuleError",
    "CyclicDependencyError",
    "MissingDependencyError",
    "AmbiguousCapabilityError",
    "UnknownCapabilityError",
    "ModuleVerificationFailedError",
    "ModuleInitFailedError",
    "ModuleCleanupFailedError",
    "ModuleReloadFailedError",
    "DependentModulesActiveError",
    "VersionSourceError",
    "UpdateInProgressError",
    "LockOwnershipError",
    "InvalidTransactionStateError",
    "StageFailedError",
    "VerifyFailedError",
    "ApplyFailedError",
    "UpdateTimeoutError",
    "CancellationRefusedError",
    "InstallationInconsistentError",
    "NoBackupAvailableError",
    "ErrorCodes",
    "ExitCodes",
    "exit_code_for",
]


class ShipwrightError(Exception):
    """Base error for all shipwright framework errors."""

    def __init__(
        self,
        code: str,
        message: str,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.details: dict[str, Any] = details or {}
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc).isoformat()

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


# ----- Configuration -----


class ConfigNotFoundError(ShipwrightError):
    """Raised when a configuration file cannot be found."""

    def __init__(self, config_path: str, **kwargs: Any) -> None:
        super().__init__(
            code="CONFIG_NOT_FOUND",
            message=f"Configuration file not found: {config_path}",
            details={"config_path": config_path},
            **kwargs,
        )


class ConfigError(ShipwrightError):
    """Raised when configuration is invalid."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        super().__init__(code="CONFIG_INVALID", message=message, **kwargs)


class InvalidInputError(ShipwrightError):
    """Raised for invalid input."""

    def __init__(self, message: str = "Invalid input", **kwargs: Any) -> None:
        super().__init__(code="GENERAL_INVALID_INPUT", message=message, **kwargs)


# ----- Descriptors and registry -----


class ModuleLoadError(ShipwrightError):
    """Raised when a descriptor source cannot be imported or resolved."""

    def __init__(self, module_name: str, reason: str, **kwargs: Any) -> None:
        super().__init__(
            code="MODULE_LOAD_ERROR",
            message=f"Failed to load module '{module_name}': {reason}",
            details={"module": module_name, "reason": reason},
            **kwargs,
        )


class DuplicateModuleError(ShipwrightError):
    """Raised when a module name is registered twice with different versions."""

    def __init__(self, module_name: str, existing_version: str, new_version: str, **kwargs: Any) -> None:
        super().__init__(
            code="DUPLICATE_MODULE",
            message=(
                f"Module '{module_name}' already registered at version {existing_version}, "
                f"refusing version {new_version}"
            ),
            details={"module": module_name, "version": existing_version, "new_version": new_version},
            **kwargs,
        )


# ----- Resolution -----


class CyclicDependencyError(ShipwrightError):
    """Raised when circular dependencies are detected among modules."""

    def __init__(self, cycle_path: list[str], **kwargs: Any) -> None:
        super().__init__(
            code="CYCLIC_DEPENDENCY",
            message=f"Circular dependency detected: {' -> '.join(cycle_path)}",
            details={"cycle_path": cycle_path},
            **kwargs,
        )

    @property
    def cycle_path(self) -> list[str]:
        """The module names forming the cycle, first name repeated at the end."""
        return self.details["cycle_path"]


class MissingDependencyError(ShipwrightError):
    """Raised when a requested module or one of its dependencies is not available."""

    def __init__(self, missing: str, requester: str | None = None, **kwargs: Any) -> None:
        if requester is None:
            message = f"Module '{missing}' is not available"
        else:
            message = f"Module '{requester}' requires '{missing}', which is not available"
        super().__init__(
            code="MISSING_DEPENDENCY",
            message=message,
            details={"missing": missing, "requester": requester},
            **kwargs,
        )

    @property
    def missing(self) -> str:
        """The name that could not be found."""
        return self.details["missing"]

    @property
    def requester(self) -> str | None:
        """The module that declared the dependency, or None for a direct request."""
        return self.details["requester"]


class AmbiguousCapabilityError(ShipwrightError):
    """Raised when more than one module claims the same capability."""

    def __init__(self, capability: str, modules: list[str], **kwargs: Any) -> None:
        super().__init__(
            code="AMBIGUOUS_CAPABILITY",
            message=f"Capability '{capability}' is provided by multiple modules: {', '.join(modules)}",
            details={"capability": capability, "modules": modules},
            **kwargs,
        )


class UnknownCapabilityError(ShipwrightError):
    """Raised when no module provides a capability."""

    def __init__(self, capability: str, **kwargs: Any) -> None:
        super().__init__(
            code="UNKNOWN_CAPABILITY",
            message=f"No module provides capability '{capability}'",
            details={"capability": capability},
            **kwargs,
        )


# ----- Lifecycle -----


class ModuleVerificationFailedError(ShipwrightError):
    """Raised when a module's verify hook fails."""

    def __init__(self, module_name: str, version: str | None = None, reason: str = "", **kwargs: Any) -> None:
        super().__init__(
            code="MODULE_VERIFICATION_FAILED",
            message=f"Verification failed for module '{module_name}'" + (f": {reason}" if reason else ""),
            details={"module": module_name, "version": version, "reason": reason},
            **kwargs,
        )


class ModuleInitFailedError(ShipwrightError):
    """Raised when a module's init hook fails."""

    def __init__(self, module_name: str, version: str | None = None, reason: str = "", **kwargs: Any) -> None:
        super().__init__(
            code="MODULE_INIT_FAILED",
            message=f"Initialization failed for module '{module_name}'" + (f": {reason}" if reason else ""),
            details={"module": module_name, "version": version, "reason": reason},
            **kwargs,
        )


class ModuleCleanupFailedError(ShipwrightError):
    """Raised when a module's cleanup hook fails during unload."""

    def __init__(self, module_name: str, version: str | None = None, reason: str = "", **kwargs: Any) -> None:
        super().__init__(
            code="MODULE_CLEANUP_FAILED",
            message=f"Cleanup failed for module '{module_name}'" + (f": {reason}" if reason else ""),
            details={"module": module_name, "version": version, "reason": reason},
            **kwargs,
        )


class ModuleReloadFailedError(ShipwrightError):
    """Raised when modules loaded before a swap cannot be loaded again afterwards.

    The swap itself stands; ``details['modules']`` lists the modules left unloaded.
    """

    def __init__(
        self,
        modules: list[str],
        reason: str,
        transaction_id: str | None = None,
        version: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            code="MODULE_RELOAD_FAILED",
            message=f"Modules not reloaded: {', '.join(modules)} ({reason})",
            details={"modules": modules, "reason": reason, "transaction_id": transaction_id, "version": version},
            **kwargs,
        )

    @property
    def modules(self) -> list[str]:
        """Modules that were loaded before and are not loaded now."""
        return self.details["modules"]


class DependentModulesActiveError(ShipwrightError):
    """Raised when unloading a module that loaded modules still depend on."""

    def __init__(self, module_name: str, dependents: list[str], **kwargs: Any) -> None:
        super().__init__(
            code="DEPENDENT_MODULES_ACTIVE",
            message=f"Cannot unload '{module_name}': still required by {', '.join(dependents)}",
            details={"module": module_name, "dependents": dependents},
            **kwargs,
        )

    @property
    def dependents(self) -> list[str]:
        """Loaded modules that depend on the module."""
        return self.details["dependents"]


# ----- Update transactions -----


class VersionSourceError(ShipwrightError):
    """Raised by a version source when a lookup or fetch fails."""

    def __init__(self, message: str, version: str | None = None, **kwargs: Any) -> None:
        super().__init__(
            code="VERSION_SOURCE_ERROR",
            message=message,
            details={"version": version},
            **kwargs,
        )


class UpdateInProgressError(ShipwrightError):
    """Raised when another transaction already holds the installation lock."""

    def __init__(
        self,
        lock_path: str,
        transaction_id: str | None = None,
        owner_pid: int | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            code="UPDATE_IN_PROGRESS",
            message=f"Another update transaction is in progress (lock: {lock_path})",
            details={"lock_path": lock_path, "transaction_id": transaction_id, "owner_pid": owner_pid},
            **kwargs,
        )


class LockOwnershipError(ShipwrightError):
    """Raised when releasing a lock owned by another transaction."""

    def __init__(self, lock_path: str, transaction_id: str, owner: str | None, **kwargs: Any) -> None:
        super().__init__(
            code="LOCK_OWNERSHIP",
            message=f"Lock {lock_path} is owned by {owner}, not {transaction_id}",
            details={"lock_path": lock_path, "transaction_id": transaction_id, "owner": owner},
            **kwargs,
        )


class InvalidTransactionStateError(ShipwrightError):
    """Raised when a transaction step is invoked from the wrong state."""

    def __init__(self, transaction_id: str | None, status: str, operation: str, **kwargs: Any) -> None:
        super().__init__(
            code="INVALID_TRANSACTION_STATE",
            message=f"Cannot {operation} transaction {transaction_id} in state {status}",
            details={"transaction_id": transaction_id, "status": status, "operation": operation},
            **kwargs,
        )


class _TransactionStepError(ShipwrightError):
    _code = ""
    _step = ""

    def __init__(
        self,
        transaction_id: str,
        reason: str,
        version: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            code=self._code,
            message=f"{self._step.capitalize()} failed for transaction {transaction_id}: {reason}",
            details={"transaction_id": transaction_id, "version": version, "reason": reason},
            **kwargs,
        )


class StageFailedError(_TransactionStepError):
    """Raised when the candidate cannot be fetched into staging."""

    _code = "STAGE_FAILED"
    _step = "stage"


class VerifyFailedError(_TransactionStepError):
    """Raised when the staged candidate fails integrity or graph checks."""

    _code = "VERIFY_FAILED"
    _step = "verify"


class ApplyFailedError(_TransactionStepError):
    """Raised when the swap fails. ``details['rolled_back']`` tells whether the prior tree was restored."""

    _code = "APPLY_FAILED"
    _step = "apply"

    def __init__(self, transaction_id: str, reason: str, rolled_back: bool, **kwargs: Any) -> None:
        super().__init__(transaction_id, reason, **kwargs)
        self.details["rolled_back"] = rolled_back


class UpdateTimeoutError(ShipwrightError):
    """Raised when an external fetch or probe exceeds its timeout."""

    def __init__(self, transaction_id: str, step: str, timeout: float, **kwargs: Any) -> None:
        super().__init__(
            code="UPDATE_TIMEOUT",
            message=f"{step} for transaction {transaction_id} timed out after {timeout}s",
            details={"transaction_id": transaction_id, "step": step, "timeout": timeout},
            **kwargs,
        )


class CancellationRefusedError(ShipwrightError):
    """Raised when cancelling a transaction whose apply has begun."""

    def __init__(self, transaction_id: str, status: str, **kwargs: Any) -> None:
        super().__init__(
            code="CANCELLATION_REFUSED",
            message=f"Transaction {transaction_id} cannot be cancelled in state {status}",
            details={"transaction_id": transaction_id, "status": status},
            **kwargs,
        )


class InstallationInconsistentError(ShipwrightError):
    """Raised when the installation is flagged inconsistent and needs a manual rollback."""

    def __init__(self, root: str, reason: str = "", **kwargs: Any) -> None:
        super().__init__(
            code="INSTALLATION_INCONSISTENT",
            message=f"Installation at {root} is inconsistent; run a rollback" + (f" ({reason})" if reason else ""),
            details={"root": root, "reason": reason},
            **kwargs,
        )


class NoBackupAvailableError(ShipwrightError):
    """Raised when a rollback finds no matching backup."""

    def __init__(self, backups_dir: str, version: str | None = None, **kwargs: Any) -> None:
        target = f" for version {version}" if version else ""
        super().__init__(
            code="NO_BACKUP_AVAILABLE",
            message=f"No backup available{target} in {backups_dir}",
            details={"backups_dir": backups_dir, "version": version},
            **kwargs,
        )


class ErrorCodes:
    """All framework error codes as constants.

    Use these instead of hardcoding error code strings.

    Example:
        if error.code == ErrorCodes.UPDATE_IN_PROGRESS:
            report_busy()
    """

    CONFIG_NOT_FOUND = "CONFIG_NOT_FOUND"
    CONFIG_INVALID = "CONFIG_INVALID"
    GENERAL_INVALID_INPUT = "GENERAL_INVALID_INPUT"
    MODULE_LOAD_ERROR = "MODULE_LOAD_ERROR"
    DUPLICATE_MODULE = "DUPLICATE_MODULE"
    CYCLIC_DEPENDENCY = "CYCLIC_DEPENDENCY"
    MISSING_DEPENDENCY = "MISSING_DEPENDENCY"
    AMBIGUOUS_CAPABILITY = "AMBIGUOUS_CAPABILITY"
    UNKNOWN_CAPABILITY = "UNKNOWN_CAPABILITY"
    MODULE_VERIFICATION_FAILED = "MODULE_VERIFICATION_FAILED"
    MODULE_INIT_FAILED = "MODULE_INIT_FAILED"
    MODULE_CLEANUP_FAILED = "MODULE_CLEANUP_FAILED"
    MODULE_RELOAD_FAILED = "MODULE_RELOAD_FAILED"
    DEPENDENT_MODULES_ACTIVE = "DEPENDENT_MODULES_ACTIVE"
    VERSION_SOURCE_ERROR = "VERSION_SOURCE_ERROR"
    UPDATE_IN_PROGRESS = "UPDATE_IN_PROGRESS"
    LOCK_OWNERSHIP = "LOCK_OWNERSHIP"
    INVALID_TRANSACTION_STATE = "INVALID_TRANSACTION_STATE"
    STAGE_FAILED = "STAGE_FAILED"
    VERIFY_FAILED = "VERIFY_FAILED"
    APPLY_FAILED = "APPLY_FAILED"
    UPDATE_TIMEOUT = "UPDATE_TIMEOUT"
    CANCELLATION_REFUSED = "CANCELLATION_REFUSED"
    INSTALLATION_INCONSISTENT = "INSTALLATION_INCONSISTENT"
    NO_BACKUP_AVAILABLE = "NO_BACKUP_AVAILABLE"

    def __setattr__(self, name: str, value: object) -> None:
        raise AttributeError("ErrorCodes is immutable")


class ExitCodes:
    """Process exit codes for the command-line surface."""

    SUCCESS = 0
    FAILURE = 1
    UPDATE_IN_PROGRESS = 10
    CYCLIC_DEPENDENCY = 11
    MISSING_DEPENDENCY = 12
    NO_BACKUP_AVAILABLE = 13

    def __setattr__(self, name: str, value: object) -> None:
        raise AttributeError("ExitCodes is immutable")


_EXIT_CODES_BY_ERROR = {
    ErrorCodes.UPDATE_IN_PROGRESS: ExitCodes.UPDATE_IN_PROGRESS,
    ErrorCodes.CYCLIC_DEPENDENCY: ExitCodes.CYCLIC_DEPENDENCY,
    ErrorCodes.MISSING_DEPENDENCY: ExitCodes.MISSING_DEPENDENCY,
    ErrorCodes.NO_BACKUP_AVAILABLE: ExitCodes.NO_BACKUP_AVAILABLE,
}


def exit_code_for(error: BaseException | None) -> int:
    """Map an error (or None for success) to a process exit code."""
    if error is None:
        return ExitCodes.SUCCESS
    if isinstance(error, ShipwrightError):
        return _EXIT_CODES_BY_ERROR.get(error.code, ExitCodes.FAILURE)
    return ExitCodes.FAILURE
