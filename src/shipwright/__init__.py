"""shipwright - module lifecycle and transactional self-update manager."""

from __future__ import annotations

# Core
from shipwright.context import Context
from shipwright.module import ModuleDescriptor, run_hook
from shipwright.registry import ModuleRegistry, resolve_load_order
from shipwright.loader import DynamicLoader
from shipwright.dispatcher import AutoLoadDispatcher
from shipwright.manager import Manager

# Config
from shipwright.config import Config

# Decorators
from shipwright.decorator import capability

# Errors
from shipwright.errors import (
    AmbiguousCapabilityError,
    ApplyFailedError,
    CancellationRefusedError,
    ConfigError,
    ConfigNotFoundError,
    CyclicDependencyError,
    DependentModulesActiveError,
    DuplicateModuleError,
    ErrorCodes,
    ExitCodes,
    InstallationInconsistentError,
    InvalidInputError,
    InvalidTransactionStateError,
    LockOwnershipError,
    MissingDependencyError,
    ModuleCleanupFailedError,
    ModuleReloadFailedError,
    ModuleInitFailedError,
    ModuleLoadError,
    ModuleVerificationFailedError,
    NoBackupAvailableError,
    ShipwrightError,
    StageFailedError,
    UnknownCapabilityError,
    UpdateInProgressError,
    UpdateTimeoutError,
    VerifyFailedError,
    VersionSourceError,
    exit_code_for,
)

# Middleware
from shipwright.middleware import LoggingMiddleware, Middleware, MiddlewareManager

# Collaborators
from shipwright.collaborators import (
    DirectoryVersionSource,
    GitVersionSource,
    NoEscalation,
    NullServiceController,
    ServiceStatus,
    SudoEscalator,
    SystemctlServiceController,
)

# Updates
from shipwright.update import (
    BackupRecord,
    CheckKind,
    CheckResult,
    InstallationLayout,
    SelfUpdateEngine,
    TransactionStatus,
    UpdateEngine,
    UpdateTransaction,
)

# Observability
from shipwright.observability import ContextLogger

__version__ = "0.1.0"

__all__ = [
    # Core
    "Context",
    "ModuleDescriptor",
    "run_hook",
    "ModuleRegistry",
    "resolve_load_order",
    "DynamicLoader",
    "AutoLoadDispatcher",
    "Manager",
    # Config
    "Config",
    # Decorators
    "capability",
    # Errors
    "ShipwrightError",
    "AmbiguousCapabilityError",
    "ApplyFailedError",
    "CancellationRefusedError",
    "ConfigError",
    "ConfigNotFoundError",
    "CyclicDependencyError",
    "DependentModulesActiveError",
    "DuplicateModuleError",
    "ErrorCodes",
    "ExitCodes",
    "InstallationInconsistentError",
    "InvalidInputError",
    "InvalidTransactionStateError",
    "LockOwnershipError",
    "MissingDependencyError",
    "ModuleCleanupFailedError",
    "ModuleReloadFailedError",
    "ModuleInitFailedError",
    "ModuleLoadError",
    "ModuleVerificationFailedError",
    "NoBackupAvailableError",
    "StageFailedError",
    "UnknownCapabilityError",
    "UpdateInProgressError",
    "UpdateTimeoutError",
    "VerifyFailedError",
    "VersionSourceError",
    "exit_code_for",
    # Middleware
    "Middleware",
    "MiddlewareManager",
    "LoggingMiddleware",
    # Collaborators
    "DirectoryVersionSource",
    "GitVersionSource",
    "NoEscalation",
    "NullServiceController",
    "ServiceStatus",
    "SudoEscalator",
    "SystemctlServiceController",
    # Updates
    "BackupRecord",
    "CheckKind",
    "CheckResult",
    "InstallationLayout",
    "SelfUpdateEngine",
    "TransactionStatus",
    "UpdateEngine",
    "UpdateTransaction",
    # Observability
    "ContextLogger",
    # Version
    "__version__",
]
