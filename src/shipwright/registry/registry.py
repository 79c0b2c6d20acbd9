"""Module registry: available descriptors, loaded order, persistence."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from types import MappingProxyType
from typing import Any, Callable, Iterable, Mapping

import pydantic

from shipwright.errors import (
    DuplicateModuleError,
    InvalidInputError,
    MissingDependencyError,
)
from shipwright.module import ModuleDescriptor
from shipwright.registry.dependencies import resolve_load_order
from shipwright.registry.types import ModuleRecord, RegistrySnapshot
from shipwright.registry.validation import validate_descriptor
from shipwright.utils.fs import atomic_write_text

logger = logging.getLogger(__name__)

__all__ = ["ModuleRegistry", "REGISTRY_EVENTS"]

REGISTRY_EVENTS = ("register", "unregister", "reset")


class ModuleRegistry:
    """Process-wide record of available and loaded modules.

    One coordinator owns the registry and passes it by reference to the
    loader and dispatcher. ``loaded`` keeps dependency-resolved load order:
    every loaded module is available, appears once, and follows all of its
    dependencies.
    """

    def __init__(self, state_path: Path | str | None = None) -> None:
        """Initialize an empty registry.

        Args:
            state_path: Where ``save()`` writes the snapshot when no path is given.
        """
        self._available: dict[str, ModuleDescriptor] = {}
        self._loaded: list[str] = []
        self._callbacks: dict[str, list[Callable[..., Any]]] = {event: [] for event in REGISTRY_EVENTS}
        self._state_path = Path(state_path) if state_path is not None else None
        self.installation_version: str | None = None

    # ----- Registration -----

    def register(self, descriptor: ModuleDescriptor, override: bool = False) -> bool:
        """Add a descriptor to ``available``.

        Registering the same name at the same version again is a no-op.

        Returns:
            True if the registry changed.

        Raises:
            InvalidInputError: If the descriptor fails validation.
            DuplicateModuleError: If the name exists at a different version and
                ``override`` is False, or the existing module is loaded.
        """
        errors = validate_descriptor(descriptor)
        if errors:
            raise InvalidInputError(message=f"Invalid module '{descriptor.name}': {'; '.join(errors)}")

        existing = self._available.get(descriptor.name)
        if existing is not None:
            if existing is descriptor:
                return False
            if existing.version == descriptor.version and not override:
                logger.debug("Module '%s' %s already registered", descriptor.name, descriptor.version)
                return False
            if not override or descriptor.name in self._loaded:
                raise DuplicateModuleError(
                    module_name=descriptor.name,
                    existing_version=existing.version,
                    new_version=descriptor.version,
                )
            logger.info(
                "Overriding module '%s' %s with %s",
                descriptor.name,
                existing.version,
                descriptor.version,
            )

        self._available[descriptor.name] = descriptor
        self._trigger_event("register", descriptor.name, descriptor)
        return True

    def unregister(self, name: str) -> bool:
        """Remove a module from ``available``.

        Returns False if the module was not registered.

        Raises:
            InvalidInputError: If the module is currently loaded.
        """
        if name not in self._available:
            return False
        if name in self._loaded:
            raise InvalidInputError(message=f"Cannot unregister loaded module: {name}")
        descriptor = self._available.pop(name)
        self._trigger_event("unregister", name, descriptor)
        return True

    def reset(self) -> None:
        """Forget every available and loaded module."""
        self._available.clear()
        self._loaded.clear()
        self._trigger_event("reset", None, None)

    # ----- Load bookkeeping -----

    def mark_loaded(self, name: str) -> None:
        """Record ``name`` as loaded. Marking a loaded module again is a no-op.

        Raises:
            MissingDependencyError: If ``name`` is not available.
            InvalidInputError: If one of its dependencies is not loaded yet.
        """
        if name in self._loaded:
            return
        descriptor = self._available.get(name)
        if descriptor is None:
            raise MissingDependencyError(missing=name)
        pending = [dep for dep in descriptor.dependencies if dep not in self._loaded]
        if pending:
            raise InvalidInputError(
                message=f"Cannot mark '{name}' loaded before its dependencies: {', '.join(pending)}"
            )
        self._loaded.append(name)

    def mark_unloaded(self, name: str) -> None:
        """Drop ``name`` from ``loaded``. Unknown names are ignored."""
        if name in self._loaded:
            self._loaded.remove(name)

    def is_loaded(self, name: str) -> bool:
        """Check whether a module is loaded."""
        return name in self._loaded

    # ----- Queries -----

    @property
    def available(self) -> Mapping[str, ModuleDescriptor]:
        """Read-only view of available descriptors by name."""
        return MappingProxyType(self._available)

    @property
    def loaded(self) -> list[str]:
        """Loaded module names in load order (a copy)."""
        return list(self._loaded)

    def get(self, name: str) -> ModuleDescriptor | None:
        """Look up a descriptor by name. Returns None if not found."""
        return self._available.get(name)

    def has(self, name: str) -> bool:
        """Check whether a module is available."""
        return name in self._available

    def list(self, prefix: str | None = None) -> list[str]:
        """Return sorted list of available module names, optionally filtered."""
        names = sorted(self._available)
        if prefix is not None:
            names = [n for n in names if n.startswith(prefix)]
        return names

    def dependency_graph(self) -> dict[str, tuple[str, ...]]:
        """Module name -> declared dependencies for every available module."""
        return {name: d.dependencies for name, d in self._available.items()}

    def resolve_load_order(self, requested: Iterable[str]) -> list[str]:
        """Topological load order for ``requested`` plus transitive dependencies.

        Raises:
            CyclicDependencyError: If the requested graph contains a cycle.
            MissingDependencyError: If a name or dependency is not available.
        """
        return resolve_load_order(self.dependency_graph(), list(requested))

    def dependents_of(self, name: str) -> list[str]:
        """Loaded modules that depend on ``name`` directly or transitively, in load order."""
        affected = {name}
        result: list[str] = []
        for loaded_name in self._loaded:
            if loaded_name == name:
                continue
            deps = self._available[loaded_name].dependencies
            if any(dep in affected for dep in deps):
                affected.add(loaded_name)
                result.append(loaded_name)
        return result

    def find_capability(self, capability: str) -> list[str]:
        """Sorted names of available modules that declare ``capability``."""
        return sorted(name for name, d in self._available.items() if capability in d.capabilities)

    def info(self, name: str) -> dict[str, Any]:
        """Descriptor summary plus load status.

        Raises:
            MissingDependencyError: If ``name`` is not available.
        """
        descriptor = self._available.get(name)
        if descriptor is None:
            raise MissingDependencyError(missing=name)
        result = descriptor.summary()
        result["loaded"] = name in self._loaded
        result["dependents"] = self.dependents_of(name)
        return result

    # ----- Persistence -----

    def snapshot(self, installation_version: str | None = None) -> RegistrySnapshot:
        """Build the on-disk record of the current state."""
        return RegistrySnapshot(
            installation_version=installation_version,
            available={name: ModuleRecord(**d.summary()) for name, d in sorted(self._available.items())},
            loaded=list(self._loaded),
            updated_at=datetime.now(timezone.utc).isoformat(),
        )

    def save(self, path: Path | str | None = None, installation_version: str | None = None) -> Path | None:
        """Write the snapshot with a whole-file atomic replacement.

        Returns the path written, or None when no path is configured.
        """
        target = Path(path) if path is not None else self._state_path
        if target is None:
            return None
        if installation_version is None:
            installation_version = self.installation_version
        payload = self.snapshot(installation_version).model_dump(mode="json")
        atomic_write_text(target, json.dumps(payload, indent=2, sort_keys=True) + "\n")
        logger.debug("Registry state written to %s", target)
        return target

    @staticmethod
    def read_snapshot(path: Path | str) -> RegistrySnapshot | None:
        """Read a snapshot written by ``save()``. Returns None if the file is missing.

        Raises:
            InvalidInputError: If the file is not a valid snapshot.
        """
        path = Path(path)
        if not path.exists():
            return None
        try:
            return RegistrySnapshot.model_validate_json(path.read_text(encoding="utf-8"))
        except pydantic.ValidationError as e:
            raise InvalidInputError(message=f"Corrupt registry state at {path}: {e}") from e

    @property
    def state_path(self) -> Path | None:
        """Default persistence path."""
        return self._state_path

    # ----- Event System -----

    def on(self, event: str, callback: Callable[..., Any]) -> None:
        """Register an event callback.

        Args:
            event: 'register', 'unregister' or 'reset'.
            callback: Callable(name, descriptor) invoked on the event.

        Raises:
            InvalidInputError: If event name is invalid.
        """
        if event not in self._callbacks:
            raise InvalidInputError(message=f"Invalid event: {event}. Must be one of {', '.join(REGISTRY_EVENTS)}")
        self._callbacks[event].append(callback)

    def _trigger_event(self, event: str, name: str | None, descriptor: ModuleDescriptor | None) -> None:
        """Trigger all callbacks for an event. Errors are logged and swallowed."""
        for cb in list(self._callbacks.get(event, [])):
            try:
                cb(name, descriptor)
            except Exception as e:
                logger.error("Callback error for event '%s' on module '%s': %s", event, name, e)
