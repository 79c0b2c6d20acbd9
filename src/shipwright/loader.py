"""Dynamic loader: discovers descriptor sources and runs lifecycle transitions."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, Iterator, Sequence

from shipwright.context import Context
from shipwright.errors import (
    CyclicDependencyError,
    DependentModulesActiveError,
    ModuleCleanupFailedError,
    ModuleInitFailedError,
    ModuleReloadFailedError,
    ModuleVerificationFailedError,
    ShipwrightError,
)
from shipwright.module import ModuleDescriptor, run_hook
from shipwright.registry.entry_point import build_descriptor, resolve_entry_point
from shipwright.registry.metadata import load_metadata
from shipwright.registry.registry import ModuleRegistry
from shipwright.registry.scanner import scan_search_paths

if TYPE_CHECKING:
    from shipwright.config import Config

logger = logging.getLogger(__name__)

__all__ = ["DynamicLoader", "discover_descriptors"]


def discover_descriptors(
    search_paths: Sequence[Path | str],
    max_depth: int = 8,
    follow_symlinks: bool = False,
    errors: list[tuple[Path, ShipwrightError]] | None = None,
) -> list[ModuleDescriptor]:
    """Scan search paths and build a descriptor for every valid source.

    Sources that fail to import, resolve or instantiate are skipped with a
    warning, and appended to ``errors`` when a list is given. Results are
    sorted by module name.
    """
    discovered = scan_search_paths(search_paths, max_depth=max_depth, follow_symlinks=follow_symlinks)

    descriptors: dict[str, ModuleDescriptor] = {}
    for dm in discovered:
        try:
            meta = load_metadata(dm.meta_path) if dm.meta_path else {}
            cls = resolve_entry_point(dm.file_path, meta=meta)
            descriptor = build_descriptor(
                cls,
                meta,
                default_name=dm.canonical_name,
                source=dm.file_path,
                scope=dm.scope,
            )
        except ShipwrightError as e:
            logger.warning("Skipping descriptor source %s: %s", dm.file_path, e)
            if errors is not None:
                errors.append((dm.file_path, e))
            continue

        if descriptor.name in descriptors:
            logger.debug(
                "Module '%s' from %s shadowed by %s",
                descriptor.name,
                descriptor.source,
                descriptors[descriptor.name].source,
            )
            continue
        descriptors[descriptor.name] = descriptor

    return [descriptors[name] for name in sorted(descriptors)]


class DynamicLoader:
    """Discovers descriptors and drives verify/init/cleanup against a registry.

    Loading is synchronous and single-threaded. A lifecycle hook may call a
    capability through the dispatcher, which can trigger a nested ``load``;
    a nested load that would re-enter a module still in ``init`` fails with
    CyclicDependencyError.
    """

    def __init__(
        self,
        registry: ModuleRegistry,
        config: Config | None = None,
        search_paths: Sequence[Path | str] | None = None,
    ) -> None:
        """Initialize the loader.

        Args:
            registry: Registry shared with the dispatcher and update engine.
            config: Optional configuration (``modules.*`` and ``loader.*`` keys).
            search_paths: Default search paths for ``discover()``, highest
                priority first.
        """
        self._registry = registry
        self._config = config
        self._search_paths: list[Path] = [Path(p) for p in (search_paths or [])]
        self._initializing: list[str] = []
        self._dispatcher = None
        self._max_depth = 8
        self._follow_symlinks = False
        self._unwind_on_failure = False
        self._reload_failure: ModuleReloadFailedError | None = None
        if config is not None:
            self._max_depth = config.get("modules.max_depth", 8)
            self._follow_symlinks = config.get("modules.follow_symlinks", False)
            self._unwind_on_failure = bool(config.get("loader.unwind_on_failure", False))

    @property
    def registry(self) -> ModuleRegistry:
        return self._registry

    @property
    def search_paths(self) -> list[Path]:
        return list(self._search_paths)

    @property
    def config(self) -> Config | None:
        return self._config

    @property
    def reload_failure(self) -> ModuleReloadFailedError | None:
        """Error from the most recent ``resume()``, or None if it reloaded everything."""
        return self._reload_failure

    def attach_dispatcher(self, dispatcher: object) -> None:
        """Expose ``dispatcher`` to hooks through their Context."""
        self._dispatcher = dispatcher

    # ----- Discovery -----

    def discover(self, search_paths: Sequence[Path | str] | None = None) -> int:
        """Register descriptors found on the search paths.

        Paths are scanned in priority order (project-local, user, system); on
        a name collision the highest-priority path wins.

        Returns:
            Number of modules newly registered.
        """
        paths = [Path(p) for p in search_paths] if search_paths is not None else self._search_paths
        if search_paths is not None:
            self._search_paths = paths

        registered = 0
        for descriptor in discover_descriptors(paths, max_depth=self._max_depth, follow_symlinks=self._follow_symlinks):
            try:
                if self._registry.register(descriptor):
                    registered += 1
            except ShipwrightError as e:
                logger.warning("Not registering '%s' from %s: %s", descriptor.name, descriptor.source, e)

        if registered == 0:
            logger.debug("No new modules discovered in %s", [str(p) for p in paths])
        return registered

    # ----- Loading -----

    def load(self, names: Iterable[str], context: Context | None = None) -> list[str]:
        """Load ``names`` and their dependencies in resolved order.

        Each module runs ``verify`` (if present) then ``init`` before being
        marked loaded. The first failure aborts the rest of the batch.
        Modules that completed ``init`` earlier in the batch stay loaded
        unless ``loader.unwind_on_failure`` is set.

        Returns:
            Names newly loaded by this call, in load order.

        Raises:
            CyclicDependencyError: On a dependency cycle or re-entrant init.
            MissingDependencyError: If a name or dependency is unavailable.
            ModuleVerificationFailedError: If a verify hook fails.
            ModuleInitFailedError: If an init hook fails.
        """
        order = self._registry.resolve_load_order(names)
        pending = [name for name in order if not self._registry.is_loaded(name)]

        reentered = [name for name in pending if name in self._initializing]
        if reentered:
            raise CyclicDependencyError(cycle_path=[*self._initializing, reentered[0]])

        if context is None:
            context = Context.create(dispatcher=self._dispatcher, config=self._config)

        newly_loaded: list[str] = []
        try:
            for name in pending:
                # A nested load from an earlier init may have loaded it already
                if self._registry.is_loaded(name):
                    continue
                self._load_one(self._registry.available[name], context)
                newly_loaded.append(name)
        except ShipwrightError:
            if newly_loaded:
                if self._unwind_on_failure:
                    self._unwind(newly_loaded)
                else:
                    logger.warning(
                        "Load batch aborted; modules already initialized stay active: %s",
                        ", ".join(newly_loaded),
                    )
            self._persist()
            raise

        if newly_loaded:
            self._persist()
        return newly_loaded

    def _load_one(self, descriptor: ModuleDescriptor, context: Context) -> None:
        name = descriptor.name
        hook_context = context.child(name)

        if descriptor.verify is not None:
            outcome = run_hook(descriptor.verify, hook_context)
            if not outcome.ok:
                raise ModuleVerificationFailedError(
                    module_name=name,
                    version=descriptor.version,
                    reason=outcome.reason,
                    cause=outcome.error,
                )

        self._initializing.append(name)
        try:
            outcome = run_hook(descriptor.init, hook_context)
        finally:
            self._initializing.pop()

        if not outcome.ok:
            # A nested ShipwrightError from a capability call keeps its identity
            if isinstance(outcome.error, CyclicDependencyError):
                raise outcome.error
            raise ModuleInitFailedError(
                module_name=name,
                version=descriptor.version,
                reason=outcome.reason,
                cause=outcome.error,
            )

        self._registry.mark_loaded(name)
        logger.debug("Loaded module: %s %s", name, descriptor.version)

    def _unwind(self, names: list[str]) -> None:
        for name in reversed(names):
            try:
                self._cleanup_one(name)
            except ModuleCleanupFailedError as e:
                logger.error("Unwind left '%s' loaded: %s", name, e)

    # ----- Unloading -----

    def unload(self, name: str, force: bool = False) -> list[str]:
        """Run ``cleanup`` for ``name`` and remove it from ``loaded``.

        Args:
            name: Module to unload. Unloading a module that is not loaded is a no-op.
            force: Unload loaded dependents first, in reverse load order.

        Returns:
            Names unloaded, in the order they were unloaded.

        Raises:
            DependentModulesActiveError: If dependents are loaded and ``force`` is False.
            ModuleCleanupFailedError: If a cleanup hook fails; that module stays loaded.
        """
        if not self._registry.is_loaded(name):
            return []

        dependents = self._registry.dependents_of(name)
        if dependents and not force:
            raise DependentModulesActiveError(module_name=name, dependents=dependents)

        unloaded: list[str] = []
        try:
            for dependent in reversed(dependents):
                self._cleanup_one(dependent)
                unloaded.append(dependent)
            self._cleanup_one(name)
            unloaded.append(name)
        finally:
            if unloaded:
                self._persist()
        return unloaded

    def unload_all(self) -> list[str]:
        """Unload every loaded module in reverse load order."""
        unloaded: list[str] = []
        try:
            for name in reversed(self._registry.loaded):
                self._cleanup_one(name)
                unloaded.append(name)
        finally:
            if unloaded:
                self._persist()
        return unloaded

    def _cleanup_one(self, name: str) -> None:
        descriptor = self._registry.available[name]
        if descriptor.cleanup is not None:
            context = Context.create(dispatcher=self._dispatcher, config=self._config).child(name)
            outcome = run_hook(descriptor.cleanup, context)
            if not outcome.ok:
                raise ModuleCleanupFailedError(
                    module_name=name,
                    version=descriptor.version,
                    reason=outcome.reason,
                    cause=outcome.error,
                )
        self._registry.mark_unloaded(name)
        logger.debug("Unloaded module: %s", name)

    # ----- Suspend / resume around an installation swap -----

    def resume(self, names: Sequence[str]) -> list[str]:
        """Load ``names`` again after the registry was rebuilt.

        Names the registry no longer provides are skipped. The outcome is kept
        in ``reload_failure``.

        Returns:
            Names loaded by this call.

        Raises:
            ModuleReloadFailedError: If a survivor fails to load; the modules
                that did load stay loaded.
        """
        before = set(self._registry.loaded)
        failure = self._reload(names)
        if failure is not None:
            raise failure from failure.cause
        return [n for n in self._registry.loaded if n not in before]

    def _reload(self, names: Sequence[str]) -> ModuleReloadFailedError | None:
        self._reload_failure = None
        survivors = [n for n in names if self._registry.has(n)]
        dropped = [n for n in names if not self._registry.has(n)]
        if dropped:
            logger.info("Modules no longer provided: %s", ", ".join(dropped))
        if not survivors:
            return None
        try:
            self.load(survivors)
        except ShipwrightError as e:
            missing = [n for n in survivors if not self._registry.is_loaded(n)]
            self._reload_failure = ModuleReloadFailedError(modules=missing, reason=e.message, cause=e)
            logger.error("Reloading modules failed: %s", self._reload_failure.message)
        return self._reload_failure

    @contextmanager
    def suspended(self, reload: bool = True) -> Iterator[list[str]]:
        """Release loaded modules for the duration of a swap, then rebuild.

        On entry, loaded modules are cleaned up in reverse order. On exit the
        registry is reset, the search paths are re-discovered and the
        previously loaded names that still exist are loaded again. Yields the
        names that were loaded on entry.

        A reload failure does not escape the block; it is left in
        ``reload_failure`` for the caller to raise once the swap has settled.
        """
        previously_loaded = self._registry.loaded
        self._reload_failure = None
        self.unload_all()
        try:
            yield previously_loaded
        finally:
            self._registry.reset()
            self.discover()
            if reload:
                self._reload(previously_loaded)
            self._persist()

    def _persist(self) -> None:
        if self._registry.state_path is not None:
            self._registry.save()
