"""Auto-load dispatcher: routes capability calls to the owning module."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from shipwright.context import Context
from shipwright.errors import AmbiguousCapabilityError, UnknownCapabilityError
from shipwright.middleware.base import Middleware
from shipwright.middleware.manager import MiddlewareManager

if TYPE_CHECKING:
    from shipwright.loader import DynamicLoader
    from shipwright.module import ModuleDescriptor

logger = logging.getLogger(__name__)

__all__ = ["AutoLoadDispatcher"]


class AutoLoadDispatcher:
    """Resolves a capability to its module, loads it on demand and calls it.

    Resolutions are cached until the registry changes. Calls are re-entrant:
    an ``init`` hook may call a capability, which loads its provider first.
    """

    def __init__(
        self,
        loader: DynamicLoader,
        middlewares: list[Middleware] | None = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            loader: Loader whose registry provides the capabilities.
            middlewares: Middlewares wrapped around every call, outermost first.
        """
        self._loader = loader
        self._registry = loader.registry
        self._cache: dict[str, str] = {}
        self._middleware_manager = MiddlewareManager()
        for mw in middlewares or []:
            self._middleware_manager.add(mw)

        for event in ("register", "unregister", "reset"):
            self._registry.on(event, self._invalidate)
        loader.attach_dispatcher(self)

    @property
    def middlewares(self) -> list[Middleware]:
        return self._middleware_manager.snapshot()

    def use(self, middleware: Middleware) -> AutoLoadDispatcher:
        """Add a middleware. Returns self for chaining."""
        self._middleware_manager.add(middleware)
        return self

    def remove(self, middleware: Middleware) -> bool:
        """Remove a middleware by identity."""
        return self._middleware_manager.remove(middleware)

    def _invalidate(self, name: str | None, descriptor: ModuleDescriptor | None) -> None:
        if self._cache:
            logger.debug("Capability cache invalidated (%s)", name or "reset")
            self._cache.clear()

    def resolve(self, capability: str) -> str:
        """Return the name of the single module providing ``capability``.

        Raises:
            UnknownCapabilityError: If no available module provides it.
            AmbiguousCapabilityError: If more than one module provides it.
        """
        cached = self._cache.get(capability)
        if cached is not None:
            return cached

        providers = self._registry.find_capability(capability)
        if not providers:
            raise UnknownCapabilityError(capability=capability)
        if len(providers) > 1:
            raise AmbiguousCapabilityError(capability=capability, modules=providers)

        self._cache[capability] = providers[0]
        return providers[0]

    def ensure_loaded(self, capability: str) -> str:
        """Resolve ``capability`` and load its module (and dependencies) if needed."""
        name = self.resolve(capability)
        if not self._registry.is_loaded(name):
            logger.debug("Auto-loading '%s' for capability '%s'", name, capability)
            self._loader.load([name])
        return name

    def call(self, capability: str, *args: Any, **kwargs: Any) -> Any:
        """Invoke ``capability``, loading its module first when it is not active.

        Raises:
            UnknownCapabilityError: If no module provides the capability.
            AmbiguousCapabilityError: If several modules provide it.
            CyclicDependencyError: If auto-load would re-enter an initializing module.
            ModuleInitFailedError: If the provider (or a dependency) fails to load.
        """
        name = self.ensure_loaded(capability)
        descriptor = self._registry.available[name]
        handler = descriptor.handler(capability)
        if handler is None:
            raise UnknownCapabilityError(capability=capability)

        context = Context.create(dispatcher=self, config=self._loader.config).child(name)
        executed = self._middleware_manager.execute_before(capability, name, context)
        try:
            result = handler(*args, **kwargs)
        except Exception as e:
            self._middleware_manager.execute_on_error(capability, name, e, context, executed)
            raise
        return self._middleware_manager.execute_after(capability, name, result, context, executed)
