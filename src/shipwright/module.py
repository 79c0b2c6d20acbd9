"""Module descriptor and lifecycle hook helpers."""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Callable, Iterable, Mapping

__all__ = ["ModuleDescriptor", "HookOutcome", "run_hook"]

Hook = Callable[..., Any]


def _ordered_unique(names: Iterable[str]) -> tuple[str, ...]:
    seen: set[str] = set()
    result: list[str] = []
    for name in names:
        if name not in seen:
            seen.add(name)
            result.append(name)
    return tuple(result)


@dataclass(frozen=True, eq=False)
class ModuleDescriptor:
    """Static metadata and lifecycle contract for one loadable module.

    Attributes:
        name: Unique module name.
        version: Semantic version string.
        init: Mandatory initialization hook.
        description: Human-readable summary.
        dependencies: Ordered set of module names this module needs loaded first.
        capabilities: Names of operations this module provides.
        handlers: Callable per capability name.
        verify: Optional pre-init verification hook.
        cleanup: Optional hook run on unload.
        source: File the descriptor was discovered in, if any.
        scope: Search-path scope the descriptor came from, if any.
    """

    name: str
    version: str
    init: Hook
    description: str = ""
    dependencies: tuple[str, ...] = ()
    capabilities: frozenset[str] = frozenset()
    handlers: Mapping[str, Callable[..., Any]] = field(default_factory=dict)
    verify: Hook | None = None
    cleanup: Hook | None = None
    source: Path | None = None
    scope: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "dependencies", _ordered_unique(self.dependencies))
        object.__setattr__(self, "capabilities", frozenset(self.capabilities) | frozenset(self.handlers))
        object.__setattr__(self, "handlers", MappingProxyType(dict(self.handlers)))

    def handler(self, capability: str) -> Callable[..., Any] | None:
        """Return the callable implementing ``capability``, or None."""
        return self.handlers.get(capability)

    def summary(self) -> dict[str, Any]:
        """Plain-data view used for persistence and status reporting."""
        return {
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "dependencies": list(self.dependencies),
            "capabilities": sorted(self.capabilities),
            "source": str(self.source) if self.source else None,
            "scope": self.scope,
        }


@dataclass
class HookOutcome:
    """Result of running one lifecycle hook."""

    ok: bool
    reason: str = ""
    error: Exception | None = None


def _accepts_argument(hook: Hook) -> bool:
    try:
        sig = inspect.signature(hook)
    except (TypeError, ValueError):
        return False
    for param in sig.parameters.values():
        if param.kind in (param.POSITIONAL_ONLY, param.POSITIONAL_OR_KEYWORD, param.VAR_POSITIONAL):
            return True
    return False


def run_hook(hook: Hook, context: Any = None) -> HookOutcome:
    """Run a lifecycle hook and interpret its return value.

    ``None``, ``True`` and ``0`` mean success. ``False`` and non-zero integers
    mean failure, as does raising. A hook that takes a positional parameter
    is passed ``context``.
    """
    try:
        result = hook(context) if _accepts_argument(hook) else hook()
    except Exception as e:
        return HookOutcome(ok=False, reason=f"{type(e).__name__}: {e}", error=e)

    if result is None or result is True:
        return HookOutcome(ok=True)
    if result is False:
        return HookOutcome(ok=False, reason="hook returned False")
    if isinstance(result, int) and not isinstance(result, bool):
        if result == 0:
            return HookOutcome(ok=True)
        return HookOutcome(ok=False, reason=f"hook returned status {result}")
    return HookOutcome(ok=True)
