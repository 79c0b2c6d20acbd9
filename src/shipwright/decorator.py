"""Capability decorator and helpers for class-based module sources."""

from __future__ import annotations

import inspect
from typing import Any, Callable

__all__ = ["capability", "collect_capabilities", "CAPABILITY_ATTR"]

CAPABILITY_ATTR = "__shipwright_capability__"


def capability(func: Callable[..., Any] | None = None, *, name: str | None = None) -> Any:
    """Mark a module method as a capability.

    Usable bare (``@capability``) or with an explicit name
    (``@capability(name="service_start")``). Undecorated methods can still be
    exposed by listing them in the class's ``capabilities`` attribute.
    """

    def wrap(f: Callable[..., Any]) -> Callable[..., Any]:
        setattr(f, CAPABILITY_ATTR, name or f.__name__)
        return f

    if func is not None:
        return wrap(func)
    return wrap


def collect_capabilities(instance: Any, declared: list[str] | tuple[str, ...] | None = None) -> dict[str, Callable[..., Any]]:
    """Build the capability -> bound callable map for a module instance.

    Declared names must resolve to callable attributes; decorated methods are
    added under their capability name.

    Raises:
        ValueError: If a declared capability has no callable implementation.
    """
    handlers: dict[str, Callable[..., Any]] = {}

    for attr_name, member in inspect.getmembers(type(instance), callable):
        cap_name = getattr(member, CAPABILITY_ATTR, None)
        if cap_name:
            handlers[cap_name] = getattr(instance, attr_name)

    for cap_name in declared or ():
        if cap_name in handlers:
            continue
        target = getattr(instance, cap_name, None)
        if target is None or not callable(target):
            raise ValueError(f"Declared capability '{cap_name}' has no callable implementation")
        handlers[cap_name] = target

    return handlers
