"""Descriptor validation for the registry system."""

from __future__ import annotations

import re

from shipwright.module import ModuleDescriptor
from shipwright.versioning import parse_version

__all__ = ["validate_descriptor", "MODULE_NAME_PATTERN"]

MODULE_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_]*(\.[a-z][a-z0-9_]*)*$")


def validate_descriptor(descriptor: ModuleDescriptor) -> list[str]:
    """Validate that a descriptor satisfies the module contract.

    Returns a list of validation error strings. Empty list means valid.
    """
    errors: list[str] = []

    if not descriptor.name or not MODULE_NAME_PATTERN.match(descriptor.name):
        errors.append(f"Invalid module name: {descriptor.name!r}")

    try:
        parse_version(descriptor.version)
    except ValueError:
        errors.append(f"Invalid semantic version: {descriptor.version!r}")

    if descriptor.init is None or not callable(descriptor.init):
        errors.append("Missing init hook")

    for hook_name in ("verify", "cleanup"):
        hook = getattr(descriptor, hook_name)
        if hook is not None and not callable(hook):
            errors.append(f"{hook_name} hook is not callable")

    if descriptor.name in descriptor.dependencies:
        errors.append("Module depends on itself")

    for cap in sorted(descriptor.capabilities):
        if descriptor.handler(cap) is None:
            errors.append(f"Capability '{cap}' has no handler")

    return errors
