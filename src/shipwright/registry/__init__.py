"""shipwright registry and module discovery system.

Provides descriptor registration, discovery, validation and load ordering.

Usage::

    from shipwright.registry import ModuleRegistry

    registry = ModuleRegistry(state_path="/opt/app/registry.state")
    registry.register(descriptor)
    order = registry.resolve_load_order(["monitor"])
"""

from __future__ import annotations

from shipwright.registry.dependencies import collect_closure, resolve_load_order
from shipwright.registry.entry_point import build_descriptor, resolve_entry_point
from shipwright.registry.metadata import load_metadata, merge_module_metadata, parse_dependencies
from shipwright.registry.registry import REGISTRY_EVENTS, ModuleRegistry
from shipwright.registry.scanner import SCOPES, scan_directory, scan_search_paths
from shipwright.registry.types import DiscoveredModule, ModuleRecord, RegistrySnapshot
from shipwright.registry.validation import MODULE_NAME_PATTERN, validate_descriptor

__all__ = [
    "DiscoveredModule",
    "MODULE_NAME_PATTERN",
    "ModuleRecord",
    "ModuleRegistry",
    "REGISTRY_EVENTS",
    "RegistrySnapshot",
    "SCOPES",
    "build_descriptor",
    "collect_closure",
    "load_metadata",
    "merge_module_metadata",
    "parse_dependencies",
    "resolve_entry_point",
    "resolve_load_order",
    "scan_directory",
    "scan_search_paths",
    "validate_descriptor",
]
