"""Entry point resolution for discovered descriptor sources."""

from __future__ import annotations

import importlib.util
import inspect
import itertools
from pathlib import Path
from typing import Any

from shipwright.decorator import collect_capabilities
from shipwright.errors import ModuleLoadError
from shipwright.module import ModuleDescriptor
from shipwright.registry.metadata import merge_module_metadata

__all__ = ["resolve_entry_point", "build_descriptor"]

_import_counter = itertools.count()


def _is_module_class(cls: type, loaded_module_name: str) -> bool:
    """Check if a class looks like a shipwright module (duck-type detection)."""
    if cls.__module__ != loaded_module_name:
        return False
    return callable(getattr(cls, "init", None))


def _import_module_from_file(file_path: Path) -> Any:
    """Dynamically import a Python file and return the loaded module object.

    Every import gets a fresh module name so a staged tree never reuses a
    live tree's module object.
    """
    module_name = f"shipwright_ext_{file_path.stem}_{next(_import_counter)}"
    spec = importlib.util.spec_from_file_location(module_name, str(file_path))
    if spec is None or spec.loader is None:
        raise ModuleLoadError(
            module_name=str(file_path),
            reason=f"Cannot create import spec for {file_path}",
        )

    mod = importlib.util.module_from_spec(spec)
    try:
        spec.loader.exec_module(mod)
    except Exception as exc:
        raise ModuleLoadError(module_name=str(file_path), reason=f"Failed to import module: {exc}") from exc
    return mod


def resolve_entry_point(file_path: Path, meta: dict[str, Any] | None = None) -> type:
    """Resolve the module class from a discovered Python file.

    If meta contains an 'entry_point' key in format 'filename:ClassName',
    loads that specific class. Otherwise auto-infers the single module class.
    """
    loaded = _import_module_from_file(file_path)

    if meta and "entry_point" in meta:
        class_name = meta["entry_point"].split(":")[-1]
        cls = getattr(loaded, class_name, None)
        if cls is None:
            raise ModuleLoadError(
                module_name=str(file_path),
                reason=f"Entry point class '{class_name}' not found in {file_path.name}",
            )
        return cls

    candidates = [
        cls for _, cls in inspect.getmembers(loaded, inspect.isclass) if _is_module_class(cls, loaded.__name__)
    ]

    if len(candidates) == 1:
        return candidates[0]
    elif len(candidates) == 0:
        raise ModuleLoadError(module_name=str(file_path), reason="No module class with an init() hook found")
    else:
        raise ModuleLoadError(
            module_name=str(file_path),
            reason="Ambiguous entry point: multiple module classes found",
        )


def build_descriptor(
    cls: type,
    meta: dict[str, Any],
    default_name: str,
    source: Path | None = None,
    scope: str | None = None,
) -> ModuleDescriptor:
    """Instantiate a module class and wrap it in a ModuleDescriptor.

    Raises:
        ModuleLoadError: If instantiation fails or a declared capability has
            no implementation.
    """
    merged = merge_module_metadata(cls, meta)
    name = merged["name"] or default_name

    try:
        instance = cls()
    except Exception as e:
        raise ModuleLoadError(module_name=name, reason=f"Cannot instantiate {cls.__name__}: {e}") from e

    try:
        handlers = collect_capabilities(instance, merged["capabilities"])
    except ValueError as e:
        raise ModuleLoadError(module_name=name, reason=str(e)) from e

    verify = getattr(instance, "verify", None)
    cleanup = getattr(instance, "cleanup", None)

    return ModuleDescriptor(
        name=name,
        version=merged["version"],
        description=merged["description"],
        dependencies=tuple(merged["dependencies"]),
        capabilities=frozenset(handlers),
        handlers=handlers,
        init=instance.init,
        verify=verify if callable(verify) else None,
        cleanup=cleanup if callable(cleanup) else None,
        source=source,
        scope=scope,
    )
