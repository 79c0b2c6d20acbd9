"""Companion metadata loading for the registry system."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from shipwright.errors import ConfigError

logger = logging.getLogger(__name__)

__all__ = [
    "load_metadata",
    "parse_dependencies",
    "merge_module_metadata",
]


def load_metadata(meta_path: Path) -> dict[str, Any]:
    """Load a *_meta.yaml companion metadata file.

    Returns empty dict if file does not exist (metadata is optional).
    """
    if not meta_path.exists():
        return {}

    content = meta_path.read_text(encoding="utf-8")
    try:
        parsed = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigError(message=f"Invalid YAML in metadata file: {meta_path}") from e

    if parsed is None:
        return {}
    if not isinstance(parsed, dict):
        raise ConfigError(message=f"Metadata file must be a YAML mapping: {meta_path}")
    return parsed


def parse_dependencies(deps_raw: list[Any]) -> list[str]:
    """Normalize dependency entries to module names.

    Accepts plain strings or mappings with a ``name`` key.
    """
    if not deps_raw:
        return []

    result: list[str] = []
    for dep in deps_raw:
        if isinstance(dep, str):
            name = dep
        elif isinstance(dep, dict):
            name = dep.get("name")
        else:
            name = None
        if not name:
            logger.warning("Dependency entry without a module name, skipping: %s", dep)
            continue
        result.append(name)
    return result


def merge_module_metadata(module_class: type, meta: dict[str, Any]) -> dict[str, Any]:
    """Merge YAML metadata over code-level attributes. YAML wins on conflicts."""
    code_deps = getattr(module_class, "dependencies", None) or []
    code_caps = getattr(module_class, "capabilities", None) or []

    deps = meta.get("dependencies")
    caps = meta.get("capabilities")

    return {
        "name": meta.get("name") or getattr(module_class, "name", None),
        "version": str(meta.get("version") or getattr(module_class, "version", "0.0.0")),
        "description": meta.get("description") or getattr(module_class, "description", "") or "",
        "dependencies": parse_dependencies(deps) if deps is not None else parse_dependencies(list(code_deps)),
        "capabilities": list(caps) if caps is not None else list(code_caps),
    }
