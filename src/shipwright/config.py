"""Configuration loading and validation."""

from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Any

import yaml

from shipwright.errors import ConfigError, ConfigNotFoundError

__all__ = ["Config", "DEFAULTS", "default_search_paths"]

DEFAULTS: dict[str, Any] = {
    "install": {
        "root": ".",
        "live_dir": "live",
        "version_file": "VERSION",
        "entry_point": None,
    },
    "modules": {
        "search_paths": None,
        "tree_dir": "modules",
        "max_depth": 8,
        "follow_symlinks": False,
    },
    "loader": {
        "unwind_on_failure": False,
    },
    "update": {
        "backup_retention": 3,
        "fetch_timeout": 300,
        "verify_timeout": 60,
        "required_entries": ["VERSION"],
        "checksum_file": "checksums.sha256",
        "probe_args": None,
    },
    "service": {
        "name": None,
    },
}


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def default_search_paths(live_dir: Path, tree_dir: str = "modules") -> list[Path]:
    """Module search paths in priority order: project-local, user scope, system scope."""
    config_home = os.environ.get("XDG_CONFIG_HOME") or os.path.join(os.path.expanduser("~"), ".config")
    return [
        live_dir / tree_dir,
        Path(config_home) / "shipwright" / "modules",
        Path("/etc/shipwright/modules"),
    ]


class Config:
    """Configuration accessor with dot-path key support.

    Values not present in the supplied data fall back to ``DEFAULTS``.
    """

    def __init__(self, data: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = _merge(DEFAULTS, data or {})

    @classmethod
    def load(cls, yaml_path: str | Path) -> Config:
        """Load configuration from a YAML file.

        Raises:
            ConfigNotFoundError: If the file does not exist.
            ConfigError: If the YAML is invalid or not a mapping.
        """
        path = Path(yaml_path)
        if not path.is_file():
            raise ConfigNotFoundError(config_path=str(path))

        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigError(f"Config must be a mapping, got {type(data).__name__}")

        retention = data.get("update", {}).get("backup_retention") if isinstance(data.get("update"), dict) else None
        if retention is not None and (not isinstance(retention, int) or retention < 1):
            raise ConfigError(f"update.backup_retention must be a positive integer, got {retention!r}")

        return cls(data)

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value by dot-path key."""
        parts = key.split(".")
        current: Any = self._data
        for part in parts:
            if isinstance(current, dict) and part in current:
                current = current[part]
            else:
                return default
        return current if current is not None else default

    def to_dict(self) -> dict[str, Any]:
        """Return a deep copy of the merged configuration."""
        return copy.deepcopy(self._data)
