"""Shared pytest fixtures for the registry test suite."""

from __future__ import annotations

from pathlib import Path
from typing import Callable

import pytest
import yaml

from shipwright.registry.registry import ModuleRegistry


@pytest.fixture
def registry() -> ModuleRegistry:
    """An empty registry with no persistence path."""
    return ModuleRegistry()


@pytest.fixture
def extensions_dir(tmp_path: Path, module_writer: Callable[..., Path]) -> Path:
    """A search path holding alpha, beta (needs alpha) and sub/gamma."""
    ext = tmp_path / "extensions"
    module_writer(ext, "alpha")
    module_writer(ext, "beta", dependencies=["alpha"])
    module_writer(ext / "sub", "gamma")
    return ext


@pytest.fixture
def meta_yaml(tmp_path: Path) -> Path:
    """A sample _meta.yaml file."""
    meta = {
        "description": "Overridden description from YAML",
        "version": "2.0.0",
        "dependencies": ["config", {"name": "service"}],
        "capabilities": ["monitor_check"],
    }
    path = tmp_path / "sample_meta.yaml"
    path.write_text(yaml.dump(meta, default_flow_style=False))
    return path
