"""Shared test fixtures: descriptor factories, module sources and installations."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

import pytest

from shipwright.collaborators import DirectoryVersionSource
from shipwright.config import Config
from shipwright.module import ModuleDescriptor


# === Module source template ===

_MODULE_TEMPLATE = """\
class {class_name}:
    name = {name!r}
    version = {version!r}
    dependencies = {dependencies!r}
    capabilities = {capabilities!r}

    def init(self):
        return {init_result!r}
{methods}"""

_METHOD_TEMPLATE = """
    def {capability}(self, *args, **kwargs):
        return {name!r}
"""


def write_module_source(
    directory: Path,
    name: str,
    version: str = "1.0.0",
    dependencies: list[str] | None = None,
    capabilities: list[str] | None = None,
    init_result: Any = None,
) -> Path:
    """Write a descriptor source file ``<directory>/<name>.py``."""
    directory.mkdir(parents=True, exist_ok=True)
    caps = capabilities if capabilities is not None else [f"{name}_ping"]
    class_name = "".join(part.title() for part in name.split("_")) + "Module"
    source = _MODULE_TEMPLATE.format(
        class_name=class_name,
        name=name,
        version=version,
        dependencies=list(dependencies or []),
        capabilities=caps,
        init_result=init_result,
        methods="".join(_METHOD_TEMPLATE.format(capability=c, name=name) for c in caps),
    )
    path = directory / f"{name}.py"
    path.write_text(source, encoding="utf-8")
    return path


def write_tree(root: Path, version: str, modules: dict[str, list[str]]) -> Path:
    """Write an installation tree: a VERSION marker plus one source per module."""
    root.mkdir(parents=True, exist_ok=True)
    (root / "VERSION").write_text(f"{version}\n", encoding="utf-8")
    (root / "bin").mkdir(exist_ok=True)
    (root / "bin" / "README").write_text(f"release {version}\n", encoding="utf-8")
    for name, deps in modules.items():
        write_module_source(root / "modules", name, version=version, dependencies=deps)
    return root


# === Descriptor factory ===


@pytest.fixture
def lifecycle_log() -> list[tuple[str, str]]:
    """Records (hook, module) pairs in the order hooks ran."""
    return []


@pytest.fixture
def make_descriptor(lifecycle_log: list[tuple[str, str]]) -> Callable[..., ModuleDescriptor]:
    """Factory for in-memory descriptors whose hooks append to ``lifecycle_log``."""

    def factory(
        name: str,
        dependencies: tuple[str, ...] | list[str] = (),
        version: str = "1.0.0",
        capabilities: dict[str, Callable[..., Any]] | None = None,
        init: Callable[..., Any] | None = None,
        verify: Callable[..., Any] | None = None,
        cleanup: Callable[..., Any] | None = None,
    ) -> ModuleDescriptor:
        def default_init() -> None:
            lifecycle_log.append(("init", name))

        def default_cleanup() -> None:
            lifecycle_log.append(("cleanup", name))

        return ModuleDescriptor(
            name=name,
            version=version,
            init=init or default_init,
            dependencies=tuple(dependencies),
            handlers=capabilities or {},
            verify=verify,
            cleanup=cleanup or default_cleanup,
        )

    return factory


# === Installations ===


@dataclass
class Installation:
    root: Path
    releases: Path
    config: Config

    @property
    def live(self) -> Path:
        return self.root / "live"

    def source(self) -> DirectoryVersionSource:
        return DirectoryVersionSource(self.releases)


SCENARIO_V120 = {"config": [], "service": ["config"]}
SCENARIO_V130 = {"config": [], "service": ["config"], "monitor": ["config", "service"]}


@pytest.fixture
def installation(tmp_path: Path) -> Installation:
    """An installation at 1.2.0 (config, service) with 1.2.0 and 1.3.0 (adds monitor) published."""
    root = tmp_path / "app"
    releases = tmp_path / "releases"
    write_tree(root / "live", "1.2.0", SCENARIO_V120)
    write_tree(releases / "1.2.0", "1.2.0", SCENARIO_V120)
    write_tree(releases / "1.3.0", "1.3.0", SCENARIO_V130)

    config = Config(
        {
            "install": {"root": str(root)},
            "modules": {"search_paths": [str(root / "live" / "modules")]},
            "update": {"backup_retention": 2},
        }
    )
    return Installation(root=root, releases=releases, config=config)


@pytest.fixture
def module_writer() -> Callable[..., Path]:
    """Expose ``write_module_source`` to tests."""
    return write_module_source


@pytest.fixture
def tree_writer() -> Callable[..., Path]:
    """Expose ``write_tree`` to tests."""
    return write_tree
