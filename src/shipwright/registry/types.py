"""Registry types: DiscoveredModule, ModuleRecord, RegistrySnapshot."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from pydantic import BaseModel, Field

__all__ = [
    "DiscoveredModule",
    "ModuleRecord",
    "RegistrySnapshot",
]


@dataclass
class DiscoveredModule:
    """Intermediate representation of a discovered descriptor source file."""

    file_path: Path
    canonical_name: str
    meta_path: Path | None = None
    scope: str | None = None


class ModuleRecord(BaseModel):
    """Persisted summary of one available module."""

    name: str
    version: str
    description: str = ""
    dependencies: list[str] = Field(default_factory=list)
    capabilities: list[str] = Field(default_factory=list)
    source: str | None = None
    scope: str | None = None


class RegistrySnapshot(BaseModel):
    """On-disk record of the registry, written to ``registry.state``."""

    installation_version: str | None = None
    available: dict[str, ModuleRecord] = Field(default_factory=dict)
    loaded: list[str] = Field(default_factory=list)
    updated_at: str | None = None
