"""Fixtures for the update engine tests."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from shipwright.collaborators import ServiceStatus
from shipwright.config import Config
from shipwright.update.engine import UpdateEngine


def config_with(base: Config, **sections: dict[str, Any]) -> Config:
    """Copy ``base`` with the given top-level sections merged in."""
    data = base.to_dict()
    for section, values in sections.items():
        data.setdefault(section, {}).update(values)
    return Config(data)


class FakeService:
    """ServiceController double that records actions."""

    def __init__(self, status: ServiceStatus = ServiceStatus.RUNNING, restart_ok: bool = True) -> None:
        self.state = status
        self.restart_ok = restart_ok
        self.actions: list[tuple[str, str]] = []

    def start(self, name: str) -> bool:
        self.actions.append(("start", name))
        return True

    def stop(self, name: str) -> bool:
        self.actions.append(("stop", name))
        return True

    def restart(self, name: str) -> bool:
        self.actions.append(("restart", name))
        return self.restart_ok

    def status(self, name: str) -> ServiceStatus:
        return self.state


class StubSource:
    """VersionSource double that raises preset errors."""

    def __init__(
        self,
        latest: str = "1.3.0",
        latest_error: Exception | None = None,
        fetch_error: Exception | None = None,
    ) -> None:
        self._latest = latest
        self._latest_error = latest_error
        self._fetch_error = fetch_error

    def latest(self) -> str:
        if self._latest_error is not None:
            raise self._latest_error
        return self._latest

    def fetch(self, version: str, dest: Path, timeout: float | None = None) -> Path:
        if self._fetch_error is not None:
            raise self._fetch_error
        return dest


@pytest.fixture
def engine(installation: Any) -> UpdateEngine:
    """Engine over the 1.2.0 installation with 1.3.0 published."""
    return UpdateEngine(installation.config, installation.source())
