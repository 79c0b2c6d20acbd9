"""Tests for SelfUpdateEngine and the entry-point probe."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from shipwright.config import Config
from shipwright.errors import ApplyFailedError, ConfigError, VerifyFailedError
from shipwright.update.self_update import SelfUpdateEngine, probe_entry_point
from shipwright.update.types import TransactionStatus
from shipwright.utils.fs import tree_manifest

from tests.update.conftest import config_with

PASSING_SCRIPT = "#!/bin/sh\necho tool 1.0\nexit 0\n"

# Fails once the script runs from the live tree, passes from staging
LIVE_ONLY_FAILURE = '#!/bin/sh\ncase "$0" in\n  */live/*) echo "broken in place" >&2; exit 1 ;;\nesac\nexit 0\n'


def write_script(path: Path, body: str, executable: bool = True) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(body, encoding="utf-8")
    path.chmod(0o755 if executable else 0o644)
    return path


@pytest.fixture
def self_config(installation: Any) -> Config:
    for tree in (installation.live, installation.releases / "1.2.0", installation.releases / "1.3.0"):
        write_script(tree / "bin" / "tool", PASSING_SCRIPT)
    return config_with(
        installation.config,
        install={"entry_point": "bin/tool"},
        update={"probe_args": ["--version"]},
    )


class TestProbeEntryPoint:
    def test_missing(self, tmp_path: Path) -> None:
        (problem,) = probe_entry_point(tmp_path / "tool")
        assert problem.startswith("entry point missing")

    def test_not_executable(self, tmp_path: Path) -> None:
        path = write_script(tmp_path / "tool", PASSING_SCRIPT, executable=False)
        (problem,) = probe_entry_point(path)
        assert problem.startswith("entry point not executable")

    def test_executable_without_args_is_not_run(self, tmp_path: Path) -> None:
        path = write_script(tmp_path / "tool", "#!/bin/sh\nexit 9\n")
        assert probe_entry_point(path) == []

    def test_runs_with_args(self, tmp_path: Path) -> None:
        path = write_script(tmp_path / "tool", PASSING_SCRIPT)
        assert probe_entry_point(path, ["--version"], timeout=10) == []

    def test_nonzero_exit(self, tmp_path: Path) -> None:
        path = write_script(tmp_path / "tool", "#!/bin/sh\necho 'bad config' >&2\nexit 3\n")
        (problem,) = probe_entry_point(path, ["--version"], timeout=10)
        assert problem == "entry point exited with status 3: bad config"

    def test_timeout(self, tmp_path: Path) -> None:
        path = write_script(tmp_path / "tool", "#!/bin/sh\nsleep 5\n")
        with pytest.raises(TimeoutError):
            probe_entry_point(path, ["--version"], timeout=0.2)


class TestSelfUpdateEngine:
    def test_requires_entry_point(self, installation: Any) -> None:
        with pytest.raises(ConfigError, match="install.entry_point"):
            SelfUpdateEngine(installation.config, installation.source())

    def test_update_with_working_entry_point(self, self_config: Config, installation: Any) -> None:
        engine = SelfUpdateEngine(self_config, installation.source())
        txn = engine.run_update()
        assert txn.status is TransactionStatus.APPLIED
        assert engine.current_version() == "1.3.0"

    def test_staged_entry_point_missing(self, self_config: Config, installation: Any) -> None:
        (installation.releases / "1.3.0" / "bin" / "tool").unlink()
        before = tree_manifest(installation.live)
        engine = SelfUpdateEngine(self_config, installation.source())
        engine.begin_update()
        engine.stage()
        with pytest.raises(VerifyFailedError, match="entry point missing"):
            engine.verify()
        assert tree_manifest(installation.live) == before

    def test_staged_entry_point_fails_probe(self, self_config: Config, installation: Any) -> None:
        write_script(installation.releases / "1.3.0" / "bin" / "tool", "#!/bin/sh\nexit 2\n")
        engine = SelfUpdateEngine(self_config, installation.source())
        engine.begin_update()
        engine.stage()
        with pytest.raises(VerifyFailedError, match="status 2"):
            engine.verify()

    def test_post_swap_probe_failure_reverses(self, self_config: Config, installation: Any) -> None:
        write_script(installation.releases / "1.3.0" / "bin" / "tool", LIVE_ONLY_FAILURE)
        before = tree_manifest(installation.live)
        engine = SelfUpdateEngine(self_config, installation.source())
        engine.begin_update()
        engine.stage()
        txn = engine.verify()

        with pytest.raises(ApplyFailedError, match="broken in place") as exc_info:
            engine.apply()

        assert exc_info.value.details["rolled_back"] is True
        assert txn.status is TransactionStatus.ROLLED_BACK
        assert tree_manifest(installation.live) == before
        assert engine.backups.list() == []
        assert not engine.lock.is_held()
