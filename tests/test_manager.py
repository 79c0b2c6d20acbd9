"""Tests for the Manager command surface."""

from __future__ import annotations

import io
import json
from pathlib import Path
from typing import Any, Callable

import pytest
import yaml

from shipwright.config import Config
from shipwright.errors import (
    DependentModulesActiveError,
    ExitCodes,
    MissingDependencyError,
    ModuleReloadFailedError,
)
from shipwright.manager import Manager
from shipwright.registry.registry import ModuleRegistry
from shipwright.update.self_update import SelfUpdateEngine
from shipwright.update.types import CheckKind, TransactionStatus


@pytest.fixture
def log_stream() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def manager(installation: Any, log_stream: io.StringIO) -> Manager:
    return Manager(installation.config, source=installation.source(), log_output=log_stream)


def last_entry(stream: io.StringIO) -> dict[str, Any]:
    return json.loads(stream.getvalue().splitlines()[-1])


class TestModuleCommands:
    def test_load_and_info(self, manager: Manager) -> None:
        assert manager.module_load(["service"]) == ["config", "service"]
        info = manager.module_info("config")
        assert info["loaded"] is True
        assert info["dependents"] == ["service"]
        assert info["version"] == "1.2.0"

    def test_list(self, manager: Manager) -> None:
        assert [entry["name"] for entry in manager.module_list()] == ["config", "service"]

    def test_unload_refused_while_dependents_loaded(self, manager: Manager) -> None:
        manager.module_load(["service"])
        with pytest.raises(DependentModulesActiveError):
            manager.module_unload("config")
        assert manager.module_unload("config", force=True) == ["service", "config"]
        assert manager.registry.loaded == []

    def test_call_auto_loads(self, manager: Manager) -> None:
        assert manager.call("service_ping") == "service"
        assert manager.registry.loaded == ["config", "service"]

    def test_info_unknown(self, manager: Manager) -> None:
        with pytest.raises(MissingDependencyError):
            manager.module_info("ghost")


class TestUpdateCommands:
    def test_check(self, manager: Manager) -> None:
        result = manager.update_check()
        assert result.kind is CheckKind.UPDATE_AVAILABLE
        assert result.latest_version == "1.3.0"

    def test_apply_logs_transaction(self, manager: Manager, log_stream: io.StringIO) -> None:
        txn = manager.update_apply()
        entry = last_entry(log_stream)
        assert entry["message"] == "Update applied"
        assert entry["transaction_id"] == txn.transaction_id
        assert entry["version"] == "1.3.0"
        assert entry["extra"]["from_version"] == "1.2.0"

    def test_apply_recovers_interrupted_apply_first(self, manager: Manager, installation: Any) -> None:
        manager.engine.begin_update()
        manager.engine.stage()
        manager.engine.verify()
        journal = manager.layout.journal_path
        journal.write_text(
            json.dumps(
                {
                    "transaction_id": manager.engine.transaction.transaction_id,
                    "live_path": str(installation.live),
                    "backup_tree": str(manager.layout.backups_dir / "never-created" / "tree"),
                    "staged_tree": str(manager.engine.transaction.staged_tree),
                    "current_version": "1.2.0",
                    "candidate_version": "1.3.0",
                    "started_at": "2026-10-19T00:00:00+00:00",
                }
            )
        )
        fresh = Manager(installation.config, source=installation.source(), log_output=io.StringIO())
        assert fresh.update_apply().candidate_version == "1.3.0"
        assert not journal.exists()

    def test_status(self, manager: Manager) -> None:
        status = manager.status()
        assert status["version"] == "1.2.0"
        assert status["inconsistent"] is False
        assert status["inconsistent_reason"] is None
        assert status["lock_holder"] is None
        assert status["available"] == ["config", "service"]
        assert status["loaded"] == []
        assert status["backups"] == []
        assert status["service"] is None

    def test_self_update_engine_selected(self, installation: Any) -> None:
        config_data = installation.config.to_dict()
        config_data["install"]["entry_point"] = "bin/tool"
        manager = Manager(Config(config_data), self_update=True, log_output=io.StringIO())
        assert isinstance(manager.engine, SelfUpdateEngine)


class TestRun:
    @pytest.mark.parametrize(
        ("command", "args", "expected"),
        [
            ("load", ("service",), ExitCodes.SUCCESS),
            ("load", ("ghost",), ExitCodes.MISSING_DEPENDENCY),
            ("info", ("ghost",), ExitCodes.MISSING_DEPENDENCY),
            ("list", (), ExitCodes.SUCCESS),
            ("call", ("nobody_provides_this",), ExitCodes.FAILURE),
            ("check", (), ExitCodes.SUCCESS),
            ("status", (), ExitCodes.SUCCESS),
            ("rollback", (), ExitCodes.NO_BACKUP_AVAILABLE),
            ("apply", (), ExitCodes.SUCCESS),
            ("frobnicate", (), ExitCodes.FAILURE),
        ],
    )
    def test_exit_codes(self, manager: Manager, command: str, args: tuple[str, ...], expected: int) -> None:
        assert manager.run(command, *args) == expected

    def test_failure_logged_once_with_code(self, manager: Manager, log_stream: io.StringIO) -> None:
        manager.run("load", "ghost")
        entries = [json.loads(line) for line in log_stream.getvalue().splitlines()]
        assert len(entries) == 1
        (entry,) = entries
        assert entry["level"] == "error"
        assert entry["extra"]["command"] == "load"
        assert entry["extra"]["code"] == "MISSING_DEPENDENCY"

    def test_failed_check_is_failure(self, installation: Any, log_stream: io.StringIO) -> None:
        manager = Manager(installation.config, log_output=log_stream)
        assert manager.run("check") == ExitCodes.FAILURE
        assert last_entry(log_stream)["message"] == "Update check failed"

    def test_unload_with_dependents(self, manager: Manager) -> None:
        manager.run("load", "service")
        assert manager.run("unload", "config") == ExitCodes.FAILURE
        assert manager.run("unload", "config", True) == ExitCodes.SUCCESS


def test_from_config_file(installation: Any, tmp_path: Path) -> None:
    path = tmp_path / "shipwright.yaml"
    path.write_text(yaml.safe_dump(installation.config.to_dict()))
    manager = Manager.from_config_file(path, log_output=io.StringIO())
    assert manager.layout.root == installation.root
    assert manager.status()["version"] == "1.2.0"


class TestRestart:
    """A new Manager over the same installation picks up the recorded loaded set."""

    def _restarted(self, installation: Any, stream: io.StringIO | None = None) -> Manager:
        return Manager(installation.config, source=installation.source(), log_output=stream or io.StringIO())

    def test_loaded_set_restored(self, manager: Manager, installation: Any) -> None:
        manager.module_load(["service"])
        status = self._restarted(installation).status()
        assert status["loaded"] == ["config", "service"]
        assert status["reload_failure"] is None

    def test_apply_after_restart_keeps_loaded_set(self, manager: Manager, installation: Any) -> None:
        manager.module_load(["service"])
        restarted = self._restarted(installation)
        restarted.update_apply()

        assert restarted.registry.loaded == ["config", "service"]
        snapshot = ModuleRegistry.read_snapshot(restarted.layout.registry_state)
        assert snapshot.loaded == ["config", "service"]
        assert snapshot.installation_version == "1.3.0"

    def test_unload_after_restart(self, manager: Manager, installation: Any) -> None:
        manager.module_load(["service"])
        assert self._restarted(installation).module_unload("service") == ["service"]
        assert self._restarted(installation).status()["loaded"] == ["config"]

    def test_module_that_no_longer_initializes(
        self, manager: Manager, installation: Any, module_writer: Callable[..., Path]
    ) -> None:
        manager.module_load(["service"])
        module_writer(installation.live / "modules", "service", version="1.2.0", dependencies=["config"], init_result=False)

        stream = io.StringIO()
        status = self._restarted(installation, stream).status()

        assert status["loaded"] == ["config"]
        assert status["reload_failure"]["modules"] == ["service"]
        entry = last_entry(stream)
        assert entry["level"] == "warn"
        assert entry["extra"]["code"] == "MODULE_RELOAD_FAILED"

    def test_corrupt_state_is_ignored(self, installation: Any) -> None:
        installation.root.joinpath("registry.state").write_text("{not json")
        assert self._restarted(installation).status()["loaded"] == []


class TestReloadFailureAfterUpdate:
    def test_apply_reports_modules_not_reloaded(
        self, manager: Manager, installation: Any, module_writer: Callable[..., Path]
    ) -> None:
        manager.module_load(["service"])
        module_writer(
            installation.releases / "1.3.0" / "modules",
            "service",
            version="1.3.0",
            dependencies=["config"],
            init_result=False,
        )

        with pytest.raises(ModuleReloadFailedError) as exc_info:
            manager.update_apply()

        txn = manager.engine.transaction
        assert txn.status is TransactionStatus.APPLIED
        assert txn.not_reloaded == ["service"]
        assert exc_info.value.details["transaction_id"] == txn.transaction_id
        assert exc_info.value.details["version"] == "1.3.0"
        assert not manager.engine.lock.is_held()

        status = manager.status()
        assert status["version"] == "1.3.0"
        assert status["loaded"] == ["config"]
        assert status["reload_failure"]["modules"] == ["service"]

    def test_run_exits_with_failure(
        self, manager: Manager, installation: Any, module_writer: Callable[..., Path], log_stream: io.StringIO
    ) -> None:
        manager.module_load(["service"])
        module_writer(
            installation.releases / "1.3.0" / "modules",
            "service",
            version="1.3.0",
            dependencies=["config"],
            init_result=False,
        )
        assert manager.run("apply") == ExitCodes.FAILURE
        assert last_entry(log_stream)["extra"]["code"] == "MODULE_RELOAD_FAILED"


def test_os_error_is_logged_once_and_fails(
    manager: Manager, log_stream: io.StringIO, monkeypatch: pytest.MonkeyPatch
) -> None:
    def disk_gone(*args: Any, **kwargs: Any) -> None:
        raise OSError(5, "Input/output error", "/srv/app/live")

    monkeypatch.setattr(manager.engine, "rollback", disk_gone)
    assert manager.run("rollback") == ExitCodes.FAILURE

    entries = [json.loads(line) for line in log_stream.getvalue().splitlines()]
    assert len(entries) == 1
    (entry,) = entries
    assert entry["level"] == "error"
    assert entry["extra"]["code"] == "OS_ERROR"
    assert entry["extra"]["details"] == {"errno": 5, "path": "/srv/app/live"}
