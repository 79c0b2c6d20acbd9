"""Tests for ModuleDescriptor and lifecycle hook interpretation."""

from __future__ import annotations

from typing import Any

import pytest

from shipwright.module import ModuleDescriptor, run_hook


class TestRunHook:
    @pytest.mark.parametrize("result", [None, True, 0, "anything", {"status": "ok"}])
    def test_success_values(self, result: Any) -> None:
        assert run_hook(lambda: result).ok is True

    @pytest.mark.parametrize("result, reason", [(False, "hook returned False"), (2, "hook returned status 2")])
    def test_failure_values(self, result: Any, reason: str) -> None:
        outcome = run_hook(lambda: result)
        assert outcome.ok is False
        assert outcome.reason == reason
        assert outcome.error is None

    def test_exception_is_failure(self) -> None:
        def explode() -> None:
            raise OSError("no space")

        outcome = run_hook(explode)
        assert outcome.ok is False
        assert outcome.reason == "OSError: no space"
        assert isinstance(outcome.error, OSError)

    def test_context_passed_when_accepted(self) -> None:
        seen: list[Any] = []
        run_hook(lambda ctx: seen.append(ctx), context="ctx")
        run_hook(lambda *args: seen.append(args), context="ctx")
        assert seen == ["ctx", ("ctx",)]

    def test_keyword_only_hook_called_without_context(self) -> None:
        seen: list[Any] = []

        def hook(*, flag: bool = True) -> None:
            seen.append(flag)

        assert run_hook(hook, context="ctx").ok
        assert seen == [True]


class TestModuleDescriptor:
    def test_dependencies_deduplicated_in_order(self) -> None:
        d = ModuleDescriptor(name="m", version="1.0.0", init=lambda: None, dependencies=("b", "a", "b"))
        assert d.dependencies == ("b", "a")

    def test_handlers_imply_capabilities(self) -> None:
        d = ModuleDescriptor(name="m", version="1.0.0", init=lambda: None, handlers={"m_ping": lambda: "pong"})
        assert d.capabilities == frozenset({"m_ping"})
        assert d.handler("m_ping")() == "pong"
        assert d.handler("other") is None

    def test_handlers_read_only(self) -> None:
        d = ModuleDescriptor(name="m", version="1.0.0", init=lambda: None, handlers={"m_ping": lambda: 1})
        with pytest.raises(TypeError):
            d.handlers["x"] = lambda: 2  # type: ignore[index]

    def test_summary(self) -> None:
        d = ModuleDescriptor(
            name="m",
            version="1.0.0",
            init=lambda: None,
            description="demo",
            dependencies=("config",),
            handlers={"b_cap": lambda: 1, "a_cap": lambda: 2},
            scope="user",
        )
        assert d.summary() == {
            "name": "m",
            "version": "1.0.0",
            "description": "demo",
            "dependencies": ["config"],
            "capabilities": ["a_cap", "b_cap"],
            "source": None,
            "scope": "user",
        }
