"""Tests for load order resolution via Kahn's topological sort."""

from __future__ import annotations

import pytest

from shipwright.errors import CyclicDependencyError, MissingDependencyError
from shipwright.registry.dependencies import collect_closure, resolve_load_order


class TestNoDependencies:
    def test_no_deps_returns_all_sorted(self) -> None:
        """Independent modules come out in lexical order."""
        assert resolve_load_order({"c": [], "a": [], "b": []}) == ["a", "b", "c"]

    def test_empty_graph(self) -> None:
        assert resolve_load_order({}) == []


class TestOrdering:
    def test_chain(self) -> None:
        """Chain a -> b -> c loads c, b, a."""
        assert resolve_load_order({"a": ["b"], "b": ["c"], "c": []}) == ["c", "b", "a"]

    def test_diamond(self) -> None:
        """Diamond: a -> b,c; b,c -> d; d first, a last, b before c."""
        order = resolve_load_order({"a": ["b", "c"], "b": ["d"], "c": ["d"], "d": []})
        assert order == ["d", "b", "c", "a"]

    def test_requested_subset_pulls_transitive_dependencies(self) -> None:
        graph = {"monitor": ["config", "service"], "service": ["config"], "config": [], "extra": []}
        assert resolve_load_order(graph, ["monitor"]) == ["config", "service", "monitor"]

    def test_lexical_tie_break_among_ready_modules(self) -> None:
        graph = {"zeta": [], "alpha": [], "mid": ["zeta"]}
        assert resolve_load_order(graph) == ["alpha", "zeta", "mid"]

    def test_every_module_follows_its_dependencies(self) -> None:
        graph = {"e": ["d", "b"], "d": ["c"], "c": ["a"], "b": ["a"], "a": []}
        order = resolve_load_order(graph)
        for name, deps in graph.items():
            for dep in deps:
                assert order.index(dep) < order.index(name)


class TestDeterminism:
    def test_insertion_order_does_not_matter(self) -> None:
        graph_one = {"a": ["c"], "b": ["c"], "c": []}
        graph_two = {"c": [], "b": ["c"], "a": ["c"]}
        assert resolve_load_order(graph_one) == resolve_load_order(graph_two)

    def test_repeated_calls_agree(self) -> None:
        graph = {"x": ["y"], "y": [], "z": ["y"]}
        assert resolve_load_order(graph, ["z", "x"]) == resolve_load_order(graph, ["x", "z"])


class TestCycles:
    def test_two_node_cycle(self) -> None:
        with pytest.raises(CyclicDependencyError) as exc_info:
            resolve_load_order({"a": ["b"], "b": ["a"]})
        assert exc_info.value.cycle_path == ["a", "b", "a"]

    def test_three_node_cycle_reports_path(self) -> None:
        with pytest.raises(CyclicDependencyError) as exc_info:
            resolve_load_order({"a": ["b"], "b": ["c"], "c": ["a"]})
        path = exc_info.value.cycle_path
        assert path[0] == path[-1]
        assert set(path) == {"a", "b", "c"}

    def test_cycle_downstream_of_requested_module(self) -> None:
        """A module that merely depends on a cycle is not part of the reported path."""
        with pytest.raises(CyclicDependencyError) as exc_info:
            resolve_load_order({"app": ["b"], "b": ["c"], "c": ["b"]}, ["app"])
        assert exc_info.value.cycle_path == ["b", "c", "b"]

    def test_cycle_outside_request_is_ignored(self) -> None:
        graph = {"a": [], "x": ["y"], "y": ["x"]}
        assert resolve_load_order(graph, ["a"]) == ["a"]


class TestMissing:
    def test_unknown_dependency_reports_requester(self) -> None:
        with pytest.raises(MissingDependencyError) as exc_info:
            resolve_load_order({"a": ["ghost"]}, ["a"])
        assert exc_info.value.missing == "ghost"
        assert exc_info.value.requester == "a"

    def test_unknown_requested_name_has_no_requester(self) -> None:
        with pytest.raises(MissingDependencyError) as exc_info:
            resolve_load_order({"a": []}, ["nope"])
        assert exc_info.value.missing == "nope"
        assert exc_info.value.requester is None


class TestCollectClosure:
    def test_closure_includes_transitive(self) -> None:
        graph = {"a": ["b"], "b": ["c"], "c": [], "d": []}
        assert collect_closure(graph, ["a"]) == {"a", "b", "c"}
