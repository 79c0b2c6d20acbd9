"""Load order resolution via Kahn's topological sort."""

from __future__ import annotations

import heapq
import logging
from typing import Iterable, Mapping, Sequence

from shipwright.errors import CyclicDependencyError, MissingDependencyError

logger = logging.getLogger(__name__)

__all__ = ["resolve_load_order", "collect_closure"]


def collect_closure(
    graph: Mapping[str, Sequence[str]],
    requested: Iterable[str],
) -> set[str]:
    """Return ``requested`` plus every transitive dependency.

    Args:
        graph: Mapping of module name -> dependency names for all available modules.
        requested: Names to start from.

    Raises:
        MissingDependencyError: If a requested name or a dependency is not in ``graph``.
    """
    closure: set[str] = set()
    stack: list[tuple[str, str | None]] = [(name, None) for name in sorted(set(requested), reverse=True)]
    while stack:
        name, requester = stack.pop()
        if name in closure:
            continue
        if name not in graph:
            raise MissingDependencyError(missing=name, requester=requester)
        closure.add(name)
        for dep in reversed(graph[name]):
            if dep not in closure:
                stack.append((dep, name))
    return closure


def resolve_load_order(
    graph: Mapping[str, Sequence[str]],
    requested: Iterable[str] | None = None,
) -> list[str]:
    """Resolve module load order using Kahn's topological sort.

    Ties between modules that are ready at the same time are broken by
    name, so the result is independent of discovery order.

    Args:
        graph: Mapping of module name -> dependency names for all available modules.
        requested: Names to load. If None, every module in ``graph`` is ordered.

    Returns:
        Names in load order (dependencies first), covering ``requested`` and
        their transitive dependencies.

    Raises:
        CyclicDependencyError: If circular dependencies are detected.
        MissingDependencyError: If a requested name or a dependency is unknown.
    """
    names = collect_closure(graph, graph.keys() if requested is None else requested)
    if not names:
        return []

    dependents: dict[str, set[str]] = {name: set() for name in names}
    in_degree: dict[str, int] = {name: 0 for name in names}
    for name in names:
        for dep in set(graph[name]):
            dependents[dep].add(name)
            in_degree[name] += 1

    ready = [name for name, degree in in_degree.items() if degree == 0]
    heapq.heapify(ready)

    load_order: list[str] = []
    while ready:
        name = heapq.heappop(ready)
        load_order.append(name)
        for dependent in dependents[name]:
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                heapq.heappush(ready, dependent)

    if len(load_order) < len(names):
        remaining = names - set(load_order)
        cycle_path = _extract_cycle(graph, remaining)
        logger.debug("Cycle among %s: %s", sorted(remaining), cycle_path)
        raise CyclicDependencyError(cycle_path=cycle_path)

    return load_order


def _extract_cycle(graph: Mapping[str, Sequence[str]], remaining: set[str]) -> list[str]:
    """Extract a cycle path from the remaining unprocessed modules."""
    dep_map = {name: sorted(d for d in graph[name] if d in remaining) for name in remaining}

    # Follow edges from the smallest remaining node until we revisit one
    start = min(remaining)
    visited: list[str] = [start]
    visited_set: set[str] = {start}
    current = start

    while True:
        nexts = dep_map.get(current, [])
        if not nexts:
            break
        nxt = nexts[0]
        if nxt in visited_set:
            idx = visited.index(nxt)
            return visited[idx:] + [nxt]
        visited.append(nxt)
        visited_set.add(nxt)
        current = nxt

    return sorted(remaining) + [start]
