"""Directed graph of ``requires`` edges between resolved modules."""

from __future__ import annotations

import heapq
import logging
from dataclasses import dataclass, field
from typing import Optional

from stackforge.errors import CircularDependencyError

logger = logging.getLogger(__name__)


@dataclass
class DependencyNode:
    """A module in the graph.

    ``rank`` orders otherwise unrelated nodes (lower first).
    """
    name: str
    rank: int

    # Insertion-ordered so traversal is deterministic.
    depends_on: dict[str, str] = field(default_factory=dict)
    depended_by: set[str] = field(default_factory=set)

    def __hash__(self):
        return hash(self.name)


class DependencyGraph:
    """Module dependency graph with cycle detection and stable topological order."""

    def __init__(self) -> None:
        self._nodes: dict[str, DependencyNode] = {}

    def add_module(self, name: str, rank: int) -> DependencyNode:
        node = self._nodes.get(name)
        if node is None:
            node = DependencyNode(name=name, rank=rank)
            self._nodes[name] = node
        return node

    def add_dependency(self, dependent: str, dependency: str, requirement: str = "") -> None:
        """Record that *dependent* requires *dependency* (via *requirement*)."""
        if dependent == dependency:
            return
        self._nodes[dependent].depends_on.setdefault(dependency, requirement or dependency)
        self._nodes[dependency].depended_by.add(dependent)

    def __contains__(self, name: object) -> bool:
        return name in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def _ordered(self, names) -> list[str]:
        return sorted(names, key=lambda n: (self._nodes[n].rank, n))

    # -- Cycles ---------------------------------------------------------------

    def find_cycle(self) -> Optional[list[str]]:
        """Return the first cycle found as a closed path, e.g. ``[a, b, a]``."""
        visited: set[str] = set()
        rec_stack: set[str] = set()
        path: list[str] = []

        def dfs(name: str) -> Optional[list[str]]:
            visited.add(name)
            rec_stack.add(name)
            path.append(name)
            for dependency in self._ordered(self._nodes[name].depends_on):
                if dependency not in visited:
                    cycle = dfs(dependency)
                    if cycle:
                        return cycle
                elif dependency in rec_stack:
                    start = path.index(dependency)
                    return path[start:] + [dependency]
            rec_stack.remove(name)
            path.pop()
            return None

        for name in self._ordered(self._nodes):
            if name not in visited:
                cycle = dfs(name)
                if cycle:
                    return cycle
        return None

    def check_acyclic(self) -> None:
        """Raise :class:`CircularDependencyError` naming the exact cycle."""
        cycle = self.find_cycle()
        if cycle:
            logger.debug("Cycle found: %s", " -> ".join(cycle))
            raise CircularDependencyError(cycle)

    # -- Ordering -------------------------------------------------------------

    def topological_order(self) -> list[str]:
        """Dependencies before dependents; ties broken by rank (Kahn's algorithm)."""
        self.check_acyclic()
        in_degree = {name: len(node.depends_on) for name, node in self._nodes.items()}
        ready = [(node.rank, name) for name, node in self._nodes.items() if in_degree[name] == 0]
        heapq.heapify(ready)
        order: list[str] = []

        while ready:
            _, name = heapq.heappop(ready)
            order.append(name)
            for dependent in self._nodes[name].depended_by:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    heapq.heappush(ready, (self._nodes[dependent].rank, dependent))

        return order
