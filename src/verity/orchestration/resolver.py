"""Dependency graph resolution for test suites.

Builds dependency edges from test definitions, detects cycles with path
reporting, and derives execution orders:

- ``create_execution_order``: depth-first topological sort
- ``get_parallelizable_groups``: waves of mutually independent tests
- ``optimize_execution_order``: waves re-sorted by priority and timeout
"""

from __future__ import annotations

from collections.abc import Collection, Iterable, Sequence
from dataclasses import dataclass, field

from verity.errors import CircularDependencyError, MissingDependencyError
from verity.models.definition import TestDefinition
from verity.models.plan import TestDependency


DEFAULT_TIMEOUT_S = 30.0


@dataclass(frozen=True, slots=True)
class GraphNode:
    id: str
    name: str
    category: str
    verification_level: str


@dataclass(frozen=True, slots=True)
class GraphEdge:
    source: str  # prerequisite
    target: str  # dependent
    type: str = "hard"


@dataclass(frozen=True, slots=True)
class DependencyGraph:
    """Node and edge lists for visualizing a suite's dependencies."""

    nodes: list[GraphNode] = field(default_factory=list)
    edges: list[GraphEdge] = field(default_factory=list)


class DependencyResolver:
    """Pure graph computations over test definitions.

    Holds no state between calls. Edges pointing at ids outside the given
    test list are ignored by the ordering functions: those tests are not part
    of the run being planned.
    """

    def resolve_dependencies(self, tests: Sequence[TestDefinition]) -> list[TestDependency]:
        """Extract one edge per test with dependencies, then validate the graph.

        Raises:
            MissingDependencyError: A dependency id is not among ``tests``.
            CircularDependencyError: The dependencies form a cycle.
        """
        dependencies = [
            TestDependency(test_id=test.id, depends_on=tuple(test.dependencies))
            for test in tests
            if test.dependencies
        ]

        self._validate_dependencies(tests, dependencies)
        self._check_circular_dependencies(dependencies)

        return dependencies

    def create_execution_order(
        self,
        tests: Sequence[TestDefinition],
        dependencies: Iterable[TestDependency],
    ) -> list[str]:
        """Order test ids so that every prerequisite precedes its dependents."""
        test_ids = {test.id for test in tests}
        dependency_map = self._dependency_map(dependencies)

        visited: set[str] = set()
        visiting: list[str] = []
        order: list[str] = []

        def visit(test_id: str) -> None:
            if test_id in visited:
                return
            if test_id in visiting:
                cycle_start = visiting.index(test_id)
                raise CircularDependencyError(visiting[cycle_start:] + [test_id])

            visiting.append(test_id)
            for dep_id in dependency_map.get(test_id, ()):
                if dep_id in test_ids:
                    visit(dep_id)
            visiting.pop()

            visited.add(test_id)
            order.append(test_id)

        for test in tests:
            visit(test.id)

        return order

    def get_parallelizable_groups(
        self,
        tests: Sequence[TestDefinition],
        dependencies: Iterable[TestDependency],
    ) -> list[list[str]]:
        """Split the execution order into waves.

        A test joins a wave once all of its in-run dependencies sit in earlier
        waves, so tests within a wave never depend on each other.
        """
        dependencies = list(dependencies)
        order = self.create_execution_order(tests, dependencies)
        test_ids = set(order)
        dependency_map = self._dependency_map(dependencies)

        groups: list[list[str]] = []
        scheduled: set[str] = set()
        remaining = list(order)

        while remaining:
            group = [
                test_id
                for test_id in remaining
                if all(
                    dep_id in scheduled
                    for dep_id in dependency_map.get(test_id, ())
                    if dep_id in test_ids
                )
            ]
            # Acyclic input always yields a non-empty wave.
            scheduled.update(group)
            remaining = [test_id for test_id in remaining if test_id not in scheduled]
            groups.append(group)

        return groups

    def can_execute_test(
        self,
        test_id: str,
        dependencies: Iterable[TestDependency],
        resolved: Collection[str],
    ) -> bool:
        """Check if every prerequisite of ``test_id`` is in ``resolved``."""
        return all(dep_id in resolved for dep_id in self.get_immediate_dependencies(test_id, dependencies))

    def get_immediate_dependencies(self, test_id: str, dependencies: Iterable[TestDependency]) -> list[str]:
        for dependency in dependencies:
            if dependency.test_id == test_id:
                return list(dependency.depends_on)
        return []

    def get_transitive_dependencies(self, test_id: str, dependencies: Iterable[TestDependency]) -> list[str]:
        """All tests ``test_id`` depends on, directly or indirectly."""
        dependency_map = self._dependency_map(dependencies)
        collected: list[str] = []
        seen: set[str] = {test_id}
        stack = list(reversed(dependency_map.get(test_id, ())))

        while stack:
            dep_id = stack.pop()
            if dep_id in seen:
                continue
            seen.add(dep_id)
            collected.append(dep_id)
            stack.extend(reversed(dependency_map.get(dep_id, ())))

        return collected

    def get_dependent_tests(self, test_id: str, dependencies: Iterable[TestDependency]) -> list[str]:
        """Tests that directly depend on ``test_id``."""
        return [dependency.test_id for dependency in dependencies if test_id in dependency.depends_on]

    def optimize_execution_order(
        self,
        tests: Sequence[TestDefinition],
        dependencies: Iterable[TestDependency],
        default_timeout: float = DEFAULT_TIMEOUT_S,
    ) -> list[str]:
        """Execution order with critical and fast tests surfaced early.

        Sorting happens within each parallel wave only (level descending, then
        timeout ascending), so the result is still a valid topological order.
        Tests without a timeout sort as if they had ``default_timeout``.
        """
        test_map = {test.id: test for test in tests}

        def sort_key(test_id: str) -> tuple[int, float]:
            test = test_map[test_id]
            timeout = test.timeout if test.timeout is not None else default_timeout
            return (-test.verification_level.priority, timeout)

        order: list[str] = []
        for group in self.get_parallelizable_groups(tests, dependencies):
            order.extend(sorted(group, key=sort_key))
        return order

    def create_dependency_graph(
        self,
        tests: Sequence[TestDefinition],
        dependencies: Iterable[TestDependency],
    ) -> DependencyGraph:
        nodes = [
            GraphNode(
                id=test.id,
                name=test.name,
                category=test.category.value,
                verification_level=test.verification_level.value,
            )
            for test in tests
        ]
        edges = [
            GraphEdge(source=dep_id, target=dependency.test_id, type=dependency.dependency_type)
            for dependency in dependencies
            for dep_id in dependency.depends_on
        ]
        return DependencyGraph(nodes=nodes, edges=edges)

    def _dependency_map(self, dependencies: Iterable[TestDependency]) -> dict[str, tuple[str, ...]]:
        return {dependency.test_id: dependency.depends_on for dependency in dependencies}

    def _validate_dependencies(
        self,
        tests: Sequence[TestDefinition],
        dependencies: Iterable[TestDependency],
    ) -> None:
        test_ids = {test.id for test in tests}
        for dependency in dependencies:
            for dep_id in dependency.depends_on:
                if dep_id not in test_ids:
                    raise MissingDependencyError(dependency.test_id, dep_id)

    def _check_circular_dependencies(self, dependencies: Iterable[TestDependency]) -> None:
        """Detect cycles using DFS with white/gray/black coloring."""
        dependency_map = self._dependency_map(dependencies)
        WHITE, GRAY, BLACK = 0, 1, 2
        color: dict[str, int] = {}
        path: list[str] = []

        def dfs(test_id: str) -> None:
            color[test_id] = GRAY
            path.append(test_id)

            for dep_id in dependency_map.get(test_id, ()):
                state = color.get(dep_id, WHITE)
                if state == GRAY:
                    cycle_start = path.index(dep_id)
                    raise CircularDependencyError(path[cycle_start:] + [dep_id])
                if state == WHITE:
                    dfs(dep_id)

            path.pop()
            color[test_id] = BLACK

        for test_id in dependency_map:
            if color.get(test_id, WHITE) == WHITE:
                dfs(test_id)
