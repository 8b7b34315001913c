"""Tests for verity.orchestration.resolver module."""

import pytest

from verity.enums import TestCategory, VerificationLevel
from verity.errors import CircularDependencyError, ConfigurationError, MissingDependencyError
from verity.models import TestDefinition, TestDependency, TestSuite, build_result
from verity.orchestration.resolver import DependencyResolver, GraphEdge


async def _noop():
    return build_result()


def make_test(
    test_id: str,
    dependencies: list[str] | None = None,
    level: VerificationLevel = VerificationLevel.MEDIUM,
    timeout: float | None = None,
) -> TestDefinition:
    """Helper to create a TestDefinition for testing."""
    return TestDefinition(
        id=test_id,
        name=f"Test {test_id}",
        execute=_noop,
        dependencies=dependencies or [],
        verification_level=level,
        timeout=timeout,
    )


@pytest.fixture
def resolver():
    return DependencyResolver()


class TestResolveDependencies:
    """Tests for edge extraction and validation."""

    def test_only_tests_with_dependencies_produce_edges(self, resolver):
        tests = [make_test("a"), make_test("b", ["a"]), make_test("c", ["a", "b"])]

        edges = resolver.resolve_dependencies(tests)

        assert edges == [
            TestDependency(test_id="b", depends_on=("a",)),
            TestDependency(test_id="c", depends_on=("a", "b")),
        ]

    def test_missing_dependency_names_both_ids(self, resolver):
        tests = [make_test("a", ["ghost"])]

        with pytest.raises(MissingDependencyError) as exc_info:
            resolver.resolve_dependencies(tests)

        assert str(exc_info.value) == "Test 'a' depends on non-existent test 'ghost'"
        assert isinstance(exc_info.value, ConfigurationError)

    def test_cycle_is_reported_with_its_path(self, resolver):
        tests = [make_test("A", ["B"]), make_test("B", ["C"]), make_test("C", ["A"])]

        with pytest.raises(CircularDependencyError) as exc_info:
            resolver.resolve_dependencies(tests)

        message = str(exc_info.value)
        assert message.startswith("Circular dependency detected:")
        for test_id in ("A", "B", "C"):
            assert test_id in message
        cycle = exc_info.value.cycle
        assert cycle[0] == cycle[-1]
        assert set(cycle) == {"A", "B", "C"}

    def test_self_dependency_is_a_cycle(self, resolver):
        with pytest.raises(CircularDependencyError):
            resolver.resolve_dependencies([make_test("a", ["a"])])


class TestExecutionOrder:
    """Tests for topological ordering."""

    def test_prerequisites_precede_dependents(self, resolver):
        tests = [
            make_test("deploy", ["build", "test"]),
            make_test("test", ["build"]),
            make_test("build"),
            make_test("lint"),
        ]
        edges = resolver.resolve_dependencies(tests)

        order = resolver.create_execution_order(tests, edges)

        assert sorted(order) == ["build", "deploy", "lint", "test"]
        assert order.index("build") < order.index("test") < order.index("deploy")

    def test_independent_tests_keep_input_order(self, resolver):
        tests = [make_test("c"), make_test("a"), make_test("b")]

        assert resolver.create_execution_order(tests, []) == ["c", "a", "b"]

    def test_dependencies_outside_the_run_are_ignored(self, resolver):
        tests = [make_test("b", ["a"])]
        edges = [TestDependency(test_id="b", depends_on=("a",))]

        assert resolver.create_execution_order(tests, edges) == ["b"]

    def test_two_test_chain(self, resolver):
        tests = [make_test("t1"), make_test("t2", ["t1"])]
        edges = resolver.resolve_dependencies(tests)

        assert resolver.create_execution_order(tests, edges) == ["t1", "t2"]


class TestParallelGroups:
    """Tests for wave computation."""

    def test_diamond_yields_three_waves(self, resolver):
        tests = [
            make_test("root"),
            make_test("left", ["root"]),
            make_test("right", ["root"]),
            make_test("join", ["left", "right"]),
        ]
        edges = resolver.resolve_dependencies(tests)

        groups = resolver.get_parallelizable_groups(tests, edges)

        assert groups == [["root"], ["left", "right"], ["join"]]

    def test_no_wave_contains_a_dependency_pair(self, resolver):
        tests = [
            make_test("a"),
            make_test("b", ["a"]),
            make_test("c", ["b"]),
            make_test("d"),
            make_test("e", ["d", "a"]),
        ]
        edges = resolver.resolve_dependencies(tests)
        dependency_map = {e.test_id: set(e.depends_on) for e in edges}

        groups = resolver.get_parallelizable_groups(tests, edges)

        for group in groups:
            for test_id in group:
                assert not dependency_map.get(test_id, set()) & set(group)
        assert [tid for group in groups for tid in group].count("c") == 1

    def test_empty_input(self, resolver):
        assert resolver.get_parallelizable_groups([], []) == []


class TestOptimizeExecutionOrder:
    """Tests for priority-based ordering within waves."""

    def test_critical_and_fast_tests_first_within_wave(self, resolver):
        tests = [
            make_test("low", level=VerificationLevel.LOW),
            make_test("slow_critical", level=VerificationLevel.CRITICAL, timeout=60),
            make_test("fast_critical", level=VerificationLevel.CRITICAL, timeout=5),
            make_test("after", ["low"], level=VerificationLevel.CRITICAL),
        ]
        edges = resolver.resolve_dependencies(tests)

        order = resolver.optimize_execution_order(tests, edges)

        assert order == ["fast_critical", "slow_critical", "low", "after"]

    def test_default_timeout_counts_as_thirty_seconds(self, resolver):
        tests = [make_test("default"), make_test("quick", timeout=10), make_test("long", timeout=45)]

        assert resolver.optimize_execution_order(tests, []) == ["quick", "default", "long"]

    def test_missing_timeout_uses_given_default(self, resolver):
        tests = [make_test("default"), make_test("quick", timeout=10), make_test("long", timeout=45)]

        assert resolver.optimize_execution_order(tests, [], default_timeout=5) == ["default", "quick", "long"]


class TestQueries:
    """Tests for dependency lookups."""

    @pytest.fixture
    def edges(self):
        return [
            TestDependency(test_id="b", depends_on=("a",)),
            TestDependency(test_id="c", depends_on=("b",)),
            TestDependency(test_id="d", depends_on=("a", "c")),
        ]

    def test_can_execute_test(self, resolver, edges):
        assert resolver.can_execute_test("a", edges, set())
        assert not resolver.can_execute_test("d", edges, {"a"})
        assert resolver.can_execute_test("d", edges, {"a", "c"})

    def test_immediate_dependencies(self, resolver, edges):
        assert resolver.get_immediate_dependencies("d", edges) == ["a", "c"]
        assert resolver.get_immediate_dependencies("a", edges) == []

    def test_transitive_dependencies(self, resolver, edges):
        assert set(resolver.get_transitive_dependencies("d", edges)) == {"a", "b", "c"}
        assert resolver.get_transitive_dependencies("b", edges) == ["a"]

    def test_dependent_tests(self, resolver, edges):
        assert resolver.get_dependent_tests("a", edges) == ["b", "d"]
        assert resolver.get_dependent_tests("d", edges) == []


class TestDependencyGraph:
    """Tests for graph export."""

    def test_edges_point_from_prerequisite_to_dependent(self, resolver):
        tests = [make_test("a"), make_test("b", ["a"])]
        edges = resolver.resolve_dependencies(tests)

        graph = resolver.create_dependency_graph(tests, edges)

        assert [node.id for node in graph.nodes] == ["a", "b"]
        assert graph.nodes[0].category == TestCategory.API_ENDPOINTS.value
        assert graph.edges == [GraphEdge(source="a", target="b", type="hard")]


class TestSuiteValidation:
    """Suites validate their graph on construction."""

    def test_cyclic_suite_is_rejected(self):
        with pytest.raises(CircularDependencyError):
            TestSuite(
                id="s",
                name="cyclic",
                tests=[make_test("A", ["B"]), make_test("B", ["C"]), make_test("C", ["A"])],
            )

    def test_duplicate_ids_are_rejected(self):
        with pytest.raises(ConfigurationError, match="dup"):
            TestSuite(id="s", name="dups", tests=[make_test("dup"), make_test("dup")])
