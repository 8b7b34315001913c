"""Dependency edges and execution plans."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

from verity.enums import ExecutionMode


@dataclass(frozen=True, slots=True)
class TestDependency:
    """Edge set of one test: it may start only after every id in ``depends_on``."""

    __test__ = False  # Prevent pytest from collecting this as a test class

    test_id: str
    depends_on: tuple[str, ...]
    dependency_type: Literal["hard"] = "hard"


@dataclass(frozen=True, slots=True)
class PlannedTest:
    test_id: str
    estimated_duration_s: float
    prerequisites: tuple[str, ...] = ()
    can_run_in_parallel: bool = True


@dataclass(frozen=True, slots=True)
class ExecutionPlan:
    """Resolved order and grouping for one execution."""

    suite_id: str
    execution_id: str
    mode: ExecutionMode
    planned_tests: tuple[PlannedTest, ...]
    estimated_duration_s: float
    dependencies: tuple[TestDependency, ...]
    execution_order: tuple[str, ...]
    parallel_groups: tuple[tuple[str, ...], ...] = field(default=())

    @property
    def total_tests(self) -> int:
        return len(self.execution_order)

    def dependencies_of(self, test_id: str) -> tuple[str, ...]:
        for dependency in self.dependencies:
            if dependency.test_id == test_id:
                return dependency.depends_on
        return ()
