"""Test and suite definitions."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from verity.config import SuiteConfig
from verity.enums import TestCategory, VerificationLevel


if TYPE_CHECKING:
    from verity.context import TestContext
    from verity.models.result import TestResult


Hook = Callable[[], Awaitable[None] | None]
ExecuteFn = (
    Callable[[], Awaitable["TestResult | dict[str, Any] | None"]]
    | Callable[["TestContext"], Awaitable["TestResult | dict[str, Any] | None"]]
)


@dataclass(frozen=True, slots=True)
class TestDefinition:
    """Immutable description of one verification test.

    Attributes:
    ----------
    id : str
        Unique id within the suite; used for dependencies.
    execute : Callable
        Produces the result. May take no arguments or a single
        :class:`~verity.context.TestContext`.
    dependencies : tuple[str, ...]
        Ids of tests that must reach a terminal state first.
    timeout : float | None
        Seconds before the run is abandoned; ``None`` uses the engine default.
    retryable : bool
        Whether the body is safe to run more than once.
    """

    __test__ = False  # Prevent pytest from collecting this as a test class

    id: str
    name: str
    execute: ExecuteFn
    category: TestCategory = TestCategory.API_ENDPOINTS
    verification_level: VerificationLevel = VerificationLevel.MEDIUM
    description: str = ""
    requirements: tuple[str, ...] = ()
    dependencies: tuple[str, ...] = ()
    tags: frozenset[str] = frozenset()
    timeout: float | None = None
    retryable: bool = False
    setup: Hook | None = None
    cleanup: Hook | None = None

    def __post_init__(self) -> None:
        # Accept any iterable from callers but store hashable tuples.
        object.__setattr__(self, "requirements", tuple(self.requirements))
        object.__setattr__(self, "dependencies", tuple(self.dependencies))
        object.__setattr__(self, "tags", frozenset(self.tags))
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError(f"Test '{self.id}' timeout must be positive, got {self.timeout}")


@dataclass(frozen=True, slots=True)
class TestSuite:
    """A named, validated collection of test definitions.

    Construction fails with a :class:`~verity.errors.ConfigurationError` when
    ids repeat, a dependency is missing, or the dependencies form a cycle.
    """

    __test__ = False

    id: str
    name: str
    tests: tuple[TestDefinition, ...]
    config: SuiteConfig = field(default_factory=SuiteConfig)
    description: str = ""
    version: str = "1.0.0"
    global_setup: Hook | None = None
    global_cleanup: Hook | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "tests", tuple(self.tests))
        self.validate()

    def validate(self) -> None:
        """Check id uniqueness and the dependency graph."""
        from verity.errors import DuplicateTestError  # noqa: PLC0415
        from verity.orchestration.resolver import DependencyResolver  # noqa: PLC0415

        seen: set[str] = set()
        for test in self.tests:
            if test.id in seen:
                raise DuplicateTestError(test.id)
            seen.add(test.id)

        resolver = DependencyResolver()
        dependencies = resolver.resolve_dependencies(self.tests)
        resolver.create_execution_order(self.tests, dependencies)

    def get_test(self, test_id: str) -> TestDefinition | None:
        for test in self.tests:
            if test.id == test_id:
                return test
        return None

    def select(self, test_ids: Iterable[str]) -> list[TestDefinition]:
        """Definitions for the given ids, in suite order."""
        wanted = set(test_ids)
        return [test for test in self.tests if test.id in wanted]
