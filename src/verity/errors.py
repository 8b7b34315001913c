"""Exceptions raised by the orchestration core."""

from __future__ import annotations


class VerityError(Exception):
    """Base class for all verity errors."""


class ConfigurationError(VerityError, ValueError):
    """Suite or plan configuration is invalid; nothing was executed."""


class DuplicateTestError(ConfigurationError):
    """Two test definitions in one suite share an id."""

    def __init__(self, test_id: str) -> None:
        self.test_id = test_id
        super().__init__(f"Duplicate test id '{test_id}'")


class MissingDependencyError(ConfigurationError):
    """A test depends on an id that is not part of the suite."""

    def __init__(self, test_id: str, missing_id: str) -> None:
        self.test_id = test_id
        self.missing_id = missing_id
        super().__init__(f"Test '{test_id}' depends on non-existent test '{missing_id}'")


class CircularDependencyError(ConfigurationError):
    """The dependency graph contains a cycle.

    Attributes:
    ----------
    cycle : list[str]
        Test ids along the cycle, first id repeated at the end.
    """

    def __init__(self, cycle: list[str]) -> None:
        self.cycle = cycle
        super().__init__(f"Circular dependency detected: {' -> '.join(cycle)}")


class ExecutionNotFoundError(VerityError, KeyError):
    """No execution is known under the given id."""

    def __init__(self, execution_id: str) -> None:
        self.execution_id = execution_id
        super().__init__(f"Execution state not found for ID: {execution_id}")

    def __str__(self) -> str:
        return self.args[0]


class NothingToRetryError(VerityError):
    """A retry was requested for an execution without failed tests."""


class OperationCancelled(VerityError):
    """Raised by test bodies that stop because their token was cancelled."""

    def __init__(self, reason: str = "cancelled") -> None:
        self.reason = reason
        super().__init__(reason)
