"""Mutable record of one suite execution."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from verity.enums import ExecutionPhase, SuiteStatus, TestStatus
from verity.models.result import TestResult


@dataclass
class ExecutionProgress:
    """Counters derived from the id sets of an execution."""

    total_tests: int = 0
    completed_tests: int = 0
    failed_tests: int = 0
    skipped_tests: int = 0
    percent_complete: float = 0.0
    estimated_time_remaining_ms: float = 0.0

    @property
    def processed(self) -> int:
        return self.completed_tests + self.failed_tests + self.skipped_tests

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_tests": self.total_tests,
            "completed_tests": self.completed_tests,
            "failed_tests": self.failed_tests,
            "skipped_tests": self.skipped_tests,
            "percent_complete": self.percent_complete,
            "estimated_time_remaining_ms": self.estimated_time_remaining_ms,
        }


@dataclass(frozen=True)
class ExecutionErrorRecord:
    """Suite-level failure outside any single test (planning, setup, cleanup)."""

    phase: ExecutionPhase
    error: BaseException
    recoverable: bool
    test_id: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def message(self) -> str:
        return str(self.error) or type(self.error).__name__

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase.value,
            "error": f"{type(self.error).__name__}: {self.message}",
            "recoverable": self.recoverable,
            "test_id": self.test_id,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class ExecutionState:
    """The single mutable record of a run.

    Only the execution engine writes to this object. ``completed_tests`` holds
    tests that passed or ended with a warning; the three id sets are disjoint.
    """

    execution_id: str
    suite_id: str
    status: SuiteStatus = SuiteStatus.IDLE
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    current_test: str | None = None
    completed_tests: set[str] = field(default_factory=set)
    failed_tests: set[str] = field(default_factory=set)
    skipped_tests: set[str] = field(default_factory=set)
    progress: ExecutionProgress = field(default_factory=ExecutionProgress)
    results: list[TestResult] = field(default_factory=list)
    errors: list[ExecutionErrorRecord] = field(default_factory=list)
    parent_execution_id: str | None = None

    @property
    def resolved_tests(self) -> set[str]:
        """Ids that reached a terminal state in this execution."""
        return self.completed_tests | self.failed_tests | self.skipped_tests

    @property
    def is_active(self) -> bool:
        return not self.status.is_final

    @property
    def duration_ms(self) -> float:
        end = self.end_time or datetime.now(UTC)
        return (end - self.start_time).total_seconds() * 1000

    def result_for(self, test_id: str) -> TestResult | None:
        """Latest result recorded for a test id."""
        for result in reversed(self.results):
            if result.test_id == test_id:
                return result
        return None

    def results_with_status(self, status: TestStatus) -> list[TestResult]:
        return [r for r in self.results if r.status is status]

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-friendly dictionary."""
        return {
            "execution_id": self.execution_id,
            "suite_id": self.suite_id,
            "status": self.status.value,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "current_test": self.current_test,
            "completed_tests": sorted(self.completed_tests),
            "failed_tests": sorted(self.failed_tests),
            "skipped_tests": sorted(self.skipped_tests),
            "progress": self.progress.to_dict(),
            "results": [r.model_dump(mode="json") for r in self.results],
            "errors": [e.to_dict() for e in self.errors],
            "parent_execution_id": self.parent_execution_id,
        }
