"""Enumerations shared across the data model."""

from __future__ import annotations

from enum import Enum


class TestStatus(Enum):
    """Status of a single test."""

    __test__ = False  # Prevent pytest from collecting this as a test class

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"
    WARNING = "warning"

    @property
    def is_terminal(self) -> bool:
        """Check if this status ends a test."""
        return self not in {TestStatus.NOT_STARTED, TestStatus.IN_PROGRESS}

    @property
    def is_failure(self) -> bool:
        """Check if this status represents a failure."""
        return self is TestStatus.FAILED


class TestCategory(Enum):
    """Functional grouping of verification tests."""

    __test__ = False

    API_ENDPOINTS = "api_endpoints"
    SCHEMA_COMPATIBILITY = "schema_compatibility"
    AUTHENTICATION = "authentication"
    PERFORMANCE = "performance"
    DATA_INTEGRITY = "data_integrity"
    SECURITY = "security"
    BACKWARD_COMPATIBILITY = "backward_compatibility"


class VerificationLevel(Enum):
    """Priority of a test, highest first."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def priority(self) -> int:
        return _LEVEL_PRIORITY[self]


_LEVEL_PRIORITY = {
    VerificationLevel.CRITICAL: 4,
    VerificationLevel.HIGH: 3,
    VerificationLevel.MEDIUM: 2,
    VerificationLevel.LOW: 1,
}


class ErrorType(Enum):
    """Classification of test failures for reporting."""

    NETWORK = "network_error"
    AUTHENTICATION = "auth_error"
    VALIDATION = "validation_error"
    PERFORMANCE = "performance_error"
    SCHEMA = "schema_error"
    SECURITY = "security_error"
    DATA_INTEGRITY = "data_integrity_error"
    UNKNOWN = "unknown_error"


class SuiteStatus(Enum):
    """Lifecycle status of one suite execution."""

    IDLE = "idle"
    INITIALIZING = "initializing"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_final(self) -> bool:
        return self in {SuiteStatus.COMPLETED, SuiteStatus.FAILED, SuiteStatus.CANCELLED}


class ExecutionMode(Enum):
    """Preset scopes for a suite run."""

    FULL = "full"
    QUICK = "quick"
    TARGETED = "targeted"
    CONTINUOUS = "continuous"


class ExecutionPhase(Enum):
    """Phase of an execution in which a suite-level error occurred."""

    PLANNING = "planning"
    SETUP = "setup"
    EXECUTION = "execution"
    CLEANUP = "cleanup"
