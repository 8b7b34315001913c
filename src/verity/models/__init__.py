"""Data model of the orchestration core."""

from verity.enums import (
    ErrorType,
    ExecutionMode,
    ExecutionPhase,
    SuiteStatus,
    TestCategory,
    TestStatus,
    VerificationLevel,
)
from verity.models.definition import TestDefinition, TestSuite
from verity.models.plan import ExecutionPlan, PlannedTest, TestDependency
from verity.models.result import (
    PerformanceMetrics,
    RequestDetails,
    ResponseDetails,
    SecurityCheckResult,
    TestDetails,
    TestError,
    TestResult,
    build_result,
)
from verity.models.state import ExecutionErrorRecord, ExecutionProgress, ExecutionState


__all__ = [
    "ErrorType",
    "ExecutionErrorRecord",
    "ExecutionMode",
    "ExecutionPhase",
    "ExecutionPlan",
    "ExecutionProgress",
    "ExecutionState",
    "PerformanceMetrics",
    "PlannedTest",
    "RequestDetails",
    "ResponseDetails",
    "SecurityCheckResult",
    "SuiteStatus",
    "TestCategory",
    "TestDefinition",
    "TestDependency",
    "TestDetails",
    "TestError",
    "TestResult",
    "TestStatus",
    "VerificationLevel",
    "build_result",
]
