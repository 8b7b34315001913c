"""Verity - verification-test orchestration engine."""

from .config import EngineSettings, SuiteConfig
from .context import TestContext, get_cancellation_token, get_test_context
from .enums import (
    ErrorType,
    ExecutionMode,
    ExecutionPhase,
    SuiteStatus,
    TestCategory,
    TestStatus,
    VerificationLevel,
)
from .errors import (
    CircularDependencyError,
    ConfigurationError,
    DuplicateTestError,
    ExecutionNotFoundError,
    MissingDependencyError,
    NothingToRetryError,
    OperationCancelled,
    VerityError,
)
from .models import (
    ExecutionPlan,
    ExecutionState,
    PerformanceMetrics,
    TestDefinition,
    TestDetails,
    TestError,
    TestResult,
    TestSuite,
    build_result,
)
from .orchestration import (
    CancellationSource,
    CancellationToken,
    DependencyResolver,
    EventChannel,
    ExecutionEngine,
    TestExecutor,
)
from .reporting import ResultAggregator, percentile
from .reports import ConsoleReporter
from .tracing import init_tracing, trace_step
from .version import __version__


__all__ = [
    # Definitions
    "TestDefinition",
    "TestSuite",
    "SuiteConfig",
    "EngineSettings",
    # Orchestration
    "ExecutionEngine",
    "TestExecutor",
    "DependencyResolver",
    "EventChannel",
    "CancellationSource",
    "CancellationToken",
    "TestContext",
    "get_test_context",
    "get_cancellation_token",
    # Results
    "TestResult",
    "TestError",
    "TestDetails",
    "PerformanceMetrics",
    "ExecutionPlan",
    "ExecutionState",
    "build_result",
    "ResultAggregator",
    "percentile",
    "ConsoleReporter",
    # Enums
    "TestStatus",
    "TestCategory",
    "VerificationLevel",
    "ErrorType",
    "SuiteStatus",
    "ExecutionMode",
    "ExecutionPhase",
    # Errors
    "VerityError",
    "ConfigurationError",
    "DuplicateTestError",
    "MissingDependencyError",
    "CircularDependencyError",
    "ExecutionNotFoundError",
    "NothingToRetryError",
    "OperationCancelled",
    # Tracing
    "init_tracing",
    "trace_step",
    "__version__",
]
