"""Test result models."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field

from verity.enums import ErrorType, TestCategory, TestStatus, VerificationLevel


if TYPE_CHECKING:
    from verity.models.definition import TestDefinition


class TestError(BaseModel):
    """Classified error attached to a failed or cancelled result."""

    __test__ = False  # Prevent pytest from collecting this as a test class

    model_config = ConfigDict(frozen=True)

    type: ErrorType = ErrorType.UNKNOWN
    message: str
    stack: str | None = None
    code: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class PerformanceMetrics(BaseModel):
    """Performance measurements reported by a test body. Times are milliseconds."""

    model_config = ConfigDict(frozen=True)

    response_time: float = Field(ge=0)
    throughput: float | None = None
    memory_usage: float | None = None
    cpu_usage: float | None = None
    cache_hit_rate: float | None = None
    database_query_time: float | None = None


class SecurityCheckResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    check_name: str
    passed: bool
    details: str = ""
    severity: VerificationLevel = VerificationLevel.MEDIUM


class RequestDetails(BaseModel):
    model_config = ConfigDict(frozen=True)

    method: str
    url: str
    headers: dict[str, str] | None = None
    body: Any = None


class ResponseDetails(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: int
    headers: dict[str, str] | None = None
    body: Any = None
    response_time: float | None = None


class TestDetails(BaseModel):
    """Free-form payload of a result.

    Known keys are typed; anything else a test body reports is kept as extra data.
    """

    __test__ = False

    model_config = ConfigDict(frozen=True, extra="allow")

    request: RequestDetails | None = None
    response: ResponseDetails | None = None
    expected_schema: Any = None
    validation_errors: list[str] | None = None
    performance_metrics: PerformanceMetrics | None = None
    security_checks: list[SecurityCheckResult] | None = None

    def extra(self, key: str, default: Any = None) -> Any:
        """Look up a free-form key."""
        return (self.model_extra or {}).get(key, default)

    def with_extra(self, **values: Any) -> TestDetails:
        """Return a copy with additional free-form keys."""
        return TestDetails.model_validate({**self.model_dump(exclude_none=True), **values})


class TestResult(BaseModel):
    """Outcome of one execution attempt of a test.

    Fields left unset by a test body are filled in by the executor from the
    owning definition, so results leaving the executor are always complete.
    """

    __test__ = False

    model_config = ConfigDict(frozen=True)

    test_id: str | None = None
    test_name: str | None = None
    category: TestCategory | None = None
    status: TestStatus | None = None
    duration_ms: float = 0.0
    start_time: datetime | None = None
    end_time: datetime | None = None
    error: TestError | None = None
    details: TestDetails = Field(default_factory=TestDetails)
    verification_level: VerificationLevel | None = None
    requirements: tuple[str, ...] | None = None
    attempts: int = 1

    @property
    def response_time(self) -> float | None:
        """Response time from the performance metrics, if reported."""
        metrics = self.details.performance_metrics
        return metrics.response_time if metrics else None


def build_result(
    definition: TestDefinition | None = None,
    status: TestStatus = TestStatus.PASSED,
    *,
    error: TestError | str | None = None,
    details: TestDetails | dict[str, Any] | None = None,
    performance: PerformanceMetrics | dict[str, Any] | None = None,
    start_time: datetime | None = None,
    end_time: datetime | None = None,
    duration_ms: float | None = None,
) -> TestResult:
    """Construct a result in one call.

    Metadata comes from ``definition`` when given. Timing defaults to now, and
    ``duration_ms`` defaults to the distance between start and end.
    """
    end = end_time or datetime.now(UTC)
    start = start_time or end
    if duration_ms is None:
        duration_ms = (end - start).total_seconds() * 1000

    if isinstance(error, str):
        error = TestError(message=error)

    if details is None:
        details = TestDetails()
    elif isinstance(details, dict):
        details = TestDetails.model_validate(details)
    if performance is not None:
        details = TestDetails.model_validate(
            {**details.model_dump(exclude_none=True), "performance_metrics": performance}
        )

    fields: dict[str, Any] = {}
    if definition is not None:
        fields = {
            "test_id": definition.id,
            "test_name": definition.name,
            "category": definition.category,
            "verification_level": definition.verification_level,
            "requirements": definition.requirements,
        }

    return TestResult(
        **fields,
        status=status,
        duration_ms=duration_ms,
        start_time=start,
        end_time=end,
        error=error,
        details=details,
    )
