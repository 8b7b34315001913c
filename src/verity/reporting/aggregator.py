"""Roll-ups, percentiles, trends and coverage over test results.

Everything here is a pure function of the results passed in; the aggregator
holds no state between calls and can be used on a finished or an in-flight
``ExecutionState.results`` list.
"""

from __future__ import annotations

import math
import statistics
from collections import Counter
from collections.abc import Hashable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, TypeVar

from verity.enums import ErrorType, TestCategory, TestStatus, VerificationLevel


if TYPE_CHECKING:
    from verity.models import ExecutionState, TestResult


K = TypeVar("K", bound=Hashable)

# Relative change in response time that counts as a regression or improvement.
TREND_THRESHOLD_PERCENT = 20.0
EXTREMES_LIMIT = 5


def percentile(sorted_values: Sequence[float], p: float) -> float:
    """Nearest-rank-below percentile of an ascending sequence.

    Uses ``index = floor(p / 100 * (n - 1))`` with no interpolation between
    neighbouring ranks. Returns 0.0 for an empty sequence.

    >>> percentile([10, 20, 30, 40, 50, 60, 70, 80, 90, 100], 95)
    90
    """
    if not sorted_values:
        return 0.0
    if not 0 <= p <= 100:
        raise ValueError(f"Percentile must be between 0 and 100, got {p}")
    index = math.floor(p * (len(sorted_values) - 1) / 100)
    return sorted_values[index]


def _success_rate(passed: int, total: int) -> float:
    return passed / total * 100 if total else 0.0


@dataclass
class StatusCounts:
    total_tests: int = 0
    passed_tests: int = 0
    failed_tests: int = 0
    skipped_tests: int = 0
    warning_tests: int = 0
    results: list[TestResult] = field(default_factory=list)

    @property
    def success_rate(self) -> float:
        """Share of passed tests in percent; 0 when empty."""
        return _success_rate(self.passed_tests, self.total_tests)

    def add(self, result: TestResult) -> None:
        self.total_tests += 1
        self.results.append(result)
        if result.status is TestStatus.PASSED:
            self.passed_tests += 1
        elif result.status is TestStatus.FAILED:
            self.failed_tests += 1
        elif result.status is TestStatus.SKIPPED:
            self.skipped_tests += 1
        elif result.status is TestStatus.WARNING:
            self.warning_tests += 1


@dataclass
class CategoryAggregation(StatusCounts):
    category: TestCategory = TestCategory.API_ENDPOINTS
    total_duration_ms: float = 0.0

    @property
    def average_duration_ms(self) -> float:
        return self.total_duration_ms / self.total_tests if self.total_tests else 0.0

    def add(self, result: TestResult) -> None:
        super().add(result)
        self.total_duration_ms += result.duration_ms


@dataclass
class LevelAggregation(StatusCounts):
    level: VerificationLevel = VerificationLevel.MEDIUM


@dataclass
class ErrorAggregation:
    total_errors: int
    errors_by_type: dict[ErrorType, int]
    errors_by_category: dict[TestCategory, int]
    critical_errors: list[TestResult]
    most_common_error_type: ErrorType | None
    most_problematic_category: TestCategory | None


@dataclass(frozen=True)
class TimedTest:
    test_name: str
    response_time: float


@dataclass
class PerformanceAggregation:
    """Response-time statistics in milliseconds."""

    total_measurements: int = 0
    average_response_time: float = 0.0
    median_response_time: float = 0.0
    p95_response_time: float = 0.0
    p99_response_time: float = 0.0
    min_response_time: float = 0.0
    max_response_time: float = 0.0
    average_throughput: float = 0.0
    average_cache_hit_rate: float = 0.0
    slowest_tests: list[TimedTest] = field(default_factory=list)
    fastest_tests: list[TimedTest] = field(default_factory=list)


@dataclass
class TrendAnalysis:
    has_comparison: bool = False
    success_rate_change: float = 0.0
    execution_time_change: float = 0.0
    new_failures: list[str] = field(default_factory=list)
    resolved_failures: list[str] = field(default_factory=list)
    regressions: list[str] = field(default_factory=list)
    improvements: list[str] = field(default_factory=list)


@dataclass
class CoverageAnalysis:
    total_tests: int
    category_coverage: dict[TestCategory, int]
    level_coverage: dict[VerificationLevel, int]
    missing_categories: list[TestCategory]
    missing_levels: list[VerificationLevel]
    coverage_score: float


@dataclass
class ResultSummary:
    """Headline numbers of one execution."""

    total_tests: int
    passed_tests: int
    failed_tests: int
    skipped_tests: int
    warning_tests: int
    execution_time_ms: float
    overall_status: TestStatus
    category_results: dict[TestCategory, CategoryAggregation]
    critical_failures: list[TestResult]
    performance: PerformanceAggregation

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_tests": self.total_tests,
            "passed_tests": self.passed_tests,
            "failed_tests": self.failed_tests,
            "skipped_tests": self.skipped_tests,
            "warning_tests": self.warning_tests,
            "execution_time_ms": self.execution_time_ms,
            "overall_status": self.overall_status.value,
            "category_results": {
                category.value: {
                    "total_tests": agg.total_tests,
                    "passed_tests": agg.passed_tests,
                    "failed_tests": agg.failed_tests,
                    "skipped_tests": agg.skipped_tests,
                    "warning_tests": agg.warning_tests,
                    "success_rate": agg.success_rate,
                    "average_duration_ms": agg.average_duration_ms,
                }
                for category, agg in self.category_results.items()
            },
            "critical_failures": [r.test_id for r in self.critical_failures],
            "performance": {
                "total_measurements": self.performance.total_measurements,
                "average_response_time": self.performance.average_response_time,
                "median_response_time": self.performance.median_response_time,
                "p95_response_time": self.performance.p95_response_time,
                "p99_response_time": self.performance.p99_response_time,
            },
        }


class ResultAggregator:
    """Summarizes result sets for reporting.

    Examples:
        aggregator = ResultAggregator()
        by_category = aggregator.aggregate_by_category(state.results)
        summary = aggregator.summarize(state)
    """

    def aggregate_by_category(self, results: Iterable[TestResult]) -> dict[TestCategory, CategoryAggregation]:
        """Counts per category. Every category is present, empty ones included."""
        aggregation = {category: CategoryAggregation(category=category) for category in TestCategory}
        for result in results:
            if result.category is not None:
                aggregation[result.category].add(result)
        return aggregation

    def aggregate_by_verification_level(
        self, results: Iterable[TestResult]
    ) -> dict[VerificationLevel, LevelAggregation]:
        aggregation = {level: LevelAggregation(level=level) for level in VerificationLevel}
        for result in results:
            if result.verification_level is not None:
                aggregation[result.verification_level].add(result)
        return aggregation

    def aggregate_errors(self, results: Iterable[TestResult]) -> ErrorAggregation:
        """Failed results that carry an error, counted by type and category."""
        failed = [r for r in results if r.status is TestStatus.FAILED and r.error is not None]

        by_type: Counter[ErrorType] = Counter()
        by_category: Counter[TestCategory] = Counter()
        for result in failed:
            by_type[result.error.type] += 1  # type: ignore[union-attr]
            if result.category is not None:
                by_category[result.category] += 1

        return ErrorAggregation(
            total_errors=len(failed),
            errors_by_type=dict(by_type),
            errors_by_category=dict(by_category),
            critical_errors=[r for r in failed if r.verification_level is VerificationLevel.CRITICAL],
            most_common_error_type=self._most_common(by_type),
            most_problematic_category=self._most_common(by_category),
        )

    def aggregate_performance(self, results: Iterable[TestResult]) -> PerformanceAggregation:
        measured = [r for r in results if r.details.performance_metrics is not None]
        if not measured:
            return PerformanceAggregation()

        metrics = [r.details.performance_metrics for r in measured]
        response_times = sorted(m.response_time for m in metrics)  # type: ignore[union-attr]
        throughputs = [m.throughput for m in metrics if m.throughput is not None and m.throughput > 0]  # type: ignore[union-attr]
        cache_hit_rates = [m.cache_hit_rate for m in metrics if m.cache_hit_rate is not None]  # type: ignore[union-attr]

        timed = sorted(
            (TimedTest(r.test_name or r.test_id or "", r.response_time or 0.0) for r in measured),
            key=lambda t: t.response_time,
            reverse=True,
        )

        return PerformanceAggregation(
            total_measurements=len(response_times),
            average_response_time=statistics.fmean(response_times),
            median_response_time=percentile(response_times, 50),
            p95_response_time=percentile(response_times, 95),
            p99_response_time=percentile(response_times, 99),
            min_response_time=response_times[0],
            max_response_time=response_times[-1],
            average_throughput=statistics.fmean(throughputs) if throughputs else 0.0,
            average_cache_hit_rate=statistics.fmean(cache_hit_rates) if cache_hit_rates else 0.0,
            slowest_tests=timed[:EXTREMES_LIMIT],
            fastest_tests=list(reversed(timed[-EXTREMES_LIMIT:])),
        )

    def calculate_trends(
        self,
        current: Sequence[TestResult],
        previous: Sequence[TestResult] | None = None,
    ) -> TrendAnalysis:
        """Compare two result sets of the same suite, matched by test name.

        A test whose response time grew by more than 20% is a regression; one
        that shrank by more than 20% is an improvement.
        """
        if not previous:
            return TrendAnalysis()

        current_failures = self._failed_names(current)
        previous_failures = self._failed_names(previous)

        previous_times: dict[str, float] = {}
        for result in previous:
            if result.test_name and result.response_time is not None:
                previous_times.setdefault(result.test_name, result.response_time)

        regressions: list[str] = []
        improvements: list[str] = []
        for result in current:
            before = previous_times.get(result.test_name or "")
            after = result.response_time
            if before is None or after is None or before == 0:
                continue
            change = (after - before) / before * 100
            if change > TREND_THRESHOLD_PERCENT:
                regressions.append(result.test_name)  # type: ignore[arg-type]
            elif change < -TREND_THRESHOLD_PERCENT:
                improvements.append(result.test_name)  # type: ignore[arg-type]

        return TrendAnalysis(
            has_comparison=True,
            success_rate_change=self._success_rate(current) - self._success_rate(previous),
            execution_time_change=self._average_duration(current) - self._average_duration(previous),
            new_failures=[name for name in current_failures if name not in previous_failures],
            resolved_failures=[name for name in previous_failures if name not in current_failures],
            regressions=regressions,
            improvements=improvements,
        )

    def analyze_coverage(self, results: Sequence[TestResult]) -> CoverageAnalysis:
        """Score 0-100: half for categories with a test, half for levels with a test."""
        category_coverage = {c: agg.total_tests for c, agg in self.aggregate_by_category(results).items()}
        level_coverage = {lvl: agg.total_tests for lvl, agg in self.aggregate_by_verification_level(results).items()}

        missing_categories = [c for c, count in category_coverage.items() if count == 0]
        missing_levels = [lvl for lvl, count in level_coverage.items() if count == 0]

        covered_categories = len(category_coverage) - len(missing_categories)
        covered_levels = len(level_coverage) - len(missing_levels)
        score = covered_categories / len(TestCategory) * 50 + covered_levels / len(VerificationLevel) * 50

        return CoverageAnalysis(
            total_tests=len(results),
            category_coverage=category_coverage,
            level_coverage=level_coverage,
            missing_categories=missing_categories,
            missing_levels=missing_levels,
            coverage_score=score,
        )

    def summarize(self, state: ExecutionState) -> ResultSummary:
        results = state.results
        counts = StatusCounts()
        for result in results:
            counts.add(result)

        critical_failures = [
            r for r in results if r.status is TestStatus.FAILED and r.verification_level is VerificationLevel.CRITICAL
        ]

        return ResultSummary(
            total_tests=counts.total_tests,
            passed_tests=counts.passed_tests,
            failed_tests=counts.failed_tests,
            skipped_tests=counts.skipped_tests,
            warning_tests=counts.warning_tests,
            execution_time_ms=state.duration_ms,
            overall_status=self.overall_status(results),
            category_results=self.aggregate_by_category(results),
            critical_failures=critical_failures,
            performance=self.aggregate_performance(results),
        )

    def overall_status(self, results: Sequence[TestResult]) -> TestStatus:
        """FAILED on a critical failure, WARNING on any other failure or warning.

        SKIPPED when nothing ran, PASSED otherwise.
        """
        ran = [r for r in results if r.status is not TestStatus.SKIPPED]
        if not ran:
            return TestStatus.SKIPPED
        if any(r.status is TestStatus.FAILED and r.verification_level is VerificationLevel.CRITICAL for r in ran):
            return TestStatus.FAILED
        if any(r.status in (TestStatus.FAILED, TestStatus.WARNING) for r in ran):
            return TestStatus.WARNING
        return TestStatus.PASSED

    @staticmethod
    def _most_common(counter: Counter[K]) -> K | None:
        # Counter.most_common keeps insertion order among equal counts.
        most = counter.most_common(1)
        return most[0][0] if most else None

    @staticmethod
    def _failed_names(results: Iterable[TestResult]) -> list[str]:
        names: dict[str, None] = {}
        for result in results:
            if result.status is TestStatus.FAILED and result.test_name:
                names.setdefault(result.test_name)
        return list(names)

    @staticmethod
    def _success_rate(results: Sequence[TestResult]) -> float:
        passed = sum(1 for r in results if r.status is TestStatus.PASSED)
        return _success_rate(passed, len(results))

    @staticmethod
    def _average_duration(results: Sequence[TestResult]) -> float:
        return statistics.fmean(r.duration_ms for r in results) if results else 0.0
