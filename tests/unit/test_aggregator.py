"""Tests for verity.reporting.aggregator module."""

from datetime import UTC, datetime, timedelta

import pytest

from verity.enums import ErrorType, SuiteStatus, TestCategory, TestStatus, VerificationLevel
from verity.models import ExecutionState, TestError, TestResult, TestDetails
from verity.reporting import ResultAggregator, percentile


def make_result(
    name: str = "t",
    status: TestStatus = TestStatus.PASSED,
    category: TestCategory = TestCategory.API_ENDPOINTS,
    level: VerificationLevel = VerificationLevel.MEDIUM,
    duration_ms: float = 10.0,
    response_time: float | None = None,
    error_type: ErrorType | None = None,
    **metrics,
) -> TestResult:
    """Helper to create a TestResult for testing."""
    details = TestDetails()
    if response_time is not None:
        details = TestDetails.model_validate(
            {"performance_metrics": {"response_time": response_time, **metrics}}
        )
    return TestResult(
        test_id=name,
        test_name=name,
        status=status,
        category=category,
        verification_level=level,
        duration_ms=duration_ms,
        details=details,
        error=TestError(type=error_type, message="failed") if error_type else None,
    )


@pytest.fixture
def aggregator():
    return ResultAggregator()


class TestPercentile:
    """Tests for the nearest-rank-below percentile."""

    def test_ten_values(self):
        values = [10, 20, 30, 40, 50, 60, 70, 80, 90, 100]

        assert percentile(values, 95) == 90
        assert percentile(values, 50) == 50
        assert percentile(values, 99) == 90
        assert percentile(values, 100) == 100
        assert percentile(values, 0) == 10

    def test_exact_integer_products_do_not_round_down(self):
        values = list(range(101))

        assert percentile(values, 29) == 29

    def test_empty_and_single(self):
        assert percentile([], 95) == 0.0
        assert percentile([7.5], 99) == 7.5

    def test_out_of_range(self):
        with pytest.raises(ValueError):
            percentile([1, 2], 101)


class TestAggregateByCategory:
    """Tests for category roll-ups."""

    def test_every_category_present(self, aggregator):
        results = [
            make_result("a", TestStatus.PASSED, duration_ms=10),
            make_result("b", TestStatus.FAILED, duration_ms=30),
            make_result("c", TestStatus.WARNING, category=TestCategory.SECURITY),
        ]

        aggregation = aggregator.aggregate_by_category(results)

        assert set(aggregation) == set(TestCategory)
        api = aggregation[TestCategory.API_ENDPOINTS]
        assert (api.total_tests, api.passed_tests, api.failed_tests) == (2, 1, 1)
        assert api.total_duration_ms == 40
        assert api.average_duration_ms == 20
        assert api.success_rate == 50.0
        assert aggregation[TestCategory.SECURITY].warning_tests == 1
        assert aggregation[TestCategory.PERFORMANCE].success_rate == 0.0

    def test_by_level(self, aggregator):
        results = [
            make_result("a", level=VerificationLevel.CRITICAL),
            make_result("b", TestStatus.SKIPPED, level=VerificationLevel.CRITICAL),
        ]

        aggregation = aggregator.aggregate_by_verification_level(results)

        critical = aggregation[VerificationLevel.CRITICAL]
        assert critical.total_tests == 2
        assert critical.skipped_tests == 1
        assert critical.success_rate == 50.0
        assert aggregation[VerificationLevel.LOW].total_tests == 0


class TestAggregateErrors:
    """Tests for error roll-ups."""

    def test_counts_and_most_common(self, aggregator):
        results = [
            make_result("a", TestStatus.FAILED, error_type=ErrorType.NETWORK, level=VerificationLevel.CRITICAL),
            make_result("b", TestStatus.FAILED, error_type=ErrorType.SCHEMA, category=TestCategory.SECURITY),
            make_result("c", TestStatus.FAILED, error_type=ErrorType.SCHEMA, category=TestCategory.SECURITY),
            make_result("d", TestStatus.FAILED),
            make_result("e", TestStatus.SKIPPED, error_type=ErrorType.UNKNOWN),
        ]

        errors = aggregator.aggregate_errors(results)

        assert errors.total_errors == 3
        assert errors.errors_by_type == {ErrorType.NETWORK: 1, ErrorType.SCHEMA: 2}
        assert errors.most_common_error_type == ErrorType.SCHEMA
        assert errors.most_problematic_category == TestCategory.SECURITY
        assert [r.test_id for r in errors.critical_errors] == ["a"]

    def test_ties_go_to_first_encountered(self, aggregator):
        results = [
            make_result("a", TestStatus.FAILED, error_type=ErrorType.SECURITY),
            make_result("b", TestStatus.FAILED, error_type=ErrorType.NETWORK),
        ]

        assert aggregator.aggregate_errors(results).most_common_error_type == ErrorType.SECURITY

    def test_no_errors(self, aggregator):
        errors = aggregator.aggregate_errors([make_result()])

        assert errors.total_errors == 0
        assert errors.most_common_error_type is None


class TestAggregatePerformance:
    """Tests for response-time statistics."""

    def test_percentiles_and_extremes(self, aggregator):
        results = [make_result(f"t{i}", response_time=i * 10.0) for i in range(10, 0, -1)]

        performance = aggregator.aggregate_performance(results)

        assert performance.total_measurements == 10
        assert performance.median_response_time == 50
        assert performance.p95_response_time == 90
        assert performance.p99_response_time == 90
        assert performance.min_response_time == 10
        assert performance.max_response_time == 100
        assert performance.average_response_time == 55
        assert [t.test_name for t in performance.slowest_tests] == ["t10", "t9", "t8", "t7", "t6"]
        assert [t.test_name for t in performance.fastest_tests] == ["t1", "t2", "t3", "t4", "t5"]

    def test_throughput_and_cache_averages(self, aggregator):
        results = [
            make_result("a", response_time=10, throughput=100, cache_hit_rate=0.5),
            make_result("b", response_time=20, throughput=300, cache_hit_rate=1.0),
            make_result("c", response_time=30),
            make_result("d"),
        ]

        performance = aggregator.aggregate_performance(results)

        assert performance.total_measurements == 3
        assert performance.average_throughput == 200
        assert performance.average_cache_hit_rate == 0.75

    def test_no_measurements(self, aggregator):
        performance = aggregator.aggregate_performance([make_result()])

        assert performance.total_measurements == 0
        assert performance.slowest_tests == []


class TestCalculateTrends:
    """Tests for run-over-run comparison."""

    def test_without_previous_results(self, aggregator):
        assert aggregator.calculate_trends([make_result()]).has_comparison is False

    def test_failures_and_performance_changes(self, aggregator):
        previous = [
            make_result("login", TestStatus.FAILED, duration_ms=10, response_time=100),
            make_result("search", duration_ms=10, response_time=100),
            make_result("list", duration_ms=10, response_time=100),
            make_result("detail", duration_ms=10, response_time=100),
        ]
        current = [
            make_result("login", duration_ms=20, response_time=100),
            make_result("search", TestStatus.FAILED, duration_ms=20, response_time=125),
            make_result("list", duration_ms=20, response_time=70),
            make_result("detail", duration_ms=20, response_time=115),
        ]

        trends = aggregator.calculate_trends(current, previous)

        assert trends.has_comparison is True
        assert trends.new_failures == ["search"]
        assert trends.resolved_failures == ["login"]
        assert trends.regressions == ["search"]
        assert trends.improvements == ["list"]
        assert trends.success_rate_change == 0.0
        assert trends.execution_time_change == 10.0


class TestAnalyzeCoverage:
    """Tests for coverage scoring."""

    def test_partial_coverage(self, aggregator):
        results = [
            make_result("a", category=TestCategory.API_ENDPOINTS, level=VerificationLevel.CRITICAL),
            make_result("b", category=TestCategory.SECURITY, level=VerificationLevel.HIGH),
            make_result("c", category=TestCategory.PERFORMANCE, level=VerificationLevel.HIGH),
        ]

        coverage = aggregator.analyze_coverage(results)

        assert coverage.coverage_score == pytest.approx(3 / 7 * 50 + 2 / 4 * 50)
        assert round(coverage.coverage_score, 1) == 46.4
        assert len(coverage.missing_categories) == 4
        assert coverage.missing_levels == [VerificationLevel.MEDIUM, VerificationLevel.LOW]
        assert coverage.category_coverage[TestCategory.SECURITY] == 1

    def test_full_coverage(self, aggregator):
        results = [make_result(c.value, category=c) for c in TestCategory] + [
            make_result(lvl.value, level=lvl) for lvl in VerificationLevel
        ]

        assert aggregator.analyze_coverage(results).coverage_score == 100.0

    def test_empty(self, aggregator):
        coverage = aggregator.analyze_coverage([])

        assert coverage.coverage_score == 0.0
        assert coverage.total_tests == 0


class TestSummarize:
    """Tests for execution summaries."""

    def make_state(self, *results: TestResult) -> ExecutionState:
        start = datetime.now(UTC)
        return ExecutionState(
            execution_id="exec_1",
            suite_id="suite",
            status=SuiteStatus.COMPLETED,
            start_time=start,
            end_time=start + timedelta(milliseconds=250),
            results=list(results),
        )

    def test_critical_failure_fails_overall(self, aggregator):
        state = self.make_state(
            make_result("a"),
            make_result("b", TestStatus.FAILED, level=VerificationLevel.CRITICAL),
        )

        summary = aggregator.summarize(state)

        assert summary.overall_status == TestStatus.FAILED
        assert summary.total_tests == 2
        assert summary.failed_tests == 1
        assert summary.execution_time_ms == pytest.approx(250)
        assert [r.test_id for r in summary.critical_failures] == ["b"]
        assert summary.to_dict()["overall_status"] == "failed"

    def test_non_critical_failure_is_a_warning(self, aggregator):
        state = self.make_state(make_result("a"), make_result("b", TestStatus.FAILED))

        assert aggregator.summarize(state).overall_status == TestStatus.WARNING

    def test_warning_result_is_a_warning(self, aggregator):
        state = self.make_state(make_result("a", TestStatus.WARNING))

        assert aggregator.summarize(state).overall_status == TestStatus.WARNING

    def test_all_passed(self, aggregator):
        state = self.make_state(make_result("a"), make_result("b", TestStatus.SKIPPED))

        assert aggregator.summarize(state).overall_status == TestStatus.PASSED

    def test_nothing_ran(self, aggregator):
        assert aggregator.summarize(self.make_state()).overall_status == TestStatus.SKIPPED
