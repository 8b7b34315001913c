"""Tests for verity.orchestration.executor module."""

import asyncio
import time

import pytest

from verity.config import EngineSettings
from verity.context import get_cancellation_token, get_test_context
from verity.enums import ErrorType, TestCategory, TestStatus, VerificationLevel
from verity.errors import OperationCancelled
from verity.models import TestDefinition, TestResult, build_result
from verity.orchestration.cancellation import CancellationSource
from verity.orchestration.executor import TestExecutor, categorize_error


def make_test(execute, test_id: str = "t", **kwargs) -> TestDefinition:
    """Helper to create a TestDefinition for testing."""
    return TestDefinition(id=test_id, name=kwargs.pop("name", f"Test {test_id}"), execute=execute, **kwargs)


@pytest.fixture
def executor():
    return TestExecutor(EngineSettings(default_timeout=5.0, retry_delay=0.01, cancel_grace_period=0.1))


class TestExecuteTest:
    """Tests for single test execution."""

    @pytest.mark.asyncio
    async def test_passing_body_gets_metadata_filled(self, executor):
        async def body():
            return TestResult(status=TestStatus.PASSED)

        test = make_test(
            body,
            category=TestCategory.SECURITY,
            verification_level=VerificationLevel.CRITICAL,
            requirements=["REQ-1"],
        )
        result = await executor.execute_test(test)

        assert result.status == TestStatus.PASSED
        assert result.test_id == "t"
        assert result.test_name == "Test t"
        assert result.category == TestCategory.SECURITY
        assert result.verification_level == VerificationLevel.CRITICAL
        assert result.requirements == ("REQ-1",)
        assert result.start_time <= result.end_time
        assert result.duration_ms >= 0

    @pytest.mark.asyncio
    async def test_none_result_counts_as_passed(self, executor):
        async def body():
            return None

        result = await executor.execute_test(make_test(body))

        assert result.status == TestStatus.PASSED

    @pytest.mark.asyncio
    async def test_mapping_result_is_validated(self, executor):
        async def body():
            return {"status": "warning", "details": {"performance_metrics": {"response_time": 12.5}}}

        result = await executor.execute_test(make_test(body))

        assert result.status == TestStatus.WARNING
        assert result.response_time == 12.5

    @pytest.mark.asyncio
    async def test_returned_test_id_is_replaced_by_definition_id(self, executor):
        async def body():
            return {"test_id": "something-else", "status": "passed"}

        result = await executor.execute_test(make_test(body, test_id="t1"))

        assert result.test_id == "t1"
        assert result.status == TestStatus.PASSED

    @pytest.mark.asyncio
    async def test_unexpected_return_type_fails(self, executor):
        async def body():
            return 42

        result = await executor.execute_test(make_test(body))

        assert result.status == TestStatus.FAILED
        assert result.error.type == ErrorType.VALIDATION

    @pytest.mark.asyncio
    async def test_non_terminal_status_is_a_failure(self, executor):
        async def body():
            return TestResult(status=TestStatus.IN_PROGRESS)

        result = await executor.execute_test(make_test(body))

        assert result.status == TestStatus.FAILED
        assert result.error.code == "INVALID_STATUS"

    @pytest.mark.asyncio
    async def test_raised_exception_becomes_failed_result(self, executor):
        async def body():
            raise ValueError("invalid payload shape")

        result = await executor.execute_test(make_test(body))

        assert result.status == TestStatus.FAILED
        assert result.error.type == ErrorType.VALIDATION
        assert result.error.message == "invalid payload shape"
        assert "ValueError" in result.error.stack

    @pytest.mark.asyncio
    async def test_sync_body_runs_in_worker_thread(self, executor):
        def body():
            time.sleep(0.01)
            return build_result(status=TestStatus.PASSED)

        result = await executor.execute_test(make_test(body))

        assert result.status == TestStatus.PASSED
        assert result.test_id == "t"

    @pytest.mark.asyncio
    async def test_body_receives_context(self, executor):
        seen = {}

        async def body(ctx):
            seen["test_id"] = ctx.test_id
            seen["attempt"] = ctx.attempt
            seen["current"] = get_test_context()
            seen["token"] = get_cancellation_token()
            return None

        await executor.execute_test(make_test(body, test_id="ctx"), execution_id="exec_1")

        assert seen["test_id"] == "ctx"
        assert seen["attempt"] == 1
        assert seen["current"].execution_id == "exec_1"
        assert seen["token"] is seen["current"].token
        assert get_test_context() is None


class TestTimeout:
    """Tests for the timeout race."""

    @pytest.mark.asyncio
    async def test_slow_body_times_out(self, executor):
        async def body():
            await asyncio.sleep(10)

        started = time.perf_counter()
        result = await executor.execute_test(make_test(body, timeout=0.05))
        elapsed = time.perf_counter() - started

        assert result.status == TestStatus.FAILED
        assert result.error.type == ErrorType.PERFORMANCE
        assert result.error.code == "TIMEOUT"
        assert elapsed < 1.0

    @pytest.mark.asyncio
    async def test_body_sees_token_cancelled_on_timeout(self, executor):
        observed = asyncio.Event()

        async def body(ctx):
            try:
                await asyncio.sleep(10)
            finally:
                if ctx.token.cancelled:
                    observed.set()

        result = await executor.execute_test(make_test(body, timeout=0.05))

        assert result.error.code == "TIMEOUT"
        assert observed.is_set()

    @pytest.mark.asyncio
    async def test_default_timeout_from_settings(self):
        executor = TestExecutor(EngineSettings(default_timeout=0.05, cancel_grace_period=0.1))

        async def body():
            await asyncio.sleep(10)

        result = await executor.execute_test(make_test(body))

        assert result.error.code == "TIMEOUT"

    @pytest.mark.asyncio
    async def test_duration_stops_at_deadline(self):
        executor = TestExecutor(EngineSettings(cancel_grace_period=0.3))
        finished = asyncio.Event()

        async def body():
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                # Keeps running past the grace period before giving up.
                await asyncio.sleep(0.5)
            finally:
                finished.set()

        started = time.perf_counter()
        result = await executor.execute_test(make_test(body, timeout=0.05))
        elapsed = time.perf_counter() - started
        await asyncio.wait_for(finished.wait(), timeout=2)

        assert result.error.code == "TIMEOUT"
        assert elapsed >= 0.3
        assert result.duration_ms < 250


class TestCancellation:
    """Tests for cooperative cancellation."""

    @pytest.mark.asyncio
    async def test_cancelled_token_skips_running_test(self, executor):
        source = CancellationSource()
        started = asyncio.Event()

        async def body():
            started.set()
            await asyncio.sleep(10)

        task = asyncio.create_task(executor.execute_test(make_test(body), source.token))
        await started.wait()
        source.cancel("user abort")
        result = await task

        assert result.status == TestStatus.SKIPPED
        assert result.error.code == "CANCELLED"
        assert result.details.extra("cancellation_reason") == "user abort"

    @pytest.mark.asyncio
    async def test_already_cancelled_token_never_runs_body(self, executor):
        source = CancellationSource()
        source.cancel()
        calls = []

        async def body():
            calls.append(1)

        result = await executor.execute_test(make_test(body), source.token)

        assert result.status == TestStatus.SKIPPED
        assert calls == []

    @pytest.mark.asyncio
    async def test_operation_cancelled_is_a_skip(self, executor):
        async def body():
            raise OperationCancelled("stopped by body")

        result = await executor.execute_test(make_test(body))

        assert result.status == TestStatus.SKIPPED

    @pytest.mark.asyncio
    async def test_cancel_test_by_id(self, executor):
        started = asyncio.Event()

        async def body():
            started.set()
            await asyncio.sleep(10)

        task = asyncio.create_task(executor.execute_test(make_test(body, test_id="long")))
        await started.wait()
        assert executor.running_tests == ["long"]
        assert executor.cancel_test("long") is True
        result = await task

        assert result.status == TestStatus.SKIPPED
        assert executor.running_tests == []
        assert executor.cancel_test("long") is False


class TestSetupAndCleanup:
    """Tests for per-test hooks."""

    @pytest.mark.asyncio
    async def test_setup_failure_skips_body_but_runs_cleanup(self, executor):
        calls = []

        async def setup():
            raise ConnectionError("db unreachable")

        async def body():
            calls.append("body")

        async def cleanup():
            calls.append("cleanup")

        result = await executor.execute_test(make_test(body, setup=setup, cleanup=cleanup))

        assert result.status == TestStatus.FAILED
        assert result.error.type == ErrorType.NETWORK
        assert calls == ["cleanup"]

    @pytest.mark.asyncio
    async def test_cleanup_failure_keeps_status(self, executor):
        async def body():
            return None

        def cleanup():
            raise RuntimeError("teardown broke")

        result = await executor.execute_test(make_test(body, cleanup=cleanup))

        assert result.status == TestStatus.PASSED
        assert result.details.extra("cleanup_error") == "RuntimeError: teardown broke"

    @pytest.mark.asyncio
    async def test_hooks_run_in_order(self, executor):
        calls = []

        def setup():
            calls.append("setup")

        async def body():
            calls.append("execute")

        async def cleanup():
            calls.append("cleanup")

        await executor.execute_test(make_test(body, setup=setup, cleanup=cleanup))

        assert calls == ["setup", "execute", "cleanup"]


class TestRetry:
    """Tests for execute_test_with_retry."""

    @pytest.mark.asyncio
    async def test_always_failing_retryable_test(self):
        executor = TestExecutor(EngineSettings(cancel_grace_period=0.1))
        attempts = []

        async def body(ctx):
            attempts.append((ctx.attempt, time.perf_counter()))
            raise RuntimeError("boom")

        result = await executor.execute_test_with_retry(
            make_test(body, retryable=True), max_retries=2, retry_delay=0.1
        )

        assert result.status == TestStatus.FAILED
        assert result.attempts == 3
        assert [a for a, _ in attempts] == [1, 2, 3]
        first_wait = attempts[1][1] - attempts[0][1]
        second_wait = attempts[2][1] - attempts[1][1]
        assert first_wait >= 0.09
        assert second_wait >= 0.19

    @pytest.mark.asyncio
    async def test_non_retryable_test_runs_once(self, executor):
        calls = []

        async def body():
            calls.append(1)
            raise RuntimeError("boom")

        result = await executor.execute_test_with_retry(make_test(body), max_retries=3, retry_delay=0)

        assert len(calls) == 1
        assert result.attempts == 1

    @pytest.mark.asyncio
    async def test_stops_retrying_after_success(self, executor):
        calls = []

        async def body():
            calls.append(1)
            if len(calls) < 2:
                raise RuntimeError("flaky")

        result = await executor.execute_test_with_retry(make_test(body, retryable=True), max_retries=3)

        assert result.status == TestStatus.PASSED
        assert result.attempts == 2

    @pytest.mark.asyncio
    async def test_cancellation_interrupts_retry_wait(self, executor):
        source = CancellationSource()

        async def body():
            raise RuntimeError("boom")

        task = asyncio.create_task(
            executor.execute_test_with_retry(make_test(body, retryable=True), 5, 10.0, source.token)
        )
        await asyncio.sleep(0.05)
        source.cancel()
        result = await asyncio.wait_for(task, timeout=1.0)

        assert result.status == TestStatus.FAILED
        assert result.attempts == 1


class TestExecuteInParallel:
    """Tests for execute_tests_in_parallel."""

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded_and_order_kept(self, executor):
        running = 0
        peak = 0

        async def body():
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.02)
            running -= 1

        tests = [make_test(body, test_id=f"t{i}") for i in range(6)]
        results = await executor.execute_tests_in_parallel(tests, max_concurrency=2)

        assert peak == 2
        assert [r.test_id for r in results] == [f"t{i}" for i in range(6)]

    @pytest.mark.asyncio
    async def test_rejects_zero_concurrency(self, executor):
        with pytest.raises(ValueError):
            await executor.execute_tests_in_parallel([], max_concurrency=0)


class TestCategorizeError:
    """Tests for error classification."""

    @pytest.mark.parametrize(
        "error, expected",
        [
            (RuntimeError("Request timeout after 5s"), ErrorType.NETWORK),
            (RuntimeError("401 Unauthorized"), ErrorType.AUTHENTICATION),
            (RuntimeError("Validation failed for field title"), ErrorType.VALIDATION),
            (RuntimeError("Endpoint too slow"), ErrorType.PERFORMANCE),
            (RuntimeError("schema mismatch"), ErrorType.SCHEMA),
            (RuntimeError("403 Forbidden"), ErrorType.SECURITY),
            (RuntimeError("ECONNREFUSED 127.0.0.1:5432"), ErrorType.NETWORK),
            (RuntimeError("data integrity violated"), ErrorType.DATA_INTEGRITY),
            (RuntimeError("something odd"), ErrorType.UNKNOWN),
            (TimeoutError(), ErrorType.PERFORMANCE),
            (ConnectionResetError("peer reset"), ErrorType.NETWORK),
        ],
    )
    def test_classification(self, error, expected):
        assert categorize_error(error).type == expected

    def test_status_code_attribute_is_used(self):
        class HTTPError(Exception):
            status_code = 401

        error = categorize_error(HTTPError("request rejected"))

        assert error.type == ErrorType.AUTHENTICATION
        assert error.code == "401"

    def test_details_name_original_error(self):
        error = categorize_error(KeyError("missing"))

        assert error.details["original_error"] == "KeyError"
        assert "timestamp" in error.details
