"""Execution of individual test definitions.

The executor runs one definition through setup, execute and cleanup, races
the body against its timeout and the caller's cancellation token, and turns
every outcome into a complete :class:`~verity.models.TestResult`.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import traceback
from collections.abc import Callable, Mapping, Sequence
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from verity.config import EngineSettings
from verity.context import TestContext, test_context_scope
from verity.enums import ErrorType, TestStatus
from verity.errors import OperationCancelled
from verity.models import TestDefinition, TestDetails, TestError, TestResult
from verity.orchestration.cancellation import CancellationSource, CancellationToken
from verity.orchestration.tracer import TestTracer


logger = logging.getLogger(__name__)


# Checked in order; the first keyword found in the message or code wins.
_ERROR_KEYWORDS: tuple[tuple[tuple[str, ...], ErrorType, str], ...] = (
    (("timeout", "timed out"), ErrorType.NETWORK, "TIMEOUT"),
    (("authentication", "unauthorized", "401"), ErrorType.AUTHENTICATION, "AUTH_FAILED"),
    (("validation", "invalid", "400"), ErrorType.VALIDATION, "VALIDATION_FAILED"),
    (("performance", "slow"), ErrorType.PERFORMANCE, "PERFORMANCE_ISSUE"),
    (("schema", "database"), ErrorType.SCHEMA, "SCHEMA_ISSUE"),
    (("security", "forbidden", "403"), ErrorType.SECURITY, "SECURITY_ISSUE"),
    (("network", "econnrefused", "connection"), ErrorType.NETWORK, "NETWORK_ERROR"),
    (("integrity", "data"), ErrorType.DATA_INTEGRITY, "DATA_INTEGRITY_ISSUE"),
)


def categorize_error(error: BaseException) -> TestError:
    """Classify an exception for reporting.

    Best-effort keyword matching over the message and any ``code`` or
    ``status_code`` attribute; unmatched errors are ``ErrorType.UNKNOWN``.
    """
    message = str(error) or type(error).__name__
    raw_code = getattr(error, "code", None) or getattr(error, "status_code", None)
    haystack = f"{message} {raw_code or ''}".lower()

    error_type = ErrorType.UNKNOWN
    code: str | None = str(raw_code) if raw_code is not None else None

    if isinstance(error, TimeoutError):
        error_type, code = ErrorType.PERFORMANCE, "TIMEOUT"
    elif isinstance(error, ConnectionError):
        error_type, code = ErrorType.NETWORK, "NETWORK_ERROR"
    else:
        for keywords, candidate, candidate_code in _ERROR_KEYWORDS:
            if any(keyword in haystack for keyword in keywords):
                error_type = candidate
                code = code or candidate_code
                break

    return TestError(
        type=error_type,
        message=message,
        stack="".join(traceback.format_exception(error)),
        code=code,
        details={
            "original_error": type(error).__name__,
            "timestamp": datetime.now(UTC).isoformat(),
        },
    )


def _accepts_context(fn: Callable[..., Any]) -> bool:
    """Check whether ``fn`` takes a positional argument for the test context."""
    try:
        signature = inspect.signature(fn)
    except (TypeError, ValueError):
        return False
    positional = [
        p
        for p in signature.parameters.values()
        if p.kind in (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD)
    ]
    return bool(positional) or any(
        p.kind is inspect.Parameter.VAR_POSITIONAL for p in signature.parameters.values()
    )


def _comparable(start: datetime | None, end: datetime | None) -> bool:
    if start is None or end is None:
        return False
    return (start.tzinfo is None) == (end.tzinfo is None)


async def invoke(fn: Callable[..., Any], *args: Any) -> Any:
    """Call a sync or async callable.

    Coroutine functions are awaited on the loop; plain callables run in a
    worker thread so they cannot stall timeouts of other tests.
    """
    if inspect.iscoroutinefunction(fn):
        return await fn(*args)
    value = await asyncio.to_thread(fn, *args)
    if inspect.isawaitable(value):
        value = await value
    return value


class TestExecutor:
    """Runs single test definitions with timeout, cancellation and retry.

    Examples:
        executor = TestExecutor()
        result = await executor.execute_test(definition)

        # Retry a flaky, retryable test up to twice
        result = await executor.execute_test_with_retry(definition, max_retries=2)
    """

    __test__ = False  # Prevent pytest from collecting this as a test class

    def __init__(self, settings: EngineSettings | None = None, tracer: TestTracer | None = None) -> None:
        self.settings = settings or EngineSettings()
        self.tracer = tracer or TestTracer(enabled=self.settings.enable_tracing)
        self._active: dict[str, CancellationSource] = {}

    @property
    def running_tests(self) -> list[str]:
        """Ids of tests currently being executed."""
        return list(self._active)

    def cancel_test(self, test_id: str) -> bool:
        """Signal a running test to stop. Returns False if it is not running."""
        source = self._active.get(test_id)
        if source is None:
            return False
        return source.cancel("Test execution was cancelled")

    async def execute_test(
        self,
        test: TestDefinition,
        token: CancellationToken | None = None,
        *,
        execution_id: str | None = None,
        attempt: int = 1,
    ) -> TestResult:
        """Execute one test through setup, execute and cleanup.

        Never raises for failures of the test itself: errors, timeouts and
        cancellation are all reported through the returned result.
        """
        source = CancellationSource(parent=token)
        self._active[test.id] = source
        ctx = TestContext(definition=test, token=source.token, execution_id=execution_id, attempt=attempt)
        try:
            with self.tracer.span(test, execution_id) as span:
                result = await self._run_lifecycle(test, ctx, source)
                self.tracer.record(span, result)
                return result
        finally:
            if self._active.get(test.id) is source:
                del self._active[test.id]
            source.close()

    async def execute_test_with_retry(
        self,
        test: TestDefinition,
        max_retries: int = 3,
        retry_delay: float | None = None,
        token: CancellationToken | None = None,
        *,
        execution_id: str | None = None,
    ) -> TestResult:
        """Execute a test, retrying failed attempts of retryable tests.

        Waits ``retry_delay * attempt`` seconds before each retry, for at most
        ``max_retries + 1`` attempts in total. The last result is returned with
        ``attempts`` set to the number of attempts made.
        """
        delay = self.settings.retry_delay if retry_delay is None else retry_delay
        total_attempts = max_retries + 1 if test.retryable else 1

        attempt = 1
        while True:
            result = await self.execute_test(test, token, execution_id=execution_id, attempt=attempt)
            if result.status is not TestStatus.FAILED or attempt >= total_attempts:
                break
            if token is not None and token.cancelled:
                break

            wait = delay * attempt
            logger.info(
                "Retrying test %s after %.2fs (attempt %d of %d)", test.id, wait, attempt + 1, total_attempts
            )
            if not await self._sleep(wait, token):
                break
            attempt += 1

        return result.model_copy(update={"attempts": attempt})

    async def execute_tests_in_parallel(
        self,
        tests: Sequence[TestDefinition],
        max_concurrency: int = 4,
        token: CancellationToken | None = None,
    ) -> list[TestResult]:
        """Run independent tests with at most ``max_concurrency`` in flight.

        Dependencies are not consulted. Results are returned in input order.
        """
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be at least 1, got {max_concurrency}")
        semaphore = asyncio.Semaphore(max_concurrency)

        async def run_one(test: TestDefinition) -> TestResult:
            async with semaphore:
                return await self.execute_test(test, token)

        return list(await asyncio.gather(*(run_one(test) for test in tests)))

    async def _run_lifecycle(self, test: TestDefinition, ctx: TestContext, source: CancellationSource) -> TestResult:
        start_time = datetime.now(UTC)

        if ctx.token.cancelled:
            return self._create_cancelled_result(test, start_time, ctx.token.reason)

        result: TestResult | None = None
        cleanup_error: BaseException | None = None
        try:
            try:
                if test.setup is not None:
                    await invoke(test.setup)
                result = await self._run_body(test, ctx, source, start_time)
            except Exception as e:
                if ctx.token.cancelled:
                    result = self._create_cancelled_result(test, start_time, ctx.token.reason)
                else:
                    result = self._create_failed_result(test, start_time, e)
        finally:
            if test.cleanup is not None:
                cleanup_error = await self._run_cleanup(test)

        if cleanup_error is not None:
            details = result.details.with_extra(cleanup_error=f"{type(cleanup_error).__name__}: {cleanup_error}")
            result = result.model_copy(update={"details": details})
        return result

    async def _run_body(
        self,
        test: TestDefinition,
        ctx: TestContext,
        source: CancellationSource,
        start_time: datetime,
    ) -> TestResult:
        """Race the body against the timeout and the cancellation token."""
        timeout = test.timeout if test.timeout is not None else self.settings.default_timeout
        body = asyncio.ensure_future(self._invoke_execute(test, ctx))
        cancelled = asyncio.ensure_future(ctx.token.wait())

        try:
            done, _ = await asyncio.wait({body, cancelled}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            # The caller itself is being cancelled; stop the body before unwinding.
            source.cancel("Test execution was cancelled")
            await self._abandon(test, body)
            raise
        finally:
            cancelled.cancel()

        if body in done:
            if body.cancelled():
                return self._create_cancelled_result(test, start_time, ctx.token.reason)
            error = body.exception()
            if error is not None:
                if ctx.token.cancelled or isinstance(error, OperationCancelled):
                    return self._create_cancelled_result(test, start_time, ctx.token.reason)
                return self._create_failed_result(test, start_time, error)
            return self._normalize_result(test, body.result(), start_time)

        if not done:
            timed_out_at = datetime.now(UTC)
            source.cancel(f"Test execution timed out after {timeout}s")
            await self._abandon(test, body)
            return self._create_timeout_result(test, start_time, timeout, end_time=timed_out_at)

        await self._abandon(test, body)
        return self._create_cancelled_result(test, start_time, ctx.token.reason)

    async def _invoke_execute(self, test: TestDefinition, ctx: TestContext) -> Any:
        args = (ctx,) if _accepts_context(test.execute) else ()
        with test_context_scope(ctx):
            return await invoke(test.execute, *args)

    async def _abandon(self, test: TestDefinition, body: asyncio.Future[Any]) -> None:
        """Cancel the body task and give it a grace period to unwind."""
        body.cancel()
        done, _ = await asyncio.wait({body}, timeout=self.settings.cancel_grace_period)
        if not done:
            logger.warning(
                "Test %s did not stop within %.1fs of cancellation; leaving it running",
                test.id,
                self.settings.cancel_grace_period,
            )
            # Retrieve the eventual outcome so it is not reported as unhandled.
            body.add_done_callback(lambda f: f.cancelled() or f.exception())

    async def _run_cleanup(self, test: TestDefinition) -> BaseException | None:
        try:
            await invoke(test.cleanup)  # type: ignore[arg-type]
        except Exception as e:
            logger.warning("Cleanup of test %s failed: %s", test.id, e)
            return e
        return None

    async def _sleep(self, seconds: float, token: CancellationToken | None) -> bool:
        """Sleep unless cancelled first. Returns False if cancelled."""
        if token is None:
            await asyncio.sleep(seconds)
            return True
        try:
            await asyncio.wait_for(token.wait(), timeout=seconds)
        except TimeoutError:
            return True
        return False

    def _normalize_result(
        self,
        test: TestDefinition,
        raw: TestResult | Mapping[str, Any] | None,
        start_time: datetime,
    ) -> TestResult:
        """Fill metadata the body left out and fix up timing."""
        if raw is None:
            raw = TestResult()
        elif isinstance(raw, Mapping):
            try:
                raw = TestResult.model_validate(raw)
            except ValidationError as e:
                return self._create_failed_result(test, start_time, e, error_type=ErrorType.VALIDATION)
        elif not isinstance(raw, TestResult):
            error = TypeError(f"Test returned {type(raw).__name__}, expected TestResult, mapping or None")
            return self._create_failed_result(test, start_time, error, error_type=ErrorType.VALIDATION)

        if raw.test_id is not None and raw.test_id != test.id:
            logger.warning("Test %s returned a result for %r; recording it under %s", test.id, raw.test_id, test.id)
        updates: dict[str, Any] = {"test_id": test.id}
        if not raw.test_name:
            updates["test_name"] = test.name
        if raw.category is None:
            updates["category"] = test.category
        if raw.verification_level is None:
            updates["verification_level"] = test.verification_level
        if raw.requirements is None:
            updates["requirements"] = test.requirements

        status = raw.status or TestStatus.PASSED
        if not status.is_terminal:
            updates["error"] = TestError(
                type=ErrorType.VALIDATION,
                message=f"Test returned non-terminal status '{status.value}'",
                code="INVALID_STATUS",
            )
            status = TestStatus.FAILED
        updates["status"] = status

        # Keep the body's own timestamps only when it reported both ends.
        if _comparable(raw.start_time, raw.end_time) and raw.end_time >= raw.start_time:  # type: ignore[operator]
            start, end = raw.start_time, raw.end_time
        else:
            start, end = start_time, datetime.now(UTC)
        updates.update(self._timing(start, end))

        return raw.model_copy(update=updates)

    def _timing(self, start_time: datetime, end_time: datetime | None = None) -> dict[str, Any]:
        end_time = end_time or datetime.now(UTC)
        return {
            "start_time": start_time,
            "end_time": end_time,
            "duration_ms": (end_time - start_time).total_seconds() * 1000,
        }

    def _base_fields(
        self, test: TestDefinition, start_time: datetime, end_time: datetime | None = None
    ) -> dict[str, Any]:
        return {
            "test_id": test.id,
            "test_name": test.name,
            "category": test.category,
            "verification_level": test.verification_level,
            "requirements": test.requirements,
            **self._timing(start_time, end_time),
        }

    def _create_failed_result(
        self,
        test: TestDefinition,
        start_time: datetime,
        error: BaseException,
        *,
        error_type: ErrorType | None = None,
    ) -> TestResult:
        test_error = categorize_error(error)
        if error_type is not None:
            test_error = test_error.model_copy(update={"type": error_type})
        return TestResult(
            **self._base_fields(test, start_time),
            status=TestStatus.FAILED,
            error=test_error,
            details=TestDetails.model_validate(
                {"error_details": {"message": str(error), "name": type(error).__name__}}
            ),
        )

    def _create_timeout_result(
        self,
        test: TestDefinition,
        start_time: datetime,
        timeout: float,
        *,
        end_time: datetime | None = None,
    ) -> TestResult:
        # Duration stops at the deadline; the grace period spent unwinding the body is not counted.
        return TestResult(
            **self._base_fields(test, start_time, end_time),
            status=TestStatus.FAILED,
            error=TestError(
                type=ErrorType.PERFORMANCE,
                message=f"Test execution timed out after {timeout}s",
                code="TIMEOUT",
                details={"timeout_s": timeout},
            ),
        )

    def _create_cancelled_result(self, test: TestDefinition, start_time: datetime, reason: str | None) -> TestResult:
        return TestResult(
            **self._base_fields(test, start_time),
            status=TestStatus.SKIPPED,
            error=TestError(
                type=ErrorType.UNKNOWN,
                message="Test execution was cancelled",
                code="CANCELLED",
            ),
            details=TestDetails.model_validate({"cancellation_reason": reason or "cancelled"}),
        )
