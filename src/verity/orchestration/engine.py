"""Execution engine for verification suites.

Drives a suite through planning, global setup, test dispatch and global
cleanup, and owns the single mutable :class:`~verity.models.ExecutionState`
of every run it starts.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from verity.config import EngineSettings, SuiteConfig
from verity.enums import ExecutionPhase, SuiteStatus, TestStatus
from verity.errors import ConfigurationError, ExecutionNotFoundError, NothingToRetryError, VerityError
from verity.models import (
    ExecutionErrorRecord,
    ExecutionPlan,
    ExecutionState,
    PlannedTest,
    TestDefinition,
    TestDependency,
    TestResult,
    TestSuite,
    build_result,
)
from verity.orchestration.cancellation import CancellationSource
from verity.orchestration.events import (
    EventChannel,
    ExecutionCancelled,
    ExecutionCompleted,
    ExecutionErrored,
    ExecutionStarted,
    ProgressUpdated,
    TestCompleted,
)
from verity.orchestration.executor import TestExecutor, invoke
from verity.orchestration.resolver import DependencyResolver
from verity.tracing import init_tracing, is_initialized


logger = logging.getLogger(__name__)


@dataclass
class _Run:
    """Bookkeeping the engine keeps next to each execution state."""

    suite: TestSuite
    config: SuiteConfig
    state: ExecutionState
    tests: dict[str, TestDefinition]
    source: CancellationSource = field(default_factory=CancellationSource)
    started: float = field(default_factory=time.perf_counter)
    plan: ExecutionPlan | None = None


class ExecutionEngine:
    """Schedules suites sequentially or through a bounded worker pool.

    Examples:
        engine = ExecutionEngine()
        state = await engine.execute_suite(suite)

        # Sequential run that stops at the first failure
        state = await engine.execute_suite(
            suite, {"parallel_execution": False, "stop_on_first_failure": True}
        )

        # Observe progress
        channel = EventChannel()
        channel.subscribe(print)
        engine = ExecutionEngine(events=channel)
    """

    def __init__(
        self,
        settings: EngineSettings | None = None,
        *,
        executor: TestExecutor | None = None,
        resolver: DependencyResolver | None = None,
        events: EventChannel | None = None,
    ) -> None:
        self.settings = settings or EngineSettings()
        self.executor = executor or TestExecutor(self.settings)
        self.resolver = resolver or DependencyResolver()
        self.events = events or EventChannel()
        self.tracer = self.executor.tracer
        self._runs: dict[str, _Run] = {}

        if self.settings.enable_tracing and not is_initialized():
            init_tracing(output_path=self.settings.trace_output)

    @property
    def active_executions(self) -> list[str]:
        return [execution_id for execution_id, run in self._runs.items() if run.state.is_active]

    def get_execution_state(self, execution_id: str) -> ExecutionState | None:
        run = self._runs.get(execution_id)
        return run.state if run else None

    def forget(self, execution_id: str) -> bool:
        """Drop a finished execution and its results from the engine.

        Returns False if the execution is unknown. A forgotten execution can no
        longer be inspected or retried.

        Raises:
            VerityError: The execution is still running.
        """
        run = self._runs.get(execution_id)
        if run is None:
            return False
        if run.state.is_active:
            raise VerityError(f"Execution {execution_id} is still running")
        del self._runs[execution_id]
        logger.debug("Forgot execution %s", execution_id)
        return True

    async def execute_suite(
        self,
        suite: TestSuite,
        config: SuiteConfig | Mapping[str, Any] | None = None,
        *,
        execution_id: str | None = None,
    ) -> ExecutionState:
        """Run a suite to completion and return its final state.

        Args:
            suite: Validated suite to execute.
            config: Overrides applied on top of ``suite.config``.
            execution_id: Id to register the run under; generated when omitted.
        """
        final_config = suite.config.merged(config)
        tests = [test for test in suite.tests if final_config.includes(test.category, test.verification_level)]
        return await self._execute(suite, final_config, tests, execution_id=execution_id)

    def cancel_execution(self, execution_id: str) -> bool:
        """Cancel an active execution.

        In-flight tests observe the cancellation through their token and end
        as skipped; nothing new is scheduled. Returns False if the execution is
        unknown or already finished.
        """
        run = self._runs.get(execution_id)
        if run is None or not run.state.is_active:
            return False

        run.state.status = SuiteStatus.CANCELLED
        run.source.cancel("Execution was cancelled")
        logger.info("Cancelled execution %s", execution_id)
        self.events.publish(ExecutionCancelled(execution_id=execution_id, state=run.state))
        return True

    async def retry_failed_tests(self, execution_id: str) -> ExecutionState:
        """Re-run the failed tests of a finished execution as a new execution.

        Only the failed tests themselves run again, not their dependents. The
        new state links back through ``parent_execution_id``.

        Raises:
            ExecutionNotFoundError: ``execution_id`` is unknown.
            NothingToRetryError: The execution has no failed tests.
        """
        run = self._runs.get(execution_id)
        if run is None:
            raise ExecutionNotFoundError(execution_id)
        if run.state.is_active:
            raise VerityError(f"Execution {execution_id} is still running")

        tests = run.suite.select(run.state.failed_tests)
        if not tests:
            raise NothingToRetryError(f"No failed tests to retry in execution {execution_id}")

        logger.info("Retrying %d failed test(s) from execution %s", len(tests), execution_id)
        return await self._execute(run.suite, run.config, tests, parent_execution_id=execution_id)

    def create_execution_plan(
        self,
        suite: TestSuite,
        config: SuiteConfig,
        tests: Sequence[TestDefinition] | None = None,
        *,
        execution_id: str | None = None,
    ) -> ExecutionPlan:
        """Resolve dependencies and order for the tests of one run.

        Dependencies are validated against the whole suite; edges to tests
        outside ``tests`` are dropped, since those tests are not part of the run.
        """
        if tests is None:
            tests = [test for test in suite.tests if config.includes(test.category, test.verification_level)]

        run_ids = {test.id for test in tests}
        dependencies = [
            TestDependency(test_id=dep.test_id, depends_on=tuple(d for d in dep.depends_on if d in run_ids))
            for dep in self.resolver.resolve_dependencies(suite.tests)
            if dep.test_id in run_ids
        ]
        dependencies = [dep for dep in dependencies if dep.depends_on]

        groups = self.resolver.get_parallelizable_groups(tests, dependencies)
        order = self.resolver.optimize_execution_order(tests, dependencies, self.settings.default_timeout)
        dependency_map = {dep.test_id: dep.depends_on for dep in dependencies}

        def estimate(test: TestDefinition) -> float:
            return test.timeout if test.timeout is not None else self.settings.default_timeout

        planned = tuple(
            PlannedTest(
                test_id=test.id,
                estimated_duration_s=estimate(test),
                prerequisites=dependency_map.get(test.id, ()),
                can_run_in_parallel=test.id not in dependency_map,
            )
            for test in tests
        )

        test_map = {test.id: test for test in tests}
        if config.parallel_execution:
            estimated = sum(max(estimate(test_map[test_id]) for test_id in group) for group in groups)
        else:
            estimated = sum(p.estimated_duration_s for p in planned)

        return ExecutionPlan(
            suite_id=suite.id,
            execution_id=execution_id or self._generate_execution_id(),
            mode=config.mode,
            planned_tests=planned,
            estimated_duration_s=estimated,
            dependencies=tuple(dependencies),
            execution_order=tuple(order),
            parallel_groups=tuple(tuple(group) for group in groups),
        )

    async def _execute(
        self,
        suite: TestSuite,
        config: SuiteConfig,
        tests: Sequence[TestDefinition],
        *,
        execution_id: str | None = None,
        parent_execution_id: str | None = None,
    ) -> ExecutionState:
        execution_id = execution_id or self._generate_execution_id()
        if execution_id in self._runs:
            raise ConfigurationError(f"Execution id '{execution_id}' is already in use")

        state = ExecutionState(
            execution_id=execution_id,
            suite_id=suite.id,
            status=SuiteStatus.INITIALIZING,
            parent_execution_id=parent_execution_id,
        )
        state.progress.total_tests = len(tests)
        run = _Run(suite=suite, config=config, state=state, tests={test.id: test for test in tests})
        self._runs[execution_id] = run

        logger.info("Starting execution %s of suite %s with %d test(s)", execution_id, suite.id, len(tests))
        try:
            with self.tracer.execution_span(execution_id, suite.id):
                await self._drive(run)
        except Exception as e:
            self._handle_execution_error(run, ExecutionPhase.EXECUTION, e)
        finally:
            if state.is_active:
                # Reached only when the engine task itself was cancelled.
                state.status = SuiteStatus.CANCELLED
                state.end_time = datetime.now(UTC)
            self.events.publish(ExecutionCompleted(execution_id=execution_id, state=state))

        logger.info(
            "Execution %s finished with status %s (%d passed, %d failed, %d skipped)",
            execution_id,
            state.status.value,
            len(state.completed_tests),
            len(state.failed_tests),
            len(state.skipped_tests),
        )
        return state

    async def _drive(self, run: _Run) -> None:
        state = run.state
        try:
            plan = self.create_execution_plan(
                run.suite, run.config, list(run.tests.values()), execution_id=state.execution_id
            )
        except ConfigurationError as e:
            self._handle_execution_error(run, ExecutionPhase.PLANNING, e)
            return
        run.plan = plan
        self.events.publish(ExecutionStarted(execution_id=state.execution_id, suite_id=run.suite.id, plan=plan))

        if run.suite.global_setup is not None:
            try:
                await invoke(run.suite.global_setup)
            except Exception as e:
                self._handle_execution_error(run, ExecutionPhase.SETUP, e)
                return

        if not run.source.cancelled:
            state.status = SuiteStatus.RUNNING
            if run.config.parallel_execution:
                await self._execute_parallel(run, plan)
            else:
                await self._execute_sequential(run, plan)

        if run.suite.global_cleanup is not None:
            try:
                await invoke(run.suite.global_cleanup)
            except Exception as e:
                logger.warning("Global cleanup of execution %s failed: %s", state.execution_id, e)
                state.errors.append(ExecutionErrorRecord(phase=ExecutionPhase.CLEANUP, error=e, recoverable=True))

        self._finalize(run)

    async def _execute_sequential(self, run: _Run, plan: ExecutionPlan) -> None:
        state = run.state
        for test_id in plan.execution_order:
            if run.source.cancelled:
                break

            test = run.tests[test_id]
            reason = self._blocked_reason(test_id, plan, state)
            if reason is not None:
                self._record_skip(run, test, reason)
                continue

            state.current_test = test_id
            result = await self._dispatch(run, test)
            self._process_result(run, test_id, result)

            if run.config.stop_on_first_failure and result.status is TestStatus.FAILED:
                logger.info("Stopping execution %s after failure of %s", state.execution_id, test_id)
                break

        state.current_test = None

    async def _execute_parallel(self, run: _Run, plan: ExecutionPlan) -> None:
        """Bounded worker pool: a finished test frees its slot for the next eligible one."""
        state = run.state
        max_concurrency = run.config.max_concurrency
        pending = list(plan.execution_order)
        in_flight: dict[asyncio.Task[TestResult], str] = {}
        stopped = False

        try:
            while pending or in_flight:
                if not stopped and not run.source.cancelled:
                    waiting: list[str] = []
                    for test_id in pending:
                        if any(dep not in state.resolved_tests for dep in plan.dependencies_of(test_id)):
                            waiting.append(test_id)
                            continue
                        reason = self._blocked_reason(test_id, plan, state)
                        if reason is not None:
                            self._record_skip(run, run.tests[test_id], reason)
                            continue
                        if len(in_flight) >= max_concurrency:
                            waiting.append(test_id)
                            continue
                        state.current_test = test_id
                        task = asyncio.create_task(self._dispatch(run, run.tests[test_id]), name=f"verity:{test_id}")
                        in_flight[task] = test_id
                    pending = waiting

                if not in_flight:
                    if pending and not stopped and not run.source.cancelled:
                        logger.warning("Execution %s left %d test(s) unschedulable", state.execution_id, len(pending))
                    break

                done, _ = await asyncio.wait(set(in_flight), return_when=asyncio.FIRST_COMPLETED)
                for task in [t for t in in_flight if t in done]:
                    test_id = in_flight.pop(task)
                    result = task.result()
                    self._process_result(run, test_id, result)
                    if run.config.stop_on_first_failure and result.status is TestStatus.FAILED and not stopped:
                        logger.info("Stopping execution %s after failure of %s", state.execution_id, test_id)
                        stopped = True
        finally:
            if in_flight:
                for task in in_flight:
                    task.cancel()
                await asyncio.gather(*in_flight, return_exceptions=True)
            state.current_test = None

    async def _dispatch(self, run: _Run, test: TestDefinition) -> TestResult:
        token = run.source.token
        execution_id = run.state.execution_id
        if run.config.retry_failed_tests:
            return await self.executor.execute_test_with_retry(
                test,
                run.config.max_retries,
                self.settings.retry_delay,
                token,
                execution_id=execution_id,
            )
        return await self.executor.execute_test(test, token, execution_id=execution_id)

    def _blocked_reason(self, test_id: str, plan: ExecutionPlan, state: ExecutionState) -> str | None:
        """Why ``test_id`` must be skipped, or None if it may run.

        A hard dependency that failed or was skipped blocks its dependents.
        """
        dependencies = plan.dependencies_of(test_id)
        unresolved = [dep for dep in dependencies if dep not in state.resolved_tests]
        if unresolved:
            return f"Dependencies not completed: {', '.join(unresolved)}"
        blocked = [dep for dep in dependencies if dep in state.failed_tests or dep in state.skipped_tests]
        if blocked:
            return f"Dependency did not pass: {', '.join(blocked)}"
        return None

    def _record_skip(self, run: _Run, test: TestDefinition, reason: str) -> None:
        logger.debug("Skipping test %s: %s", test.id, reason)
        self._process_result(run, test.id, build_result(test, TestStatus.SKIPPED, details={"skip_reason": reason}))

    def _process_result(self, run: _Run, test_id: str, result: TestResult) -> None:
        """Fold the result of the dispatched test ``test_id`` into the execution state."""
        state = run.state
        if result.test_id != test_id:
            result = result.model_copy(update={"test_id": test_id})
        state.results.append(result)

        if result.status is TestStatus.FAILED:
            state.failed_tests.add(test_id)
        elif result.status is TestStatus.SKIPPED:
            state.skipped_tests.add(test_id)
        else:
            state.completed_tests.add(test_id)

        self._update_progress(run)
        self.events.publish(TestCompleted(result=result, state=state))

    def _update_progress(self, run: _Run) -> None:
        state = run.state
        progress = state.progress
        progress.completed_tests = len(state.completed_tests)
        progress.failed_tests = len(state.failed_tests)
        progress.skipped_tests = len(state.skipped_tests)

        processed = progress.processed
        total = progress.total_tests
        progress.percent_complete = (processed / total) * 100 if total else 100.0

        elapsed_ms = (time.perf_counter() - run.started) * 1000
        average_ms = elapsed_ms / processed if processed else 0.0
        progress.estimated_time_remaining_ms = average_ms * max(total - processed, 0)

        self.events.publish(ProgressUpdated(state=state))

    def _finalize(self, run: _Run) -> None:
        state = run.state
        state.end_time = datetime.now(UTC)
        if state.status is not SuiteStatus.CANCELLED:
            state.status = SuiteStatus.FAILED if state.failed_tests else SuiteStatus.COMPLETED
        self._update_progress(run)

    def _handle_execution_error(self, run: _Run, phase: ExecutionPhase, error: Exception) -> None:
        state = run.state
        logger.error("Execution %s failed during %s: %s", state.execution_id, phase.value, error)
        state.errors.append(ExecutionErrorRecord(phase=phase, error=error, recoverable=False))
        if state.status is not SuiteStatus.CANCELLED:
            state.status = SuiteStatus.FAILED
        state.end_time = datetime.now(UTC)
        self.events.publish(ExecutionErrored(state=state, error=error))

    def _generate_execution_id(self) -> str:
        return f"exec_{int(time.time() * 1000)}_{uuid4().hex[:9]}"
