"""Console reporter for verity executions using Rich."""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from verity.enums import TestStatus
from verity.reporting import ResultAggregator
from verity.reports.base import Reporter
from verity.version import __version__


if TYPE_CHECKING:
    from verity.models import ExecutionState, TestResult
    from verity.orchestration.events import ExecutionStarted, TestCompleted


_STATUS_CONFIG: dict[TestStatus, tuple[str, str, str]] = {
    TestStatus.PASSED: ("✓", "green", "PASSED"),
    TestStatus.FAILED: ("✗", "red", "FAILED"),
    TestStatus.SKIPPED: ("-", "yellow", "SKIPPED"),
    TestStatus.WARNING: ("!", "yellow", "WARNING"),
    TestStatus.NOT_STARTED: ("?", "dim", "NOT STARTED"),
    TestStatus.IN_PROGRESS: ("~", "dim", "IN PROGRESS"),
}


class ConsoleReporter(Reporter):
    """Prints one line per completed test and a colored summary.

    ``verbosity`` below 0 prints only the summary, 0 prints a symbol per test,
    1 a line per test, and 2 adds stack traces to the failure panels.
    """

    def __init__(
        self,
        console: Console | None = None,
        verbosity: int = 0,
        aggregator: ResultAggregator | None = None,
    ) -> None:
        self.console = console or Console(file=sys.__stdout__)
        self.verbosity = verbosity
        self.aggregator = aggregator or ResultAggregator()
        self._failures: list[TestResult] = []
        self._compact_open = False

    def _status_symbol(self, status: TestStatus) -> str:
        return _STATUS_CONFIG[status][0]

    def _status_color(self, status: TestStatus) -> str:
        return _STATUS_CONFIG[status][1]

    def _status_label(self, status: TestStatus) -> str:
        return _STATUS_CONFIG[status][2]

    def _print_section_header(self, title: str) -> None:
        width = self.console.width
        header_title = f" {title} "
        fill = max(width - len(header_title), 0)
        left = fill // 2
        right = fill - left
        self.console.print("=" * left + header_title + "=" * right)

    def on_execution_started(self, event: ExecutionStarted) -> None:
        plan = event.plan
        self._failures = []
        self._compact_open = False
        self._print_section_header("VERITY EXECUTION STARTS")
        self.console.print(f"verity {__version__} -- suite {escape(event.suite_id)} -- mode {plan.mode.value}")
        self.console.print(f"execution_id: {event.execution_id}")
        if self.verbosity >= 0:
            self.console.print(
                f"[bold]Planned {plan.total_tests} tests in {len(plan.parallel_groups)} waves[/bold]\n"
            )

    def on_test_complete(self, event: TestCompleted) -> None:
        result = event.result
        status = result.status or TestStatus.NOT_STARTED

        if status is TestStatus.FAILED:
            self._failures.append(result)

        if self.verbosity < 0:
            return
        if self.verbosity == 0:
            color = self._status_color(status)
            if not self._compact_open:
                self.console.print(" • ", end="")
                self._compact_open = True
            self.console.print(f"[{color}]{self._status_symbol(status)}[/{color}]", end="")
            return

        self._print_test_line(result, status)

    def _print_test_line(self, result: TestResult, status: TestStatus) -> None:
        color = self._status_color(status)
        label = self._status_label(status)
        name = escape(result.test_name or result.test_id or "?")
        duration = f"[dim]({result.duration_ms:.1f}ms)[/dim]"
        extra = self._get_status_extra(result, status)
        self.console.print(f"  • {name} {duration} {extra}[{color}]{label}[/{color}]")

    def _get_status_extra(self, result: TestResult, status: TestStatus) -> str:
        if status is TestStatus.SKIPPED:
            reason = result.details.extra("skip_reason") or result.details.extra("cancellation_reason") or "skipped"
            return f"[dim]skipped ({escape(str(reason))})[/dim] "
        if result.attempts > 1:
            return f"[dim]after {result.attempts} attempts[/dim] "
        return ""

    def on_execution_cancelled(self, state: ExecutionState) -> None:
        self._close_compact_line()
        self.console.print("[yellow]Execution cancelled.[/yellow]")

    def on_execution_error(self, state: ExecutionState, error: BaseException) -> None:
        self._close_compact_line()
        self.console.print(
            Panel(
                escape(f"{type(error).__name__}: {error}"),
                title="EXECUTION ERROR",
                title_align="left",
                border_style="red",
                expand=True,
            )
        )

    def on_execution_complete(self, state: ExecutionState) -> None:
        self._close_compact_line()
        if self.verbosity != 0 and self._failures:
            self._print_failures()
        self._print_summary(state)

    def _close_compact_line(self) -> None:
        if self._compact_open:
            self.console.print()
            self._compact_open = False

    def _print_failures(self) -> None:
        self.console.print()
        self._print_section_header("FAILURES")

        for index, result in enumerate(self._failures):
            if index:
                self.console.print()
            lines = []
            if result.error is not None:
                code = f" [{result.error.code}]" if result.error.code else ""
                lines.append(f"{result.error.type.value}{code}: {result.error.message}")
                if self.verbosity >= 2 and result.error.stack:
                    lines.extend(["", result.error.stack.rstrip()])
            cleanup_error = result.details.extra("cleanup_error")
            if cleanup_error:
                lines.append(f"cleanup: {cleanup_error}")
            self.console.print(
                Panel(
                    "\n".join(escape(line) for line in lines) or " ",
                    title=escape(result.test_name or result.test_id or "?"),
                    title_align="left",
                    border_style="red",
                    expand=True,
                    padding=(1, 1),
                )
            )
        self.console.print()

    def _print_summary(self, state: ExecutionState) -> None:
        summary = self.aggregator.summarize(state)
        parts = []
        if summary.passed_tests:
            parts.append(f"[green]{summary.passed_tests} passed[/green]")
        if summary.failed_tests:
            parts.append(f"[red]{summary.failed_tests} failed[/red]")
        if summary.warning_tests:
            parts.append(f"[yellow]{summary.warning_tests} warnings[/yellow]")
        if summary.skipped_tests:
            parts.append(f"[yellow]{summary.skipped_tests} skipped[/yellow]")

        counts = ", ".join(parts) if parts else "[dim]0 tests[/dim]"
        status = summary.overall_status
        color = self._status_color(status)
        summary_line = (
            f"execution_id: {state.execution_id}\n"
            f"{counts} in {summary.execution_time_ms:.0f}ms "
            f"-- [{color}]{self._status_label(status)}[/{color}] ({state.status.value})"
        )
        self.console.print()
        self._print_section_header("SUMMARY")
        self.console.print(f"[bold]{summary_line}[/bold]", justify="center")
        if summary.critical_failures:
            names = ", ".join(escape(r.test_name or r.test_id or "?") for r in summary.critical_failures)
            self.console.print(f"[red]Critical failures: {names}[/red]", justify="center")
        self.console.print("=" * self.console.width)
