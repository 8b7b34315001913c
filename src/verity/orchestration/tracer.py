"""Test tracer - handles tracing for test and suite execution."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING

from opentelemetry.trace import Span, StatusCode

from verity.tracing import get_tracer


if TYPE_CHECKING:
    from verity.models import TestDefinition, TestResult


@dataclass
class TestTracer:
    """Opens spans around executions when tracing is enabled."""

    __test__ = False  # Prevent pytest from collecting this as a test class

    enabled: bool = False

    @contextmanager
    def span(self, definition: TestDefinition, execution_id: str | None = None) -> Iterator[Span | None]:
        """Context manager for optional tracing of one test."""
        if not self.enabled:
            yield None
            return

        with get_tracer().start_as_current_span(f"test.{definition.id}") as span:
            span.set_attribute("test.id", definition.id)
            span.set_attribute("test.name", definition.name)
            span.set_attribute("test.category", definition.category.value)
            span.set_attribute("test.verification_level", definition.verification_level.value)
            if execution_id is not None:
                span.set_attribute("execution.id", execution_id)
            if definition.tags:
                span.set_attribute("test.tags", sorted(definition.tags))
            yield span

    @contextmanager
    def execution_span(self, execution_id: str, suite_id: str) -> Iterator[Span | None]:
        if not self.enabled:
            yield None
            return

        with get_tracer().start_as_current_span(f"execution.{suite_id}") as span:
            span.set_attribute("execution.id", execution_id)
            span.set_attribute("suite.id", suite_id)
            yield span

    def get_trace_id(self, span: Span | None) -> str | None:
        """Extract trace_id from span."""
        if not span:
            return None
        ctx = span.get_span_context()
        return format(ctx.trace_id, "032x") if ctx.trace_id else None

    def record(self, span: Span | None, result: TestResult) -> None:
        """Record span attributes from test result."""
        if not span:
            return
        if result.status is not None:
            span.set_attribute("test.status", result.status.value)
        span.set_attribute("test.duration_ms", result.duration_ms)
        span.set_attribute("test.attempts", result.attempts)
        if result.error:
            span.set_status(StatusCode.ERROR, result.error.message)
            span.set_attribute("test.error_type", result.error.type.value)
            if result.error.code:
                span.set_attribute("test.error_code", result.error.code)
