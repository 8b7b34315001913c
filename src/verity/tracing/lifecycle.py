"""Lifecycle management for OpenTelemetry tracing.

Sets up the tracer provider and the JSONL exporter, and exposes helpers
for getting a tracer, clearing traces, and the `trace_step` context manager.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor

from verity.tracing.exporters import JsonlSpanExporter


_exporter: JsonlSpanExporter | None = None
_initialized = False


def init_tracing(
    *,
    service_name: str = "verity",
    output_path: Path | str = "traces.jsonl",
) -> None:
    """Initialize OpenTelemetry tracing with JSONL file export.

    Later calls are no-ops; use `set_trace_output_path` to redirect output.
    """
    global _exporter, _initialized

    if _initialized:
        return

    _exporter = JsonlSpanExporter(output_path)
    resource = Resource.create({"service.name": service_name})
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(SimpleSpanProcessor(_exporter))
    trace.set_tracer_provider(provider)

    _initialized = True


def is_initialized() -> bool:
    return _initialized


def set_trace_output_path(output_path: Path | str) -> None:
    """Set the output path for the current exporter.

    Useful for testing to redirect traces to a temporary file.
    """
    if _exporter is None:
        init_tracing(output_path=output_path)
    else:
        _exporter.output_path = Path(output_path)
        _exporter.output_path.parent.mkdir(parents=True, exist_ok=True)
        _exporter.output_path.write_text("")


def get_tracer(name: str = "verity") -> trace.Tracer:
    """Get a tracer instance for creating spans."""
    return trace.get_tracer(name)


def clear_traces() -> None:
    """Clear the trace file."""
    if _exporter is not None:
        _exporter.output_path.write_text("")


@contextmanager
def trace_step(name: str, attributes: dict[str, Any] | None = None) -> Iterator[trace.Span]:
    """Context manager for tracing custom steps in test logic.

    Creates a span that nests under the current active span.
    """
    tracer = get_tracer()
    with tracer.start_as_current_span(name) as span:
        if attributes:
            for key, value in attributes.items():
                span.set_attribute(key, value)
        yield span
