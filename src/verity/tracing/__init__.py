from verity.tracing.exporters import JsonlSpanExporter, load_spans
from verity.tracing.lifecycle import (
    clear_traces,
    get_tracer,
    init_tracing,
    is_initialized,
    set_trace_output_path,
    trace_step,
)


__all__ = [
    "JsonlSpanExporter",
    "clear_traces",
    "get_tracer",
    "init_tracing",
    "is_initialized",
    "load_spans",
    "set_trace_output_path",
    "trace_step",
]
