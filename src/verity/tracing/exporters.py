"""JSONL span export for verification runs.

Each finished span becomes one line. Spans opened by the engine carry the
execution and test ids as top-level fields, so a trace file can be filtered
per execution or per test without digging through attributes.
"""

import json
import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from opentelemetry.sdk.trace import ReadableSpan
from opentelemetry.sdk.trace.export import SpanExporter, SpanExportResult


logger = logging.getLogger(__name__)


def span_kind(attributes: dict[str, Any]) -> str:
    """``test``, ``execution`` or ``step``, from the ids a span carries."""
    if "test.id" in attributes:
        return "test"
    if "execution.id" in attributes:
        return "execution"
    return "step"


def load_spans(path: Path | str, *, execution_id: str | None = None) -> list[dict[str, Any]]:
    """Read the span records of a trace file, optionally for one execution only."""
    with Path(path).open(encoding="utf-8") as f:
        records = [json.loads(line) for line in f if line.strip()]
    if execution_id is None:
        return records
    return [record for record in records if record["executionId"] == execution_id]


class JsonlSpanExporter(SpanExporter):
    """Appends span records to a JSONL file as spans finish."""

    def __init__(self, output_path: Path | str) -> None:
        self.output_path = Path(output_path)
        self.output_path.parent.mkdir(parents=True, exist_ok=True)
        self.output_path.write_text("")

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        try:
            with self.output_path.open("a", encoding="utf-8") as f:
                for span in spans:
                    f.write(json.dumps(to_record(span), default=str) + "\n")
        except OSError:
            logger.exception("Could not write spans to %s", self.output_path)
            return SpanExportResult.FAILURE
        return SpanExportResult.SUCCESS

    def shutdown(self) -> None:
        """The file is reopened per batch, so there is nothing to release."""


def to_record(span: ReadableSpan) -> dict[str, Any]:
    attributes = dict(span.attributes or {})

    duration_ms = None
    if span.start_time is not None and span.end_time is not None:
        duration_ms = (span.end_time - span.start_time) / 1_000_000

    status = {"code": span.status.status_code.name}
    if span.status.description:
        status["description"] = span.status.description

    return {
        "kind": span_kind(attributes),
        "name": span.name,
        "executionId": attributes.get("execution.id"),
        "testId": attributes.get("test.id"),
        "traceId": format(span.context.trace_id, "032x"),
        "spanId": format(span.context.span_id, "016x"),
        "parentSpanId": format(span.parent.span_id, "016x") if span.parent else None,
        "startTimeUnixNano": span.start_time,
        "durationMs": duration_ms,
        "status": status,
        "attributes": attributes,
        "events": [
            {"name": event.name, "timeUnixNano": event.timestamp, "attributes": dict(event.attributes or {})}
            for event in span.events
        ],
    }
