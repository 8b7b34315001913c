"""Dependency resolution, test execution and suite scheduling."""

from verity.orchestration.cancellation import CancellationSource, CancellationToken
from verity.orchestration.engine import ExecutionEngine
from verity.orchestration.events import (
    EventChannel,
    ExecutionCancelled,
    ExecutionCompleted,
    ExecutionErrored,
    ExecutionStarted,
    LifecycleEvent,
    ProgressUpdated,
    TestCompleted,
)
from verity.orchestration.executor import TestExecutor, categorize_error
from verity.orchestration.resolver import DependencyGraph, DependencyResolver, GraphEdge, GraphNode
from verity.orchestration.tracer import TestTracer


__all__ = [
    "CancellationSource",
    "CancellationToken",
    "DependencyGraph",
    "DependencyResolver",
    "EventChannel",
    "ExecutionCancelled",
    "ExecutionCompleted",
    "ExecutionEngine",
    "ExecutionErrored",
    "ExecutionStarted",
    "GraphEdge",
    "GraphNode",
    "LifecycleEvent",
    "ProgressUpdated",
    "TestCompleted",
    "TestExecutor",
    "TestTracer",
    "categorize_error",
]
