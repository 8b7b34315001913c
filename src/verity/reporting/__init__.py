"""Aggregation of execution results."""

from verity.reporting.aggregator import (
    CategoryAggregation,
    CoverageAnalysis,
    ErrorAggregation,
    LevelAggregation,
    PerformanceAggregation,
    ResultAggregator,
    ResultSummary,
    TimedTest,
    TrendAnalysis,
    percentile,
)


__all__ = [
    "CategoryAggregation",
    "CoverageAnalysis",
    "ErrorAggregation",
    "LevelAggregation",
    "PerformanceAggregation",
    "ResultAggregator",
    "ResultSummary",
    "TimedTest",
    "TrendAnalysis",
    "percentile",
]
