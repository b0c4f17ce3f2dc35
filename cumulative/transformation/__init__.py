"""
Data Transformation Module
"""
from .merger import CumulativeMerger, MergeOutcome, MergeResult
from .reduced import (
    NOT_OBSERVED,
    MonthlyMetricArray,
    ReducedArrayAccumulator,
    aggregate_daily,
    monthly_total,
    observed_days,
)

__all__ = [
    "CumulativeMerger",
    "MergeOutcome",
    "MergeResult",
    "NOT_OBSERVED",
    "MonthlyMetricArray",
    "ReducedArrayAccumulator",
    "aggregate_daily",
    "monthly_total",
    "observed_days",
]
