"""
Activity History Module
"""
from .bitset import ActivityBitset, shift_and_set, is_active_within, count_active_within
from .records import (
    ActivityHistory,
    CumulativeRecord,
    DailyActivityFact,
    DateList,
)
from .metrics import ActivitySnapshot, WindowMetrics

__all__ = [
    "ActivityBitset",
    "shift_and_set",
    "is_active_within",
    "count_active_within",
    "ActivityHistory",
    "CumulativeRecord",
    "DailyActivityFact",
    "DateList",
    "ActivitySnapshot",
    "WindowMetrics",
]
