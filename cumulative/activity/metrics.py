"""
Window Metrics

Point-in-time rollups derived from activity bitsets on read:
monthly / weekly activity flags, the previous week's flag and the number
of active days in a window. Nothing here mutates or persists state.
"""

from dataclasses import dataclass, asdict
from datetime import date, timedelta
from typing import Hashable, Iterable, List, Optional

import polars as pl

from cumulative.config import get_settings
from cumulative.exceptions import WindowTooWide
from .bitset import ActivityBitset
from .records import CumulativeRecord

WEEK = 7

SNAPSHOT_SCHEMA = {
    "as_of_date": pl.Date,
    "dimension": pl.Utf8,
    "datelist_int": pl.UInt64,
    "is_monthly_active": pl.Boolean,
    "is_weekly_active": pl.Boolean,
    "is_weekly_active_previous_week": pl.Boolean,
    "days_active_in_month": pl.Int32,
    "days_active_in_week": pl.Int32,
    "last_active_date": pl.Date,
}


@dataclass(frozen=True)
class ActivitySnapshot:
    """Derived activity flags for one (entity, dimension) as of a date"""
    entity_key: Hashable
    as_of_date: date
    dimension: Optional[str]
    datelist_int: int
    is_monthly_active: bool
    is_weekly_active: bool
    is_weekly_active_previous_week: bool
    days_active_in_month: int
    days_active_in_week: int
    last_active_date: Optional[date]


class WindowMetrics:
    """
    Derived rollups over a bitset.

    Window sizes default to the configured activity settings; the monthly
    window defaults to the full bitset width.

    Example:
        metrics = WindowMetrics()
        metrics.is_weekly_active(record.bitset())
    """

    def __init__(
        self,
        weekly_window: Optional[int] = None,
        monthly_window: Optional[int] = None,
        width: Optional[int] = None,
    ):
        activity = get_settings().activity
        self.width = width or activity.bit_width
        self.weekly_window = weekly_window or activity.weekly_window
        self.monthly_window = monthly_window or activity.monthly_window or self.width
        for window in (self.weekly_window, self.monthly_window):
            if not 1 <= window <= self.width:
                raise WindowTooWide(window, self.width)

    def is_monthly_active(self, bitset: ActivityBitset) -> bool:
        return bitset.is_active_within(self.monthly_window)

    def is_weekly_active(self, bitset: ActivityBitset) -> bool:
        return bitset.is_active_within(self.weekly_window)

    def is_weekly_active_previous_week(self, bitset: ActivityBitset) -> bool:
        """Activity in the seven days before the current week"""
        if bitset.width < 2 * WEEK:
            raise WindowTooWide(2 * WEEK, bitset.width)
        return bitset.shifted_right(WEEK).is_active_within(WEEK)

    def days_active_in_window(self, bitset: ActivityBitset, window: int) -> int:
        return bitset.count_active_within(window)

    def snapshot(self, record: CumulativeRecord) -> List[ActivitySnapshot]:
        """One snapshot per dimension label of the record"""
        snapshots = []
        for label in record.labels:
            bitset = record.bitset(label, self.width)
            offset = bitset.last_active_offset()
            snapshots.append(ActivitySnapshot(
                entity_key=record.entity_key,
                as_of_date=record.as_of_date,
                dimension=label,
                datelist_int=int(bitset),
                is_monthly_active=self.is_monthly_active(bitset),
                is_weekly_active=self.is_weekly_active(bitset),
                is_weekly_active_previous_week=self.is_weekly_active_previous_week(bitset),
                days_active_in_month=self.days_active_in_window(bitset, self.monthly_window),
                days_active_in_week=self.days_active_in_window(bitset, self.weekly_window),
                last_active_date=(
                    record.as_of_date - timedelta(days=offset) if offset is not None else None
                ),
            ))
        return snapshots

    def snapshot_frame(self, records: Iterable[CumulativeRecord]) -> pl.DataFrame:
        """Snapshots of many records as a DataFrame (one row per entity and label)"""
        rows = [asdict(s) for record in records for s in self.snapshot(record)]
        if not rows:
            return pl.DataFrame(schema={"entity_key": pl.Utf8, **SNAPSHOT_SCHEMA})
        return pl.DataFrame(rows, schema_overrides=SNAPSHOT_SCHEMA)
