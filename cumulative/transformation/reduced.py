"""
Reduced Fact Arrays

Per-entity, per-month positional arrays of a daily metric: index 0 is day 1
of the month and one value is appended per run. Positions never change once
written, so a retried day is a conflict rather than an overwrite.

Days before an entity's first appearance in the month are backfilled with
zero by default, or with the explicit ``NOT_OBSERVED`` sentinel when the
accumulator runs in ``sentinel`` mode. Rollups skip the sentinel instead of
counting it as zero.
"""

import calendar
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Hashable, Iterable, List, Mapping, Optional, Tuple, Union

import structlog

from cumulative.config import get_settings
from cumulative.exceptions import EntityError, ReplayConflict

logger = structlog.get_logger(__name__)


class _NotObserved:
    """Marker for a day on which the entity had not been observed yet"""
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "NOT_OBSERVED"

    def __reduce__(self):
        return (_NotObserved, ())


NOT_OBSERVED = _NotObserved()

MetricValue = Union[int, float, _NotObserved]


def days_in_month(month: date) -> int:
    return calendar.monthrange(month.year, month.month)[1]


def month_start(day: date) -> date:
    return day.replace(day=1)


@dataclass(frozen=True)
class MonthlyMetricArray:
    """One entity's daily values of one metric for one month"""
    entity_key: Hashable
    month: date
    metric_name: str
    values: Tuple[MetricValue, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "month", month_start(self.month))
        object.__setattr__(self, "values", tuple(self.values))
        if len(self.values) > days_in_month(self.month):
            raise ValueError(
                f"{len(self.values)} values do not fit in {self.month:%Y-%m}"
            )


def monthly_total(array: MonthlyMetricArray) -> Union[int, float]:
    """Sum of observed values"""
    return sum(v for v in array.values if v is not NOT_OBSERVED)


def observed_days(array: MonthlyMetricArray) -> int:
    """Number of positions holding a real value (zero included)"""
    return sum(1 for v in array.values if v is not NOT_OBSERVED)


def aggregate_daily(arrays: Iterable[MonthlyMetricArray]) -> List[MetricValue]:
    """
    Element-wise per-day totals across entities.

    A day on which no entity holds an observed value stays ``NOT_OBSERVED``.
    """
    totals: List[MetricValue] = []
    for array in arrays:
        if len(array.values) > len(totals):
            totals.extend([NOT_OBSERVED] * (len(array.values) - len(totals)))
        for i, value in enumerate(array.values):
            if value is NOT_OBSERVED:
                continue
            totals[i] = value if totals[i] is NOT_OBSERVED else totals[i] + value
    return totals


@dataclass
class AccumulateResult:
    """Arrays produced by one run and the entities that failed"""
    arrays: Dict[Hashable, MonthlyMetricArray] = field(default_factory=dict)
    failures: Dict[Hashable, EntityError] = field(default_factory=dict)
    appended: int = 0
    zero_filled: int = 0


class ReducedArrayAccumulator:
    """
    Maintains monthly metric arrays one day at a time.

    Example:
        accumulator = ReducedArrayAccumulator(metric_name="event_count")
        array = accumulator.append_day(None, 3, 4, date(2023, 3, 1), entity_key=42)
        array.values  # (0, 0, 4)
    """

    def __init__(
        self,
        metric_name: Optional[str] = None,
        backfill_mode: Optional[str] = None,
    ):
        settings = get_settings()
        self.metric_name = metric_name or settings.reduced.metric_name
        self.backfill_mode = backfill_mode or settings.reduced.backfill_mode
        if self.backfill_mode not in ("zero", "sentinel"):
            raise ValueError(f"Unknown backfill mode: {self.backfill_mode}")

    @property
    def backfill_value(self) -> MetricValue:
        return NOT_OBSERVED if self.backfill_mode == "sentinel" else 0

    @staticmethod
    def _check_day(day_of_month: int, month: date) -> None:
        if not 1 <= day_of_month <= days_in_month(month):
            raise ValueError(f"Day {day_of_month} is outside {month:%Y-%m}")

    def append_day(
        self,
        array: Optional[MonthlyMetricArray],
        day_of_month: int,
        value: Union[int, float],
        month: date,
        entity_key: Optional[Hashable] = None,
    ) -> MonthlyMetricArray:
        """
        Append ``value`` at ``day_of_month``.

        Starts a new array (backfilled before ``day_of_month``) when there is
        no array yet or the array belongs to an earlier month.

        Raises:
            ReplayConflict: the array already holds ``day_of_month``
        """
        month = month_start(month)
        self._check_day(day_of_month, month)

        if array is None or array.month < month:
            key = entity_key if array is None else array.entity_key
            if key is None:
                raise ValueError("entity_key is required to start a new array")
            values = (self.backfill_value,) * (day_of_month - 1) + (value,)
            return MonthlyMetricArray(key, month, self.metric_name, values)

        if array.month > month:
            raise ValueError(
                f"Array for {array.entity_key!r} is already at {array.month:%Y-%m}, "
                f"cannot append to {month:%Y-%m}"
            )
        return self._append(array, day_of_month, value)

    def append_missing(self, array: MonthlyMetricArray, day_of_month: int) -> MonthlyMetricArray:
        """Record an explicit zero for a day without a fact"""
        self._check_day(day_of_month, array.month)
        return self._append(array, day_of_month, 0)

    def _append(self, array: MonthlyMetricArray, day_of_month: int, value: MetricValue) -> MonthlyMetricArray:
        current = len(array.values)
        if current >= day_of_month:
            raise ReplayConflict(array.entity_key, day_of_month, current)
        # Days skipped after the entity's first appearance were observed as inactive
        gap = (0,) * (day_of_month - 1 - current)
        if gap:
            logger.debug(
                "Zero-filling skipped days",
                entity_key=array.entity_key,
                from_day=current + 1,
                to_day=day_of_month - 1,
            )
        return MonthlyMetricArray(
            array.entity_key, array.month, array.metric_name, array.values + gap + (value,)
        )

    @staticmethod
    def truncate(array: MonthlyMetricArray, day_of_month: int) -> MonthlyMetricArray:
        """Drop ``day_of_month`` and every later day so the day can be re-appended"""
        if day_of_month < 1:
            raise ValueError("day_of_month must be at least 1")
        return MonthlyMetricArray(
            array.entity_key, array.month, array.metric_name, array.values[:day_of_month - 1]
        )

    def accumulate(
        self,
        arrays_by_key: Mapping[Hashable, MonthlyMetricArray],
        values_by_key: Mapping[Hashable, Union[int, float]],
        as_of_date: date,
    ) -> AccumulateResult:
        """
        Apply one day to every entity.

        Entities with a value get it appended; entities with an array for the
        month but no value get an explicit zero. Failures are collected per
        entity and do not stop the others.
        """
        month = month_start(as_of_date)
        day = as_of_date.day
        result = AccumulateResult()

        keys = list(arrays_by_key)
        keys.extend(k for k in values_by_key if k not in arrays_by_key)

        for key in keys:
            array = arrays_by_key.get(key)
            try:
                if key in values_by_key:
                    result.arrays[key] = self.append_day(
                        array, day, values_by_key[key], month, entity_key=key
                    )
                    result.appended += 1
                elif array is not None and array.month == month:
                    result.arrays[key] = self.append_missing(array, day)
                    result.zero_filled += 1
            except EntityError as e:
                result.failures[key] = e
                logger.warning(
                    "Monthly array update failed",
                    entity_key=key,
                    error=str(e),
                )

        logger.info(
            "Accumulated monthly arrays",
            metric=self.metric_name,
            as_of_date=as_of_date.isoformat(),
            appended=result.appended,
            zero_filled=result.zero_filled,
            failed=len(result.failures),
        )
        return result
