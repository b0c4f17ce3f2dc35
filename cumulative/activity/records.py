"""
Activity Records

Value types flowing through the engine:
- DateList: chronological, duplicate-free activity dates
- CumulativeRecord: one entity's activity histories as of a date
- DailyActivityFact: one pre-aggregated (entity, dimension, day) fact
"""

from dataclasses import dataclass, field
from datetime import date
from types import MappingProxyType
from typing import Dict, Hashable, Iterable, Mapping, Optional, Tuple, Union

from .bitset import ActivityBitset, DEFAULT_WIDTH


@dataclass(frozen=True)
class DateList:
    """Append-only chronological list of distinct activity dates"""
    dates: Tuple[date, ...] = ()

    def __post_init__(self):
        dates = tuple(self.dates)
        for earlier, later in zip(dates, dates[1:]):
            if later <= earlier:
                raise ValueError(
                    f"Activity dates must be strictly increasing, got {earlier} before {later}"
                )
        object.__setattr__(self, "dates", dates)

    @classmethod
    def first_seen(cls, as_of_date: date) -> "DateList":
        return cls((as_of_date,))

    @classmethod
    def from_unsorted(cls, dates: Iterable[date]) -> "DateList":
        return cls(tuple(sorted(set(dates))))

    def with_date(self, day: date) -> "DateList":
        """Append a date newer than every date already present"""
        if self.dates and day <= self.dates[-1]:
            raise ValueError(f"Cannot append {day}: history already runs to {self.dates[-1]}")
        return DateList(self.dates + (day,))

    @property
    def last_active(self) -> Optional[date]:
        return self.dates[-1] if self.dates else None

    def to_bitset(self, as_of_date: date, width: int = DEFAULT_WIDTH) -> ActivityBitset:
        return ActivityBitset.from_dates(self.dates, as_of_date, width)

    def __contains__(self, day: object) -> bool:
        return day in self.dates

    def __len__(self) -> int:
        return len(self.dates)

    def __or__(self, other: "DateList") -> "DateList":
        return DateList.from_unsorted(self.dates + other.dates)


ActivityHistory = Union[DateList, ActivityBitset]

DATELIST = "datelist"
BITSET = "bitset"


def representation_of(history: ActivityHistory) -> str:
    return BITSET if isinstance(history, ActivityBitset) else DATELIST


def advance_history(
    history: ActivityHistory,
    previous_as_of: date,
    as_of_date: date,
    active_today: bool,
) -> ActivityHistory:
    """
    Move a history from ``previous_as_of`` to ``as_of_date``.

    Date lists gain ``as_of_date`` when active and are otherwise unchanged.
    Bitsets are positional, so they shift by the number of elapsed days
    even when inactive.
    """
    days = (as_of_date - previous_as_of).days
    if days < 1:
        raise ValueError(
            f"as_of_date must advance: previous {previous_as_of}, requested {as_of_date}"
        )
    if isinstance(history, ActivityBitset):
        return history.advance(days, active_today)
    return history.with_date(as_of_date) if active_today else history


def first_seen_history(representation: str, as_of_date: date, width: int = DEFAULT_WIDTH) -> ActivityHistory:
    if representation == BITSET:
        return ActivityBitset.first_seen(width)
    if representation == DATELIST:
        return DateList.first_seen(as_of_date)
    raise ValueError(f"Unknown history representation: {representation}")


def _label_sort_key(label: Optional[str]) -> Tuple[bool, str]:
    return (label is not None, label or "")


@dataclass(frozen=True)
class CumulativeRecord:
    """
    One entity's activity as of a date.

    ``activity`` maps a dimension label (``None`` when the table has a single
    dimension) to that label's history. Records are never mutated; the next
    run derives a new record.
    """
    entity_key: Hashable
    as_of_date: date
    activity: Mapping[Optional[str], ActivityHistory] = field(default_factory=dict)

    def __post_init__(self):
        if self.entity_key is None:
            raise ValueError("CumulativeRecord requires a non-null entity_key")
        ordered = dict(sorted(self.activity.items(), key=lambda item: _label_sort_key(item[0])))
        kinds = {representation_of(h) for h in ordered.values()}
        if len(kinds) > 1:
            raise ValueError(f"Record {self.entity_key!r} mixes history representations: {kinds}")
        for label, history in ordered.items():
            if isinstance(history, DateList) and history.last_active and history.last_active > self.as_of_date:
                raise ValueError(
                    f"History for {label!r} runs past as_of_date {self.as_of_date}"
                )
        object.__setattr__(self, "activity", MappingProxyType(ordered))

    @property
    def labels(self) -> Tuple[Optional[str], ...]:
        return tuple(self.activity)

    @property
    def representation(self) -> Optional[str]:
        for history in self.activity.values():
            return representation_of(history)
        return None

    def history(self, label: Optional[str] = None) -> Optional[ActivityHistory]:
        return self.activity.get(label)

    def combined_history(self) -> Optional[ActivityHistory]:
        """Union of every label's history"""
        combined = None
        for history in self.activity.values():
            combined = history if combined is None else combined | history
        return combined

    def to_bitset_record(self, width: int = DEFAULT_WIDTH) -> "CumulativeRecord":
        """Compact date lists into datelist integers relative to as_of_date"""
        converted: Dict[Optional[str], ActivityHistory] = {}
        for label, history in self.activity.items():
            if isinstance(history, ActivityBitset):
                if history.width != width:
                    raise ValueError(
                        f"Cannot re-width a bitset from {history.width} to {width} bits"
                    )
                converted[label] = history
            else:
                converted[label] = history.to_bitset(self.as_of_date, width)
        return CumulativeRecord(self.entity_key, self.as_of_date, converted)

    def bitset(self, label: Optional[str] = None, width: int = DEFAULT_WIDTH) -> Optional[ActivityBitset]:
        """One label's history as a bitset, converting a date list on the fly"""
        history = self.activity.get(label)
        if history is None or isinstance(history, ActivityBitset):
            return history
        return history.to_bitset(self.as_of_date, width)


@dataclass(frozen=True)
class DailyActivityFact:
    """Pre-aggregated activity of one entity (and optional dimension) on one day"""
    entity_key: Hashable
    activity_date: date
    event_count: int = 1
    dimension: Optional[str] = None
