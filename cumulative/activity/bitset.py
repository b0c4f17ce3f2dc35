"""
Activity Bitset ("datelist integer")

Fixed-width encoding of recent daily activity. Bit ``i`` is set iff the
entity was active ``i`` days before the as-of date, so bit 0 (today) is the
least significant bit and the oldest tracked day is the most significant.
History older than ``width`` days is truncated and cannot be recovered.
"""

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable, List, Optional

from cumulative.config.settings import MAX_BIT_WIDTH
from cumulative.exceptions import WindowTooWide

DEFAULT_WIDTH = 32


def _check_width(width: int) -> None:
    if not 1 <= width <= MAX_BIT_WIDTH:
        raise ValueError(f"Bitset width must be between 1 and {MAX_BIT_WIDTH}, got {width}")


@dataclass(frozen=True)
class ActivityBitset:
    """
    Immutable fixed-width activity bitset.

    Example:
        bits = ActivityBitset.first_seen(width=32)
        bits = bits.shift_and_set(active_today=True)
        bits.count_active_within(7)  # 2
    """
    value: int = 0
    width: int = DEFAULT_WIDTH

    def __post_init__(self):
        _check_width(self.width)
        if self.value < 0:
            raise ValueError("Bitset value cannot be negative")
        if self.value >> self.width:
            raise ValueError(f"Value {self.value} does not fit in {self.width} bits")

    @property
    def mask(self) -> int:
        return (1 << self.width) - 1

    @classmethod
    def empty(cls, width: int = DEFAULT_WIDTH) -> "ActivityBitset":
        return cls(0, width)

    @classmethod
    def first_seen(cls, width: int = DEFAULT_WIDTH) -> "ActivityBitset":
        """Bitset for an entity whose only activity is today"""
        return cls(1, width)

    @classmethod
    def from_dates(
        cls,
        dates: Iterable[date],
        as_of_date: date,
        width: int = DEFAULT_WIDTH,
    ) -> "ActivityBitset":
        """
        Encode a date list relative to ``as_of_date``.

        Dates older than ``width`` days, or after the as-of date, are omitted.
        """
        _check_width(width)
        value = 0
        for day in dates:
            offset = (as_of_date - day).days
            if 0 <= offset < width:
                value |= 1 << offset
        return cls(value, width)

    def _check_window(self, window: int) -> None:
        if not 1 <= window <= self.width:
            raise WindowTooWide(window, self.width)

    def shift_and_set(self, active_today: bool) -> "ActivityBitset":
        """Age every bit by one day, then set bit 0 iff active today"""
        value = (self.value << 1) & self.mask
        if active_today:
            value |= 1
        return ActivityBitset(value, self.width)

    def advance(self, days: int, active_today: bool) -> "ActivityBitset":
        """Move the as-of date forward by ``days`` (gap days count as inactive)"""
        if days < 1:
            raise ValueError(f"A bitset can only advance forward, got {days} days")
        value = (self.value << days) & self.mask if days < self.width else 0
        if active_today:
            value |= 1
        return ActivityBitset(value, self.width)

    def shifted_right(self, days: int) -> "ActivityBitset":
        """View of the history as it looked ``days`` days ago (same width)"""
        if days < 0:
            raise ValueError("Shift must be non-negative")
        return ActivityBitset(self.value >> days, self.width)

    def is_active_on(self, offset: int) -> bool:
        """True iff bit ``offset`` (days before the as-of date) is set"""
        if not 0 <= offset < self.width:
            raise WindowTooWide(offset + 1, self.width)
        return bool(self.value >> offset & 1)

    def is_active_within(self, window: int) -> bool:
        self._check_window(window)
        return bool(self.value & ((1 << window) - 1))

    def count_active_within(self, window: int) -> int:
        self._check_window(window)
        return (self.value & ((1 << window) - 1)).bit_count()

    def active_offsets(self) -> List[int]:
        """Set bit positions, most recent first"""
        return [i for i in range(self.width) if self.value >> i & 1]

    def to_dates(self, as_of_date: date) -> List[date]:
        """Decode back to a chronological date list"""
        return [as_of_date - timedelta(days=i) for i in reversed(self.active_offsets())]

    def last_active_offset(self) -> Optional[int]:
        """Days since the most recent activity, or None if nothing is tracked"""
        if not self.value:
            return None
        return (self.value & -self.value).bit_length() - 1

    def is_empty(self) -> bool:
        return self.value == 0

    def __int__(self) -> int:
        return self.value

    def __or__(self, other: "ActivityBitset") -> "ActivityBitset":
        if other.width != self.width:
            raise ValueError("Cannot combine bitsets of different widths")
        return ActivityBitset(self.value | other.value, self.width)


def shift_and_set(bitset: ActivityBitset, active_today: bool) -> ActivityBitset:
    """Shift all bits toward "older" and set bit 0 iff ``active_today``"""
    return bitset.shift_and_set(active_today)


def is_active_within(bitset: ActivityBitset, window: int) -> bool:
    """True iff any of bits [0, window) are set"""
    return bitset.is_active_within(window)


def count_active_within(bitset: ActivityBitset, window: int) -> int:
    """Popcount of bits [0, window)"""
    return bitset.count_active_within(window)
