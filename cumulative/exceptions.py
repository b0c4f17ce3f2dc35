"""
Error taxonomy for the cumulative activity engine.

Run-level errors (``RunRejected``) abort a run before anything is written.
Entity-level errors (``EntityError``) are isolated to one entity so the rest
of the run can commit.
"""

from datetime import date
from typing import Any, Optional


class CumulativeError(Exception):
    """Base class for engine errors"""


class RunRejected(CumulativeError):
    """The whole run must be rejected (upstream misconfiguration)"""


class InvalidFactDate(RunRejected):
    """A fact is dated differently from the run's as-of date"""

    def __init__(self, as_of_date: date, fact_dates: Any, entity_key: Any = None):
        self.as_of_date = as_of_date
        self.fact_dates = fact_dates
        self.entity_key = entity_key
        message = f"Facts dated {fact_dates} do not match as-of date {as_of_date}"
        if entity_key is not None:
            message += f" (entity {entity_key!r})"
        super().__init__(message)


class DuplicateFact(RunRejected):
    """More than one fact for the same (entity, dimension, date)"""

    def __init__(self, duplicates: Any, count: Optional[int] = None):
        self.duplicates = duplicates
        self.count = count
        detail = f"{count} duplicated keys" if count is not None else "duplicated key"
        super().__init__(
            f"Facts must be pre-aggregated per (entity, dimension, date): {detail} {duplicates}"
        )


class NullEntityKey(RunRejected):
    """Facts arrived with null entity keys"""


class WindowTooWide(CumulativeError, ValueError):
    """Requested window does not fit in the bitset width"""

    def __init__(self, window: int, width: int):
        self.window = window
        self.width = width
        super().__init__(f"Window {window} is outside 1..{width} for a {width}-bit history")


class EntityError(CumulativeError):
    """Failure confined to a single entity"""

    def __init__(self, entity_key: Any, message: str):
        self.entity_key = entity_key
        super().__init__(message)


class ReplayConflict(EntityError):
    """A monthly array already holds the day being appended"""

    def __init__(self, entity_key: Any, day_of_month: int, current_length: int):
        self.day_of_month = day_of_month
        self.current_length = current_length
        super().__init__(
            entity_key,
            f"Day {day_of_month} already present for entity {entity_key!r} "
            f"(array length {current_length}); truncate before retrying",
        )
