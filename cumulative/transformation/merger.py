"""
Cumulative Merger

Derives today's cumulative record for each entity from yesterday's record
and today's pre-aggregated facts. The relational version of this step is a
full outer join of "yesterday" and "today"; here it runs per entity as a pure
function, so entities can be sharded across workers and a run can be
repeated with identical output.
"""

from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Dict, Hashable, Iterable, List, Mapping, Optional, Sequence

import structlog

from cumulative.activity.bitset import ActivityBitset
from cumulative.activity.records import (
    ActivityHistory,
    CumulativeRecord,
    DailyActivityFact,
    advance_history,
    first_seen_history,
)
from cumulative.config import get_settings
from cumulative.exceptions import DuplicateFact, InvalidFactDate, NullEntityKey

logger = structlog.get_logger(__name__)


class MergeOutcome(str, Enum):
    """How an entity's record was derived"""
    NEW = "new"  # first seen today
    CARRIED_FORWARD = "carried_forward"  # no activity today
    EXTENDED = "extended"  # prior history plus today


@dataclass(frozen=True)
class MergeResult:
    """Record produced for one entity, tagged with its outcome"""
    outcome: MergeOutcome
    record: CumulativeRecord


def check_fact_dates(facts: Iterable[DailyActivityFact], as_of_date: date) -> None:
    """Reject facts dated anything other than the as-of date"""
    wrong = sorted({f.activity_date for f in facts if f.activity_date != as_of_date})
    if wrong:
        raise InvalidFactDate(as_of_date, [d.isoformat() for d in wrong])


def check_duplicate_facts(facts: Iterable[DailyActivityFact]) -> None:
    """Reject more than one fact per (entity, dimension, date)"""
    counts = Counter((f.entity_key, f.dimension, f.activity_date) for f in facts)
    duplicates = [key for key, n in counts.items() if n > 1]
    if duplicates:
        raise DuplicateFact(duplicates[:10], count=len(duplicates))


class CumulativeMerger:
    """
    Per-entity reconciliation of yesterday's record with today's facts.

    - previous only: history carried forward, as_of_date advances
    - facts only: new history containing just the as-of date
    - both: history extended; new dimension labels inserted fresh

    Example:
        merger = CumulativeMerger(history_format="datelist")
        record = merger.merge(previous, facts, date(2023, 3, 31))
    """

    def __init__(
        self,
        history_format: Optional[str] = None,
        bit_width: Optional[int] = None,
        max_workers: Optional[int] = None,
        shard_count: Optional[int] = None,
    ):
        settings = get_settings()
        self.history_format = history_format or settings.activity.history_format
        self.bit_width = bit_width or settings.activity.bit_width
        self.max_workers = max_workers or settings.processing.max_workers
        self.shard_count = shard_count or settings.processing.effective_shard_count

    def reconcile(
        self,
        previous: Optional[CumulativeRecord],
        facts: Sequence[DailyActivityFact],
        as_of_date: date,
    ) -> MergeResult:
        """Merge one entity and report which branch of the outer join it took"""
        facts = list(facts)
        if previous is None and not facts:
            raise ValueError("Nothing to merge: no previous record and no facts")

        keys = {f.entity_key for f in facts}
        if previous is not None:
            keys.add(previous.entity_key)
        if None in keys:
            raise NullEntityKey("Facts must carry a non-null entity_key")
        if len(keys) > 1:
            raise ValueError(f"Facts and previous record span several entities: {sorted(map(repr, keys))}")
        entity_key = keys.pop()

        bad_dates = sorted({f.activity_date for f in facts if f.activity_date != as_of_date})
        if bad_dates:
            raise InvalidFactDate(as_of_date, [d.isoformat() for d in bad_dates], entity_key)
        check_duplicate_facts(facts)

        active_labels = [f.dimension for f in facts]

        if previous is None:
            activity = {
                label: first_seen_history(self.history_format, as_of_date, self.bit_width)
                for label in active_labels
            }
            return MergeResult(MergeOutcome.NEW, CumulativeRecord(entity_key, as_of_date, activity))

        if previous.as_of_date >= as_of_date:
            raise ValueError(
                f"as_of_date must advance for entity {entity_key!r}: "
                f"previous {previous.as_of_date}, requested {as_of_date}"
            )

        representation = previous.representation or self.history_format
        width = self._width_of(previous)

        activity: Dict[Optional[str], ActivityHistory] = {}
        for label, history in previous.activity.items():
            activity[label] = advance_history(
                history, previous.as_of_date, as_of_date, label in active_labels
            )
        for label in active_labels:
            if label not in activity:
                activity[label] = first_seen_history(representation, as_of_date, width)

        outcome = MergeOutcome.EXTENDED if facts else MergeOutcome.CARRIED_FORWARD
        return MergeResult(outcome, CumulativeRecord(entity_key, as_of_date, activity))

    def merge(
        self,
        previous: Optional[CumulativeRecord],
        facts: Sequence[DailyActivityFact],
        as_of_date: date,
    ) -> CumulativeRecord:
        """Today's record for one entity"""
        return self.reconcile(previous, facts, as_of_date).record

    def _width_of(self, record: CumulativeRecord) -> int:
        for history in record.activity.values():
            if isinstance(history, ActivityBitset):
                return history.width
        return self.bit_width

    def _merge_shard(
        self,
        keys: List[Hashable],
        previous_by_key: Mapping[Hashable, CumulativeRecord],
        facts_by_key: Mapping[Hashable, List[DailyActivityFact]],
        as_of_date: date,
    ) -> Dict[Hashable, MergeResult]:
        return {
            key: self.reconcile(previous_by_key.get(key), facts_by_key.get(key, []), as_of_date)
            for key in keys
        }

    def merge_all(
        self,
        previous_by_key: Mapping[Hashable, CumulativeRecord],
        facts: Iterable[DailyActivityFact],
        as_of_date: date,
    ) -> Dict[Hashable, MergeResult]:
        """
        Merge every entity of a run.

        Run-level checks (fact dates, duplicates, null keys) happen before any
        entity is merged. The result holds exactly the union of entities from
        ``previous_by_key`` and ``facts``.

        Args:
            previous_by_key: Yesterday's records keyed by entity
            facts: Today's pre-aggregated facts
            as_of_date: The run date

        Returns:
            MergeResult per entity key, previous entities first
        """
        facts = list(facts)
        if any(f.entity_key is None for f in facts):
            raise NullEntityKey("Facts must carry a non-null entity_key")
        check_fact_dates(facts, as_of_date)
        check_duplicate_facts(facts)

        facts_by_key: Dict[Hashable, List[DailyActivityFact]] = {}
        for fact in facts:
            facts_by_key.setdefault(fact.entity_key, []).append(fact)

        keys = list(previous_by_key)
        keys.extend(k for k in facts_by_key if k not in previous_by_key)

        if self.max_workers > 1 and self.shard_count > 1 and len(keys) > self.shard_count:
            shards = [keys[i::self.shard_count] for i in range(self.shard_count)]
            shard_results: Dict[Hashable, MergeResult] = {}
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                futures = [
                    pool.submit(self._merge_shard, shard, previous_by_key, facts_by_key, as_of_date)
                    for shard in shards
                ]
                for future in futures:
                    shard_results.update(future.result())
            results = {key: shard_results[key] for key in keys}
        else:
            results = self._merge_shard(keys, previous_by_key, facts_by_key, as_of_date)

        outcomes = Counter(r.outcome for r in results.values())
        logger.info(
            "Merged cumulative records",
            as_of_date=as_of_date.isoformat(),
            entities=len(results),
            new=outcomes[MergeOutcome.NEW],
            carried_forward=outcomes[MergeOutcome.CARRIED_FORWARD],
            extended=outcomes[MergeOutcome.EXTENDED],
        )
        return results
