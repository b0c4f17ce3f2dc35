"""
Unit Tests - Cumulative Merge, Reduced Arrays and the Daily Job
"""
from datetime import date

import pytest

from cumulative.activity.bitset import ActivityBitset
from cumulative.activity.records import CumulativeRecord, DailyActivityFact, DateList
from cumulative.exceptions import DuplicateFact, InvalidFactDate, NullEntityKey, ReplayConflict
from cumulative.transformation.merger import CumulativeMerger, MergeOutcome
from cumulative.transformation.pipeline import DailyCumulativeJob, sum_event_counts
from cumulative.transformation.reduced import (
    NOT_OBSERVED,
    MonthlyMetricArray,
    ReducedArrayAccumulator,
    aggregate_daily,
    monthly_total,
    observed_days,
)

MARCH = date(2023, 3, 1)


def fact(key, day, count=1, dimension=None):
    return DailyActivityFact(entity_key=key, activity_date=day, event_count=count, dimension=dimension)


@pytest.fixture
def merger():
    return CumulativeMerger(history_format="datelist", bit_width=32, max_workers=1)


@pytest.fixture
def accumulator():
    return ReducedArrayAccumulator(metric_name="event_count", backfill_mode="zero")


class TestCumulativeMerger:
    """Tests for CumulativeMerger"""

    def test_extends_existing_history(self, merger, previous_record, as_of):
        """Activity today is appended to the prior date list"""
        result = merger.reconcile(previous_record, [fact(101, as_of)], as_of)

        assert result.outcome == MergeOutcome.EXTENDED
        assert result.record.as_of_date == as_of
        assert result.record.history().dates == (
            date(2023, 3, 1), date(2023, 3, 15), date(2023, 3, 29), date(2023, 3, 31)
        )

    def test_first_seen_entity(self, merger, as_of):
        """An entity without a previous record starts with today only"""
        result = merger.reconcile(None, [fact(7, as_of)], as_of)

        assert result.outcome == MergeOutcome.NEW
        assert result.record.history().dates == (as_of,)

    def test_carried_forward(self, merger, previous_record, as_of):
        """No activity today keeps the history and advances the date"""
        result = merger.reconcile(previous_record, [], as_of)

        assert result.outcome == MergeOutcome.CARRIED_FORWARD
        assert result.record.as_of_date == as_of
        assert result.record.history() == previous_record.history()

    def test_bitset_extend_and_carry(self, as_of):
        """Bitset histories shift one day and set bit 0 only when active"""
        merger = CumulativeMerger(history_format="bitset", bit_width=32, max_workers=1)
        previous = CumulativeRecord(5, date(2023, 3, 30), {None: ActivityBitset(0b11, 32)})

        extended = merger.merge(previous, [fact(5, as_of)], as_of)
        carried = merger.merge(previous, [], as_of)

        assert extended.history().value == 0b111
        assert carried.history().value == 0b110

    def test_bitset_first_seen(self, as_of):
        """New bitset entities start at 1"""
        merger = CumulativeMerger(history_format="bitset", bit_width=64, max_workers=1)

        record = merger.merge(None, [fact(5, as_of)], as_of)

        assert record.history() == ActivityBitset(1, 64)

    def test_dimension_labels(self, merger, as_of):
        """Known labels extend, new labels start fresh, idle labels carry forward"""
        previous = CumulativeRecord(
            "u1",
            date(2023, 3, 30),
            {
                "chrome": DateList((date(2023, 3, 29),)),
                "safari": DateList((date(2023, 3, 2),)),
            },
        )
        facts = [fact("u1", as_of, 3, "chrome"), fact("u1", as_of, 1, "firefox")]

        record = merger.merge(previous, facts, as_of)

        assert record.labels == ("chrome", "firefox", "safari")
        assert record.history("chrome").dates == (date(2023, 3, 29), as_of)
        assert record.history("firefox").dates == (as_of,)
        assert record.history("safari").dates == (date(2023, 3, 2),)

    def test_idempotent(self, merger, previous_record, as_of):
        """Identical inputs give identical records"""
        facts = [fact(101, as_of)]

        assert merger.merge(previous_record, facts, as_of) == merger.merge(previous_record, facts, as_of)

    def test_chained_merges_never_lose_dates(self, merger, previous_record):
        """History after two runs contains every earlier date"""
        first = merger.merge(previous_record, [fact(101, date(2023, 3, 31))], date(2023, 3, 31))
        second = merger.merge(first, [fact(101, date(2023, 4, 1))], date(2023, 4, 1))

        dates = set(second.history().dates)
        assert set(previous_record.history().dates) <= dates
        assert {date(2023, 3, 31), date(2023, 4, 1)} <= dates

    def test_rejects_misdated_fact(self, merger, as_of):
        """Facts for another day are a caller error"""
        with pytest.raises(InvalidFactDate):
            merger.merge(None, [fact(1, date(2023, 3, 30))], as_of)

    def test_rejects_duplicate_fact(self, merger, as_of):
        """Facts must be pre-aggregated per label"""
        with pytest.raises(DuplicateFact):
            merger.merge(None, [fact(1, as_of, 2), fact(1, as_of, 3)], as_of)

    def test_rejects_non_advancing_date(self, merger, previous_record):
        """as_of_date must move past the previous record"""
        with pytest.raises(ValueError):
            merger.merge(previous_record, [], previous_record.as_of_date)

    def test_rejects_mixed_entities(self, merger, previous_record, as_of):
        """A single merge covers one entity"""
        with pytest.raises(ValueError):
            merger.merge(previous_record, [fact(999, as_of)], as_of)

    def test_merge_all_is_full_outer_join(self, merger, previous_record, as_of):
        """Every entity from either side appears exactly once"""
        other = CumulativeRecord(104, date(2023, 3, 30), {None: DateList((date(2023, 3, 30),))})
        previous = {101: previous_record, 104: other}
        facts = [fact(101, as_of), fact(102, as_of)]

        results = merger.merge_all(previous, facts, as_of)

        assert list(results) == [101, 104, 102]
        assert results[101].outcome == MergeOutcome.EXTENDED
        assert results[104].outcome == MergeOutcome.CARRIED_FORWARD
        assert results[102].outcome == MergeOutcome.NEW

    def test_merge_all_sharded_matches_serial(self, merger, as_of):
        """Sharding across workers does not change the result"""
        facts = [fact(i, as_of, dimension="web") for i in range(50)]
        sharded = CumulativeMerger(history_format="datelist", bit_width=32, max_workers=4, shard_count=3)

        serial_results = merger.merge_all({}, facts, as_of)
        sharded_results = sharded.merge_all({}, facts, as_of)

        assert list(serial_results) == list(sharded_results)
        assert [r.record for r in serial_results.values()] == [r.record for r in sharded_results.values()]

    def test_merge_all_rejects_before_merging(self, merger, as_of):
        """Run-level errors are raised for the batch as a whole"""
        with pytest.raises(InvalidFactDate):
            merger.merge_all({}, [fact(1, as_of), fact(2, date(2023, 3, 1))], as_of)
        with pytest.raises(NullEntityKey):
            merger.merge_all({}, [fact(None, as_of)], as_of)


class TestReducedArrayAccumulator:
    """Tests for ReducedArrayAccumulator"""

    def test_new_array_backfilled_with_zero(self, accumulator):
        """First appearance on day 3 pads days 1 and 2"""
        array = accumulator.append_day(None, 3, 4, MARCH, entity_key=1)

        assert array.values == (0, 0, 4)
        assert array.month == MARCH

    def test_append_then_replay_conflict(self, accumulator):
        """Appending the next day works once; a repeat is a conflict"""
        array = MonthlyMetricArray(1, MARCH, "event_count", (5, 3))

        array = accumulator.append_day(array, 3, 7, MARCH)
        assert array.values == (5, 3, 7)

        with pytest.raises(ReplayConflict) as exc_info:
            accumulator.append_day(array, 3, 7, MARCH)
        assert exc_info.value.entity_key == 1
        assert exc_info.value.current_length == 3

    def test_new_month_starts_new_array(self, accumulator):
        """An array from an earlier month is not extended"""
        february = MonthlyMetricArray(1, date(2023, 2, 1), "event_count", (1,) * 28)

        array = accumulator.append_day(february, 2, 9, MARCH)

        assert array.month == MARCH
        assert array.values == (0, 9)

    def test_append_missing_is_zero(self, accumulator):
        """A day without facts is recorded as an explicit zero"""
        array = MonthlyMetricArray(1, MARCH, "event_count", (5,))

        assert accumulator.append_missing(array, 2).values == (5, 0)

    def test_sentinel_backfill(self):
        """Sentinel mode marks days before first appearance as not observed"""
        accumulator = ReducedArrayAccumulator(metric_name="event_count", backfill_mode="sentinel")

        array = accumulator.append_day(None, 3, 4, MARCH, entity_key=1)

        assert array.values == (NOT_OBSERVED, NOT_OBSERVED, 4)
        assert monthly_total(array) == 4
        assert observed_days(array) == 1

    def test_truncate_allows_retry(self, accumulator):
        """Truncating to the conflicting day makes it appendable again"""
        array = MonthlyMetricArray(1, MARCH, "event_count", (5, 3, 7))

        retried = accumulator.append_day(accumulator.truncate(array, 3), 3, 8, MARCH)

        assert retried.values == (5, 3, 8)

    def test_day_outside_month(self, accumulator):
        """Day numbers must exist in the month"""
        with pytest.raises(ValueError):
            accumulator.append_day(None, 31, 1, date(2023, 4, 1), entity_key=1)

    def test_accumulate_isolates_failures(self, accumulator):
        """One conflicting entity does not stop the others"""
        arrays = {
            1: MonthlyMetricArray(1, MARCH, "event_count", (5, 3)),
            4: MonthlyMetricArray(4, MARCH, "event_count", (1, 1, 1)),
        }
        values = {2: 4, 4: 2}

        result = accumulator.accumulate(arrays, values, date(2023, 3, 3))

        assert result.arrays[1].values == (5, 3, 0)
        assert result.arrays[2].values == (0, 0, 4)
        assert 4 not in result.arrays
        assert isinstance(result.failures[4], ReplayConflict)
        assert result.appended == 1
        assert result.zero_filled == 1

    def test_aggregate_daily(self):
        """Per-day totals across entities skip unobserved positions"""
        arrays = [
            MonthlyMetricArray(1, MARCH, "event_count", (1, 2, 3)),
            MonthlyMetricArray(2, MARCH, "event_count", (NOT_OBSERVED, 5, 0)),
            MonthlyMetricArray(3, MARCH, "event_count", (NOT_OBSERVED, NOT_OBSERVED, NOT_OBSERVED)),
        ]

        assert aggregate_daily(arrays) == [1, 7, 3]
        assert aggregate_daily([arrays[2]]) == [NOT_OBSERVED] * 3


class TestDailyCumulativeJob:
    """Tests for the daily job against a temporary data lake"""

    @pytest.fixture
    def job(self, cumulative_store, array_store, merger, accumulator):
        return DailyCumulativeJob(cumulative_store, array_store, merger, accumulator)

    def test_two_consecutive_days(self, job, array_store):
        """Second run reads the first run's output"""
        day1, day2 = date(2023, 3, 30), date(2023, 3, 31)
        job.run(day1, [fact(101, day1, 3), fact(102, day1, 2)])
        result = job.run(day2, [fact(101, day2, 1), fact(103, day2, 4)])

        snapshot = job.snapshot(day2)
        assert snapshot[101].history().dates == (day1, day2)
        assert snapshot[102].history().dates == (day1,)
        assert snapshot[103].history().dates == (day2,)
        assert result.outcomes == {"new": 1, "carried_forward": 1, "extended": 1}

        arrays = array_store.read(MARCH, "event_count")
        assert arrays[101].values[-2:] == (3, 1)
        assert arrays[102].values[-2:] == (2, 0)
        assert arrays[103].values == (0,) * 30 + (4,)
        assert all(len(a.values) == 31 for a in arrays.values())

    def test_missing_partition_carries_history_across_gap(self, job, cumulative_store, array_store):
        """A skipped day neither drops entities nor loses earlier dates"""
        day1, day3 = date(2023, 3, 1), date(2023, 3, 3)
        job.run(day1, [fact(101, day1), fact(102, day1)])

        result = job.run(day3, [fact(101, day3)])

        snapshot = job.snapshot(day3)
        assert set(snapshot) == {101, 102}
        assert snapshot[101].history().dates == (day1, day3)
        assert snapshot[102].history().dates == (day1,)
        assert result.outcomes == {"new": 0, "carried_forward": 1, "extended": 1}
        assert not cumulative_store.exists(date(2023, 3, 2))

        arrays = array_store.read(MARCH, "event_count")
        assert arrays[101].values == (1, 0, 1)
        assert arrays[102].values == (1, 0, 0)

    def test_missing_partition_shifts_bitsets_by_gap(self, cumulative_store, array_store, accumulator):
        """Bitsets advance by every elapsed day"""
        merger = CumulativeMerger(history_format="bitset", bit_width=32, max_workers=1)
        job = DailyCumulativeJob(cumulative_store, array_store, merger, accumulator)
        day1, day3 = date(2023, 3, 1), date(2023, 3, 3)
        job.run(day1, [fact(101, day1), fact(102, day1)])

        job.run(day3, [fact(101, day3)])

        snapshot = job.snapshot(day3)
        assert snapshot[101].history() == ActivityBitset(0b101, 32)
        assert snapshot[102].history() == ActivityBitset(0b100, 32)

    def test_rerun_reports_replay_conflicts(self, job, cumulative_store):
        """Re-running a day keeps cumulative output and flags array conflicts"""
        day = date(2023, 3, 31)
        facts = [fact(101, day, 3), fact(102, day, 2)]
        job.run(day, facts)
        first = cumulative_store.read(day)

        result = job.run(day, facts)

        assert cumulative_store.read(day) == first
        assert result.has_failures
        assert set(result.failed_entities) == {101, 102}

    def test_rejected_run_writes_nothing(self, job, cumulative_store, array_store):
        """A misdated fact aborts the run before any write"""
        day = date(2023, 3, 31)

        with pytest.raises(InvalidFactDate):
            job.run(day, [fact(101, day), fact(102, date(2023, 3, 30))])

        assert not cumulative_store.exists(day)
        assert array_store.read(MARCH, "event_count") == {}

    def test_backfill_runs_in_order(self, job):
        """Backfill chains consecutive days"""
        start, end = date(2023, 3, 1), date(2023, 3, 3)
        facts_by_date = {
            date(2023, 3, 1): [fact("h1", date(2023, 3, 1))],
            date(2023, 3, 3): [fact("h1", date(2023, 3, 3))],
        }

        results = job.backfill(start, end, facts_by_date)

        assert [r.as_of_date for r in results] == [date(2023, 3, 1), date(2023, 3, 2), date(2023, 3, 3)]
        assert job.snapshot(end)["h1"].history().dates == (date(2023, 3, 1), date(2023, 3, 3))

    def test_sum_event_counts(self, as_of):
        """Counts are summed across dimensions per entity"""
        facts = [fact(1, as_of, 2, "a"), fact(1, as_of, 3, "b"), fact(2, as_of, 1)]

        assert sum_event_counts(facts) == {1: 5, 2: 1}
