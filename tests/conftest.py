"""
Test Suite Configuration
"""
from datetime import date

import pytest
import polars as pl

from cumulative.activity.records import CumulativeRecord, DateList
from cumulative.config import Settings
from cumulative.storage import CumulativeStore, MonthlyArrayStore


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """Create test settings"""
    return Settings(
        app_env="testing",
    )


@pytest.fixture
def as_of() -> date:
    return date(2023, 3, 31)


@pytest.fixture
def sample_facts_df(as_of) -> pl.DataFrame:
    """Create sample fact DataFrame for testing"""
    return pl.DataFrame({
        "entity_key": [101, 101, 102, 103],
        "activity_date": [as_of, as_of, as_of, as_of],
        "event_count": [3, 1, 7, 2],
        "dimension": ["chrome", "firefox", "chrome", None],
    })


@pytest.fixture
def previous_record() -> CumulativeRecord:
    """Record as of 2023-03-30 with three active days in March"""
    return CumulativeRecord(
        entity_key=101,
        as_of_date=date(2023, 3, 30),
        activity={None: DateList((date(2023, 3, 1), date(2023, 3, 15), date(2023, 3, 29)))},
    )


@pytest.fixture
def cumulative_store(tmp_path) -> CumulativeStore:
    return CumulativeStore(tmp_path / "cumulative")


@pytest.fixture
def array_store(tmp_path) -> MonthlyArrayStore:
    return MonthlyArrayStore(tmp_path / "reduced")
