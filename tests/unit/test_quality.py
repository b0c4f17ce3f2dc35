"""
Unit Tests - Fact Quality
"""
from datetime import date

import pytest
import polars as pl

from cumulative.exceptions import DuplicateFact, InvalidFactDate, NullEntityKey, RunRejected
from cumulative.quality.validators import (
    FactValidator,
    ValidationSeverity,
    ValidationStatus,
    create_facts_validator,
)


class TestFactValidator:
    """Tests for FactValidator"""

    def test_valid_facts_pass(self, sample_facts_df, as_of):
        """Well-formed facts pass every check"""
        result = create_facts_validator(as_of).validate(sample_facts_df)

        assert result.status == ValidationStatus.PASSED
        assert result.passed_checks == result.total_checks

    def test_not_null_check_fails(self):
        """Null values fail the not-null check"""
        df = pl.DataFrame({"entity_key": [1, None, 3]})

        result = FactValidator().add_not_null_check("entity_key").validate(df)

        assert result.status == ValidationStatus.FAILED
        assert result.checks[0].failed_rows == 1

    def test_unique_check_treats_null_dimension_as_key(self, as_of):
        """Two unlabelled facts for one entity are duplicates"""
        df = pl.DataFrame({
            "entity_key": [1, 1, 1],
            "dimension": [None, None, "chrome"],
            "activity_date": [as_of, as_of, as_of],
        })

        result = FactValidator().add_unique_check(["entity_key", "dimension", "activity_date"]).validate(df)

        check = result.checks[0]
        assert not check.passed
        assert check.failed_rows == 2
        assert check.details["duplicate_key_count"] == 1

    def test_range_check(self):
        """Negative counts are out of range"""
        df = pl.DataFrame({"event_count": [1, -2, 0]})

        result = FactValidator().add_range_check("event_count", min_value=0).validate(df)

        assert result.status == ValidationStatus.FAILED
        assert result.checks[0].failed_rows == 1

    def test_missing_column(self):
        """Checks against missing columns fail"""
        result = FactValidator().add_not_null_check("entity_key").validate(pl.DataFrame({"x": [1]}))

        assert result.status == ValidationStatus.FAILED
        assert "not found" in result.checks[0].message

    def test_warning_gives_partial(self):
        """Warning-level failures do not fail the suite"""
        df = pl.DataFrame({"event_count": [-1]})

        result = (
            FactValidator()
            .add_range_check("event_count", min_value=0, severity=ValidationSeverity.WARNING)
            .validate(df)
        )

        assert result.status == ValidationStatus.PARTIAL
        assert result.warning_count == 1


class TestRunLevelErrors:
    """validate_or_raise maps failed checks to run-level errors"""

    def test_invalid_fact_date(self, sample_facts_df):
        """Facts for another date reject the run"""
        with pytest.raises(InvalidFactDate) as exc_info:
            create_facts_validator(date(2023, 4, 1)).validate_or_raise(sample_facts_df)

        assert exc_info.value.fact_dates == ["2023-03-31"]

    def test_duplicate_fact(self, sample_facts_df):
        """Duplicated (entity, dimension, date) rejects the run"""
        df = pl.concat([sample_facts_df, sample_facts_df.head(1)])

        with pytest.raises(DuplicateFact):
            create_facts_validator(date(2023, 3, 31)).validate_or_raise(df)

    def test_null_entity_key(self, sample_facts_df, as_of):
        """Null entity keys must be filtered upstream"""
        df = sample_facts_df.with_columns(
            pl.when(pl.col("event_count") == 7).then(None).otherwise(pl.col("entity_key")).alias("entity_key")
        )

        with pytest.raises(NullEntityKey):
            create_facts_validator(as_of).validate_or_raise(df)

    def test_negative_count(self, sample_facts_df, as_of):
        """Negative counts reject the run"""
        df = sample_facts_df.with_columns(pl.lit(-1).cast(pl.Int64).alias("event_count"))

        with pytest.raises(RunRejected):
            create_facts_validator(as_of).validate_or_raise(df)
