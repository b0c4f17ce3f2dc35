"""
Fact Validation Module

Rule-based checks applied to a day's fact frame before it reaches the
merger. Failed ERROR checks reject the whole run.

Checks:
- Non-null entity keys and activity dates
- Non-negative event counts
- Every fact dated on the run's as-of date
- One fact per (entity, dimension, date)
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Type

import polars as pl
import structlog

from cumulative.exceptions import (
    DuplicateFact,
    InvalidFactDate,
    NullEntityKey,
    RunRejected,
)

logger = structlog.get_logger(__name__)


class ValidationSeverity(str, Enum):
    """Severity levels for validation failures"""
    ERROR = "error"  # Critical - rejects the run
    WARNING = "warning"  # Non-critical - logged but continues


class ValidationStatus(str, Enum):
    """Overall validation status"""
    PASSED = "passed"
    FAILED = "failed"
    PARTIAL = "partial"


@dataclass
class ValidationCheck:
    """Single validation check result"""
    name: str
    passed: bool
    severity: ValidationSeverity
    message: str
    details: Optional[Dict[str, Any]] = None
    failed_rows: int = 0
    total_rows: int = 0
    error_type: Type[RunRejected] = RunRejected


@dataclass
class ValidationResult:
    """Complete validation suite result"""
    status: ValidationStatus
    total_checks: int
    passed_checks: int
    failed_checks: int
    warning_count: int
    checks: List[ValidationCheck] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None

    @property
    def errors(self) -> List[ValidationCheck]:
        return [c for c in self.checks if not c.passed and c.severity == ValidationSeverity.ERROR]


class FactValidator:
    """
    Validator for daily activity fact frames.

    Example:
        validator = create_facts_validator(date(2023, 3, 31))
        result = validator.validate(facts_df)
        validator.raise_for_result(result)
    """

    def __init__(self, strict_mode: bool = False):
        self.strict_mode = strict_mode  # Fail on any warning
        self._checks: List[Callable[[pl.DataFrame], ValidationCheck]] = []

    def _missing_column(self, name: str, column: str, severity: ValidationSeverity) -> ValidationCheck:
        return ValidationCheck(
            name=name,
            passed=False,
            severity=severity,
            message=f"Column '{column}' not found",
        )

    def add_not_null_check(
        self,
        column: str,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
        error_type: Type[RunRejected] = RunRejected,
    ) -> "FactValidator":
        """Add check for null values in column"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            name = f"not_null_{column}"
            if column not in df.columns:
                return self._missing_column(name, column, severity)

            null_count = df[column].null_count()
            passed = null_count == 0
            return ValidationCheck(
                name=name,
                passed=passed,
                severity=severity,
                message=f"Column '{column}' has {null_count} null values" if not passed else f"Column '{column}' has no null values",
                details={"null_count": null_count},
                failed_rows=null_count,
                total_rows=len(df),
                error_type=error_type,
            )

        self._checks.append(check)
        return self

    def add_unique_check(
        self,
        columns: List[str],
        severity: ValidationSeverity = ValidationSeverity.ERROR,
        error_type: Type[RunRejected] = DuplicateFact,
    ) -> "FactValidator":
        """Add check that the combination of ``columns`` is unique"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            name = f"unique_{'_'.join(columns)}"
            missing = [c for c in columns if c not in df.columns]
            if missing:
                return self._missing_column(name, missing[0], severity)

            duplicated = df.filter(df.select(columns).is_duplicated())
            duplicate_keys = duplicated.select(columns).unique(maintain_order=True)
            passed = duplicated.height == 0
            return ValidationCheck(
                name=name,
                passed=passed,
                severity=severity,
                message=f"{duplicate_keys.height} keys appear more than once" if not passed else "Keys are unique",
                details={
                    "duplicate_keys": duplicate_keys.head(10).rows(),
                    "duplicate_key_count": duplicate_keys.height,
                },
                failed_rows=duplicated.height,
                total_rows=len(df),
                error_type=error_type,
            )

        self._checks.append(check)
        return self

    def add_range_check(
        self,
        column: str,
        min_value: Optional[float] = None,
        max_value: Optional[float] = None,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "FactValidator":
        """Add check for values within specified range"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            name = f"range_{column}"
            if column not in df.columns:
                return self._missing_column(name, column, severity)

            conditions = []
            if min_value is not None:
                conditions.append(pl.col(column) < min_value)
            if max_value is not None:
                conditions.append(pl.col(column) > max_value)
            if not conditions:
                return ValidationCheck(name=name, passed=True, severity=severity, message="No range specified")

            combined = conditions[0]
            for cond in conditions[1:]:
                combined = combined | cond

            out_of_range = df.filter(combined).height
            passed = out_of_range == 0
            return ValidationCheck(
                name=name,
                passed=passed,
                severity=severity,
                message=f"Column '{column}' has {out_of_range} values outside range [{min_value}, {max_value}]" if not passed else "All values in range",
                details={"min": min_value, "max": max_value, "out_of_range_count": out_of_range},
                failed_rows=out_of_range,
                total_rows=len(df),
            )

        self._checks.append(check)
        return self

    def add_date_check(
        self,
        column: str,
        expected: date,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "FactValidator":
        """Add check that every non-null value equals ``expected``"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            name = f"date_{column}"
            if column not in df.columns:
                return self._missing_column(name, column, severity)

            mismatched = df.filter(pl.col(column) != pl.lit(expected))
            passed = mismatched.height == 0
            found = sorted(mismatched[column].unique().to_list())
            return ValidationCheck(
                name=name,
                passed=passed,
                severity=severity,
                message=f"{mismatched.height} facts are not dated {expected}" if not passed else f"All facts dated {expected}",
                details={"expected": expected.isoformat(), "found": [d.isoformat() for d in found[:10]]},
                failed_rows=mismatched.height,
                total_rows=len(df),
                error_type=InvalidFactDate,
            )

        self._checks.append(check)
        return self

    def validate(self, df: pl.DataFrame) -> ValidationResult:
        """
        Run all validation checks on a fact frame.

        Args:
            df: DataFrame to validate

        Returns:
            ValidationResult with all check results
        """
        started_at = datetime.utcnow()
        results = []

        for check_func in self._checks:
            result = check_func(df)
            results.append(result)

            if not result.passed:
                logger.warning(
                    f"Validation failed: {result.name}",
                    message=result.message,
                    severity=result.severity.value,
                )

        passed_checks = sum(1 for r in results if r.passed)
        failed_checks = sum(1 for r in results if not r.passed and r.severity == ValidationSeverity.ERROR)
        warning_count = sum(1 for r in results if not r.passed and r.severity == ValidationSeverity.WARNING)

        if failed_checks > 0:
            status = ValidationStatus.FAILED
        elif warning_count > 0 and self.strict_mode:
            status = ValidationStatus.FAILED
        elif warning_count > 0:
            status = ValidationStatus.PARTIAL
        else:
            status = ValidationStatus.PASSED

        logger.info(
            f"Validation complete: {status.value}",
            rows=len(df),
            passed=passed_checks,
            failed=failed_checks,
            warnings=warning_count,
        )

        return ValidationResult(
            status=status,
            total_checks=len(results),
            passed_checks=passed_checks,
            failed_checks=failed_checks,
            warning_count=warning_count,
            checks=results,
            started_at=started_at,
            completed_at=datetime.utcnow(),
        )

    @staticmethod
    def raise_for_result(result: ValidationResult) -> None:
        """Raise the run-level error of the first failed ERROR check"""
        if result.status != ValidationStatus.FAILED:
            return
        failed = result.errors or [c for c in result.checks if not c.passed]
        first = failed[0]
        details = first.details or {}
        if first.error_type is InvalidFactDate:
            raise InvalidFactDate(date.fromisoformat(details["expected"]), details["found"])
        if first.error_type is DuplicateFact:
            raise DuplicateFact(details["duplicate_keys"], count=details["duplicate_key_count"])
        raise first.error_type(first.message)

    def validate_or_raise(self, df: pl.DataFrame) -> ValidationResult:
        result = self.validate(df)
        self.raise_for_result(result)
        return result


def create_facts_validator(as_of_date: date) -> FactValidator:
    """Create pre-configured validator for one run's fact frame"""
    return (
        FactValidator()
        .add_not_null_check("entity_key", error_type=NullEntityKey)
        .add_not_null_check("activity_date")
        .add_date_check("activity_date", as_of_date)
        .add_unique_check(["entity_key", "dimension", "activity_date"])
        .add_range_check("event_count", min_value=0)
    )
