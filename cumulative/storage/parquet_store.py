"""
Parquet Data Lake Stores

Reference implementation of the storage collaborator:
- CumulativeStore: one partition per as-of date, one row per (entity, dimension)
- MonthlyArrayStore: one partition per (month, metric), one row per entity

Upserts replace the rows of the upserted entities and rewrite the partition
atomically, so a run either commits completely or leaves the previous
partition in place.
"""

import os
from datetime import date
from pathlib import Path
from typing import Dict, Hashable, Iterable, List, Optional, Union

import polars as pl
import structlog

from cumulative.activity.bitset import ActivityBitset
from cumulative.activity.records import (
    BITSET,
    DATELIST,
    ActivityHistory,
    CumulativeRecord,
    DateList,
)
from cumulative.config import get_settings
from cumulative.transformation.reduced import NOT_OBSERVED, MonthlyMetricArray, month_start

logger = structlog.get_logger(__name__)

CUMULATIVE_SCHEMA = {
    "as_of_date": pl.Date,
    "dimension": pl.Utf8,
    "representation": pl.Utf8,
    "dates": pl.List(pl.Date),
    "bits": pl.UInt64,
    "width": pl.UInt8,
}

ARRAY_SCHEMA = {
    "month": pl.Date,
    "metric_name": pl.Utf8,
    "values": pl.List(pl.Int64),
}

FLOAT_VALUES = pl.List(pl.Float64)


def _write_atomic(df: pl.DataFrame, path: Path, compression: str) -> None:
    """Write to a temporary file, then swap it into place"""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.tmp")
    df.write_parquet(tmp_path, compression=compression)
    os.replace(tmp_path, path)


def _replace_rows(existing: Optional[pl.DataFrame], new: pl.DataFrame, keys: List[Hashable]) -> pl.DataFrame:
    if existing is None or existing.height == 0:
        return new
    kept = existing.filter(~pl.col("entity_key").is_in(keys))
    return pl.concat([kept, new], how="vertical_relaxed")


def records_to_frame(records: Iterable[CumulativeRecord]) -> pl.DataFrame:
    """Flatten records to one row per (entity, dimension)"""
    rows: Dict[str, list] = {name: [] for name in ["entity_key", *CUMULATIVE_SCHEMA]}

    def add(record: CumulativeRecord, label: Optional[str], history: Optional[ActivityHistory]) -> None:
        rows["entity_key"].append(record.entity_key)
        rows["as_of_date"].append(record.as_of_date)
        rows["dimension"].append(label)
        if history is None:
            rows["representation"].append(None)
            rows["dates"].append(None)
            rows["bits"].append(None)
            rows["width"].append(None)
        elif isinstance(history, ActivityBitset):
            rows["representation"].append(BITSET)
            rows["dates"].append(None)
            rows["bits"].append(history.value)
            rows["width"].append(history.width)
        else:
            rows["representation"].append(DATELIST)
            rows["dates"].append(list(history.dates))
            rows["bits"].append(None)
            rows["width"].append(None)

    for record in records:
        if not record.activity:
            add(record, None, None)
        for label, history in record.activity.items():
            add(record, label, history)

    if not rows["entity_key"]:
        return pl.DataFrame(schema={"entity_key": pl.Utf8, **CUMULATIVE_SCHEMA})
    return pl.DataFrame(rows, schema_overrides=CUMULATIVE_SCHEMA)


def frame_to_records(df: pl.DataFrame) -> Dict[Hashable, CumulativeRecord]:
    """Rebuild records from flattened rows (row order is preserved)"""
    activity: Dict[Hashable, Dict[Optional[str], ActivityHistory]] = {}
    as_of: Dict[Hashable, date] = {}
    for row in df.iter_rows(named=True):
        key = row["entity_key"]
        as_of[key] = row["as_of_date"]
        histories = activity.setdefault(key, {})
        representation = row["representation"]
        if representation is None:
            continue
        if representation == BITSET:
            histories[row["dimension"]] = ActivityBitset(row["bits"], row["width"])
        elif representation == DATELIST:
            histories[row["dimension"]] = DateList(tuple(row["dates"] or ()))
        else:
            raise ValueError(f"Unknown history representation in store: {representation}")
    return {key: CumulativeRecord(key, as_of[key], histories) for key, histories in activity.items()}


class CumulativeStore:
    """
    Cumulative snapshots on a Parquet data lake.

    Layout: ``<root>/as_of_date=YYYY-MM-DD/records.parquet``

    Example:
        store = CumulativeStore("data/cumulative")
        yesterday = store.read(date(2023, 3, 30))
        store.upsert(date(2023, 3, 31), records)
    """

    FILE_NAME = "records.parquet"

    def __init__(self, root: Optional[Union[str, Path]] = None, compression: Optional[str] = None):
        settings = get_settings()
        self.root = Path(root or settings.data_lake.cumulative_path)
        self.compression = compression or settings.data_lake.compression

    def _partition_file(self, as_of_date: date) -> Path:
        return self.root / f"as_of_date={as_of_date.isoformat()}" / self.FILE_NAME

    def exists(self, as_of_date: date) -> bool:
        return self._partition_file(as_of_date).exists()

    def read_frame(self, as_of_date: date) -> Optional[pl.DataFrame]:
        path = self._partition_file(as_of_date)
        if not path.exists():
            return None
        return pl.read_parquet(path)

    def read(self, as_of_date: date) -> Dict[Hashable, CumulativeRecord]:
        """Records as of ``as_of_date``; empty when the partition does not exist"""
        df = self.read_frame(as_of_date)
        if df is None:
            logger.info("No cumulative partition", as_of_date=as_of_date.isoformat())
            return {}
        return frame_to_records(df)

    def upsert(self, as_of_date: date, records: Iterable[CumulativeRecord]) -> int:
        """Insert or replace records by (entity_key, as_of_date)"""
        records = list(records)
        wrong = [r.entity_key for r in records if r.as_of_date != as_of_date]
        if wrong:
            raise ValueError(f"Records {wrong[:5]} are not dated {as_of_date}")
        if not records and self.exists(as_of_date):
            return 0

        new = records_to_frame(records)
        df = _replace_rows(self.read_frame(as_of_date), new, [r.entity_key for r in records])
        _write_atomic(df, self._partition_file(as_of_date), self.compression)

        logger.info(
            "Upserted cumulative records",
            as_of_date=as_of_date.isoformat(),
            records=len(records),
            rows=df.height,
        )
        return len(records)

    def available_dates(self) -> List[date]:
        if not self.root.exists():
            return []
        dates = []
        for partition in self.root.glob("as_of_date=*"):
            if (partition / self.FILE_NAME).exists():
                dates.append(date.fromisoformat(partition.name.split("=", 1)[1]))
        return sorted(dates)

    def latest_date(self, before: Optional[date] = None) -> Optional[date]:
        dates = [d for d in self.available_dates() if before is None or d < before]
        return dates[-1] if dates else None


def _values_dtype(arrays: List[MonthlyMetricArray]) -> pl.DataType:
    """Integer lists unless some observed value is fractional"""
    for array in arrays:
        for v in array.values:
            if v is not NOT_OBSERVED and not isinstance(v, int):
                return FLOAT_VALUES
    return ARRAY_SCHEMA["values"]


def arrays_to_frame(arrays: Iterable[MonthlyMetricArray]) -> pl.DataFrame:
    arrays = list(arrays)
    if not arrays:
        return pl.DataFrame(schema={"entity_key": pl.Utf8, **ARRAY_SCHEMA})
    values_dtype = _values_dtype(arrays)
    return pl.DataFrame(
        {
            "entity_key": [a.entity_key for a in arrays],
            "month": [a.month for a in arrays],
            "metric_name": [a.metric_name for a in arrays],
            "values": [
                [None if v is NOT_OBSERVED else v for v in a.values] for a in arrays
            ],
        },
        schema_overrides={**ARRAY_SCHEMA, "values": values_dtype},
    )


def frame_to_arrays(df: pl.DataFrame) -> Dict[Hashable, MonthlyMetricArray]:
    return {
        row["entity_key"]: MonthlyMetricArray(
            row["entity_key"],
            row["month"],
            row["metric_name"],
            tuple(NOT_OBSERVED if v is None else v for v in row["values"]),
        )
        for row in df.iter_rows(named=True)
    }


class MonthlyArrayStore:
    """
    Reduced monthly arrays on a Parquet data lake.

    Layout: ``<root>/month=YYYY-MM/metric=<name>/arrays.parquet``.
    ``NOT_OBSERVED`` positions are stored as nulls. Values are Int64 lists
    while every value is an integer and Float64 lists otherwise.
    """

    FILE_NAME = "arrays.parquet"

    def __init__(self, root: Optional[Union[str, Path]] = None, compression: Optional[str] = None):
        settings = get_settings()
        self.root = Path(root or settings.data_lake.reduced_path)
        self.compression = compression or settings.data_lake.compression

    def _partition_file(self, month: date, metric_name: str) -> Path:
        return self.root / f"month={month:%Y-%m}" / f"metric={metric_name}" / self.FILE_NAME

    def read_frame(self, month: date, metric_name: str) -> Optional[pl.DataFrame]:
        path = self._partition_file(month_start(month), metric_name)
        if not path.exists():
            return None
        return pl.read_parquet(path)

    def read(self, month: date, metric_name: str) -> Dict[Hashable, MonthlyMetricArray]:
        df = self.read_frame(month, metric_name)
        return {} if df is None else frame_to_arrays(df)

    def read_entity(self, entity_key: Hashable, month: date, metric_name: str) -> Optional[MonthlyMetricArray]:
        df = self.read_frame(month, metric_name)
        if df is None:
            return None
        matched = df.filter(pl.col("entity_key") == entity_key)
        return next(iter(frame_to_arrays(matched).values()), None)

    def upsert(self, month: date, metric_name: str, arrays: Iterable[MonthlyMetricArray]) -> int:
        """Insert or replace arrays by (entity_key, month)"""
        month = month_start(month)
        arrays = list(arrays)
        wrong = [a.entity_key for a in arrays if a.month != month or a.metric_name != metric_name]
        if wrong:
            raise ValueError(f"Arrays {wrong[:5]} do not belong to {month:%Y-%m}/{metric_name}")
        if not arrays:
            return 0

        new = arrays_to_frame(arrays)
        existing = self.read_frame(month, metric_name)
        if existing is not None and existing.schema["values"] != new.schema["values"]:
            # Integer partitions widen to float only once a fractional value arrives
            existing = existing.with_columns(pl.col("values").cast(FLOAT_VALUES))
            new = new.with_columns(pl.col("values").cast(FLOAT_VALUES))
        df = _replace_rows(existing, new, [a.entity_key for a in arrays])
        _write_atomic(df, self._partition_file(month, metric_name), self.compression)

        logger.info(
            "Upserted monthly arrays",
            month=f"{month:%Y-%m}",
            metric=metric_name,
            arrays=len(arrays),
            rows=df.height,
        )
        return len(arrays)
