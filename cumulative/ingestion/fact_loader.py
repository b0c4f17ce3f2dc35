"""
Daily Fact Loader

Reads one day's pre-aggregated activity facts from CSV, JSON, JSONL or
Parquet files into a normalised polars frame and typed facts.
Supports:
- Format detection from the file extension
- Column normalisation (dates, counts, optional dimension)
- Validation against the run's as-of date
- Date-partitioned directories (activity_date=YYYY-MM-DD)
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Iterable, List, Optional, Tuple, Union
import hashlib

import polars as pl
import structlog
from pydantic import BaseModel

from cumulative.activity.records import DailyActivityFact
from cumulative.config import get_settings
from cumulative.quality.validators import create_facts_validator

logger = structlog.get_logger(__name__)

FACT_COLUMNS = ["entity_key", "activity_date", "event_count", "dimension"]


class FileFormat(str, Enum):
    """Supported file formats"""
    CSV = "csv"
    JSON = "json"
    JSONL = "jsonl"
    PARQUET = "parquet"


class LoadResult(BaseModel):
    """Audit record of one fact load"""
    source: str
    as_of_date: date
    files: List[str] = []
    rows_loaded: int = 0
    entities: int = 0
    load_duration_seconds: float = 0
    started_at: datetime
    completed_at: Optional[datetime] = None
    file_hashes: List[str] = []


@dataclass
class FactBatch:
    """A validated day of facts"""
    as_of_date: date
    frame: pl.DataFrame
    facts: Tuple[DailyActivityFact, ...] = field(default_factory=tuple)
    result: Optional[LoadResult] = None

    def __len__(self) -> int:
        return len(self.facts)


def normalize_fact_frame(df: pl.DataFrame) -> pl.DataFrame:
    """Coerce a raw frame to the fact schema"""
    missing = [c for c in ("entity_key", "activity_date") if c not in df.columns]
    if missing:
        raise ValueError(f"Fact frame is missing required columns: {missing}")

    if "event_count" not in df.columns:
        df = df.with_columns(pl.lit(1).alias("event_count"))
    if "dimension" not in df.columns:
        df = df.with_columns(pl.lit(None, dtype=pl.Utf8).alias("dimension"))

    date_dtype = df.schema["activity_date"]
    if date_dtype == pl.Utf8:
        activity_date = pl.col("activity_date").str.to_date("%Y-%m-%d")
    elif date_dtype == pl.Datetime:
        activity_date = pl.col("activity_date").dt.date()
    else:
        activity_date = pl.col("activity_date").cast(pl.Date)

    return df.select([
        pl.col("entity_key"),
        activity_date.alias("activity_date"),
        pl.col("event_count").cast(pl.Int64),
        pl.col("dimension").cast(pl.Utf8),
    ])


def facts_from_frame(df: pl.DataFrame) -> Tuple[DailyActivityFact, ...]:
    return tuple(
        DailyActivityFact(
            entity_key=row["entity_key"],
            activity_date=row["activity_date"],
            event_count=row["event_count"],
            dimension=row["dimension"],
        )
        for row in df.iter_rows(named=True)
    )


def facts_to_frame(facts: Iterable[DailyActivityFact]) -> pl.DataFrame:
    facts = list(facts)
    if not facts:
        return pl.DataFrame(schema={
            "entity_key": pl.Utf8,
            "activity_date": pl.Date,
            "event_count": pl.Int64,
            "dimension": pl.Utf8,
        })
    return pl.DataFrame(
        {
            "entity_key": [f.entity_key for f in facts],
            "activity_date": [f.activity_date for f in facts],
            "event_count": [f.event_count for f in facts],
            "dimension": [f.dimension for f in facts],
        },
        schema_overrides={"activity_date": pl.Date, "event_count": pl.Int64, "dimension": pl.Utf8},
    )


class FactLoader:
    """
    Loader for one day's fact files.

    Example:
        loader = FactLoader()
        batch = loader.load("data/facts/2023-03-31.csv", date(2023, 3, 31))
        batch.facts
    """

    def __init__(
        self,
        facts_path: Optional[str] = None,
        enable_validation: bool = True,
    ):
        self.facts_path = Path(facts_path or get_settings().data_lake.facts_path)
        self.enable_validation = enable_validation

    def _compute_file_hash(self, file_path: Path) -> str:
        """Compute MD5 hash of file for audit"""
        hash_md5 = hashlib.md5()
        with open(file_path, "rb") as f:
            for chunk in iter(lambda: f.read(4096), b""):
                hash_md5.update(chunk)
        return hash_md5.hexdigest()

    @staticmethod
    def detect_format(file_path: Path) -> FileFormat:
        suffix = file_path.suffix.lstrip(".").lower()
        if suffix == "ndjson":
            return FileFormat.JSONL
        try:
            return FileFormat(suffix)
        except ValueError:
            raise ValueError(f"Unsupported file format: {file_path.suffix}") from None

    def _read_file(self, file_path: Path, file_format: FileFormat) -> pl.DataFrame:
        """Read file based on format"""
        readers = {
            FileFormat.CSV: lambda p: pl.read_csv(p, try_parse_dates=True, null_values=["", "NULL", "null"]),
            FileFormat.JSON: pl.read_json,
            FileFormat.JSONL: pl.read_ndjson,
            FileFormat.PARQUET: pl.read_parquet,
        }
        return readers[file_format](file_path)

    def load_frame(self, df: pl.DataFrame, as_of_date: date) -> FactBatch:
        """Normalise and validate an in-memory fact frame"""
        df = normalize_fact_frame(df)
        if self.enable_validation:
            create_facts_validator(as_of_date).validate_or_raise(df)
        return FactBatch(as_of_date=as_of_date, frame=df, facts=facts_from_frame(df))

    def load(
        self,
        path: Union[str, Path],
        as_of_date: date,
        file_format: Optional[FileFormat] = None,
    ) -> FactBatch:
        """
        Load one fact file.

        Args:
            path: Fact file
            as_of_date: Run date every fact must carry
            file_format: Override extension-based detection

        Returns:
            FactBatch with the validated frame and facts
        """
        return self._load_files([Path(path)], as_of_date, str(path), file_format)

    def load_directory(self, as_of_date: date, directory: Optional[Union[str, Path]] = None) -> FactBatch:
        """Load every fact file of the ``activity_date=YYYY-MM-DD`` partition"""
        partition = Path(directory or self.facts_path) / f"activity_date={as_of_date.isoformat()}"
        files = sorted(p for p in partition.glob("*") if p.is_file() and not p.name.startswith("."))

        logger.info(
            f"Found {len(files)} fact files",
            directory=str(partition),
            as_of_date=as_of_date.isoformat(),
        )
        if not files:
            return self.load_frame(facts_to_frame([]), as_of_date)
        return self._load_files(files, as_of_date, str(partition))

    def _load_files(
        self,
        files: List[Path],
        as_of_date: date,
        source: str,
        file_format: Optional[FileFormat] = None,
    ) -> FactBatch:
        started_at = datetime.utcnow()
        frames = []
        hashes = []
        for file_path in files:
            if not file_path.exists():
                raise FileNotFoundError(f"File not found: {file_path}")
            frame = self._read_file(file_path, file_format or self.detect_format(file_path))
            frames.append(normalize_fact_frame(frame))
            hashes.append(self._compute_file_hash(file_path))

        batch = self.load_frame(pl.concat(frames, how="vertical_relaxed"), as_of_date)
        completed_at = datetime.utcnow()
        batch.result = LoadResult(
            source=source,
            as_of_date=as_of_date,
            files=[str(f) for f in files],
            rows_loaded=batch.frame.height,
            entities=batch.frame["entity_key"].n_unique(),
            load_duration_seconds=(completed_at - started_at).total_seconds(),
            started_at=started_at,
            completed_at=completed_at,
            file_hashes=hashes,
        )

        logger.info(
            "Fact load completed",
            rows_loaded=batch.result.rows_loaded,
            entities=batch.result.entities,
            duration_seconds=batch.result.load_duration_seconds,
        )
        return batch
