#!/usr/bin/env python
"""
Daily Cumulative Run Entry Point

Runs the cumulative merge and monthly array update for one as-of date, or a
range of dates in order.
Usage:
    Single day:   python run_pipeline.py --as-of 2023-03-31
    Backfill:     python run_pipeline.py --as-of 2023-03-01 --until 2023-03-31
    One file:     python run_pipeline.py --as-of 2023-03-31 --facts data/facts/day.csv
"""

import argparse
import sys
from datetime import date, timedelta
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))


def run(args: argparse.Namespace) -> int:
    """Run the requested dates; returns a process exit code."""
    import structlog

    from cumulative.config import configure_logging
    from cumulative.exceptions import RunRejected
    from cumulative.ingestion import FactLoader
    from cumulative.storage import CumulativeStore, MonthlyArrayStore
    from cumulative.transformation.merger import CumulativeMerger
    from cumulative.transformation.pipeline import DailyCumulativeJob

    configure_logging(args.log_level, run_id=args.run_id)
    log = structlog.get_logger("cumulative.cli")

    loader = FactLoader(facts_path=args.facts_dir)
    job = DailyCumulativeJob(
        cumulative_store=CumulativeStore(args.cumulative_dir),
        array_store=MonthlyArrayStore(args.reduced_dir),
        merger=CumulativeMerger(
            history_format=args.history_format,
            bit_width=args.bit_width,
        ),
    )

    start = date.fromisoformat(args.as_of)
    end = date.fromisoformat(args.until) if args.until else start
    if args.facts and end != start:
        log.error("--facts loads a single file and cannot be combined with --until")
        return 2

    exit_code = 0
    day = start
    while day <= end:
        try:
            batch = loader.load(args.facts, day) if args.facts else loader.load_directory(day)
            result = job.run(day, batch.facts)
        except RunRejected as e:
            log.error("Run rejected", as_of_date=day.isoformat(), error=str(e))
            return 1
        if result.has_failures:
            exit_code = 3
        day += timedelta(days=1)

    log.info("Finished", start=start.isoformat(), end=end.isoformat(), exit_code=exit_code)
    return exit_code


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Cumulative activity daily run")
    parser.add_argument(
        "--as-of",
        required=True,
        help="As-of date to process (YYYY-MM-DD)"
    )
    parser.add_argument(
        "--until",
        help="Process every date from --as-of up to this date (inclusive)"
    )
    parser.add_argument(
        "--facts",
        help="Fact file for a single date (default: date partition under the facts path)"
    )
    parser.add_argument("--facts-dir", help="Root of date-partitioned fact files")
    parser.add_argument("--cumulative-dir", help="Root of the cumulative table")
    parser.add_argument("--reduced-dir", help="Root of the reduced monthly arrays")
    parser.add_argument(
        "--history-format",
        choices=["datelist", "bitset"],
        help="History representation for newly seen entities"
    )
    parser.add_argument("--bit-width", type=int, help="Bits per datelist integer")
    parser.add_argument("--log-level", help="Override LOG_LEVEL")
    parser.add_argument("--run-id", help="Run identifier bound to every log event (default: random)")

    sys.exit(run(parser.parse_args()))
