"""
Synthetic Daily Fact Generator
Writes date-partitioned activity facts for a pool of hosts (vectorized)
"""

import argparse
from datetime import date, timedelta
from pathlib import Path

import numpy as np
import polars as pl
from faker import Faker

fake = Faker()
np.random.seed(42)
Faker.seed(42)

OUTPUT_DIR = Path(__file__).parent.parent / "data" / "facts"

BROWSERS = ["chrome", "firefox", "safari", "edge"]


# ==========================================
# ENTITIES
# ==========================================
def generate_hosts(n=500):
    print(f"📊 Generating {n:,} hosts...")
    hosts = set()
    while len(hosts) < n:
        hosts.add(fake.hostname())
    return sorted(hosts)


# ==========================================
# DAILY FACTS - VECTORIZED!
# ==========================================
def generate_day(day, hosts, activity_rate=0.3, with_browser=True):
    n = len(hosts)
    active = np.random.random(n) < activity_rate
    active_hosts = np.array(hosts)[active]
    m = len(active_hosts)

    df = pl.DataFrame({
        "entity_key": active_hosts,
        "activity_date": [day] * m,
        "event_count": np.random.poisson(5, m) + 1,
        "dimension": np.random.choice(BROWSERS, m) if with_browser else [None] * m,
    }).with_columns(pl.col("dimension").cast(pl.Utf8))
    # One fact per (entity, dimension, date)
    return df.group_by(["entity_key", "activity_date", "dimension"]).agg(
        pl.col("event_count").sum()
    ).sort("entity_key")


def main():
    parser = argparse.ArgumentParser(description="Generate synthetic daily activity facts")
    parser.add_argument("--start", default="2023-03-01", help="First date (YYYY-MM-DD)")
    parser.add_argument("--days", type=int, default=31, help="Number of days")
    parser.add_argument("--hosts", type=int, default=500, help="Number of hosts")
    parser.add_argument("--no-browser", action="store_true", help="Single-dimension facts")
    parser.add_argument("--output", default=str(OUTPUT_DIR), help="Output directory")
    args = parser.parse_args()

    output = Path(args.output)
    hosts = generate_hosts(args.hosts)
    start = date.fromisoformat(args.start)

    for offset in range(args.days):
        day = start + timedelta(days=offset)
        df = generate_day(day, hosts, with_browser=not args.no_browser)
        partition = output / f"activity_date={day.isoformat()}"
        partition.mkdir(parents=True, exist_ok=True)
        df.write_parquet(partition / "facts.parquet")
        print(f"   ✅ {day}: {len(df):,} facts")

    print(f"\n🎉 Generated {args.days} days into {output}")


if __name__ == "__main__":
    main()
