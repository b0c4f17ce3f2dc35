"""
Cumulative Activity Engine

Incremental cumulative snapshots, datelist integers and reduced monthly
fact arrays for per-entity daily activity.
"""

__version__ = "1.0.0"
