"""
Storage Module
"""
from .parquet_store import CumulativeStore, MonthlyArrayStore

__all__ = ["CumulativeStore", "MonthlyArrayStore"]
