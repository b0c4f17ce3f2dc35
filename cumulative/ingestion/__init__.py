"""
Fact Ingestion Module
"""
from .fact_loader import FactBatch, FactLoader, facts_from_frame, facts_to_frame

__all__ = ["FactBatch", "FactLoader", "facts_from_frame", "facts_to_frame"]
