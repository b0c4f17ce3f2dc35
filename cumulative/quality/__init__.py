"""
Data Quality Module
"""
from .validators import FactValidator, ValidationResult, create_facts_validator

__all__ = [
    "FactValidator",
    "ValidationResult",
    "create_facts_validator",
]
