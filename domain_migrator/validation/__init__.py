"""
Record validation for migration batches.

- ValidationEngine: applies declared ValidationRules to transformed records
- ValidationOutcome / RuleViolation: aggregated results with per-rule context
"""

from .validation_models import RuleViolation, ValidationOutcome
from .validation_engine import CUSTOM_VALIDATORS, ValidationEngine

__all__ = [
    'CUSTOM_VALIDATORS',
    'RuleViolation',
    'ValidationEngine',
    'ValidationOutcome',
]
