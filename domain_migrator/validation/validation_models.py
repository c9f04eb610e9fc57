"""
Validation data models.

RuleViolation carries the context of one failed rule; ValidationOutcome aggregates
every violation found on one transformed record.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass
class RuleViolation:
    """
    A single failed validation rule.

    Attributes:
        column: Target column that was checked
        rule: Rule kind that failed
        message: Configured error message
        actual_value: Value found in the record
    """
    column: str
    rule: str
    message: str
    actual_value: Any = None

    def __str__(self) -> str:
        return f"{self.column}: {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'column': self.column,
            'rule': self.rule,
            'message': self.message,
            'actual_value': None if self.actual_value is None else str(self.actual_value),
        }


@dataclass
class ValidationOutcome:
    """Result of validating one record."""
    violations: List[RuleViolation] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.violations

    @property
    def errors(self) -> List[str]:
        """Violations formatted as "{column}: {message}"."""
        return [str(violation) for violation in self.violations]

    def add_violation(self, violation: RuleViolation) -> None:
        self.violations.append(violation)
