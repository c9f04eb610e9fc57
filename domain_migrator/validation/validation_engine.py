"""
Record validation for migration batches.

ValidationEngine checks a transformed record against its table's ValidationRules and
collects every violation rather than stopping at the first. Rule kinds other than
'required' skip empty values; a value that is present must satisfy the rule.
"""

import logging
import re
from datetime import date, datetime
from typing import Any, Callable, Dict, Optional, Sequence

from ..interfaces import ValidationEngineInterface
from ..models import Row, ValidationRule, ValidationRuleKind
from ..utils import StringUtils, ValidationUtils
from ..mapping.transformation_registry import parse_uk_date
from .validation_models import RuleViolation, ValidationOutcome


_EMAIL = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')
_UK_PHONE = re.compile(r'^(?:\+44\d{10}|0\d{10})$')


def _positive_number(value: Any) -> bool:
    return float(value) > 0


def _non_negative_number(value: Any) -> bool:
    return float(value) >= 0


def _not_in_future(value: Any) -> bool:
    parsed = value.date() if isinstance(value, datetime) else parse_uk_date(value)
    return parsed <= date.today()


def _uk_postcode(value: Any) -> bool:
    return re.match(r'^[A-Z]{1,2}\d[A-Z\d]? ?\d[A-Z]{2}$', str(value).strip().upper()) is not None


# Predicates usable by name from plan files (custom_validator: positive_number)
CUSTOM_VALIDATORS: Dict[str, Callable[[Any], bool]] = {
    'positive_number': _positive_number,
    'non_negative_number': _non_negative_number,
    'not_in_future': _not_in_future,
    'uk_postcode': _uk_postcode,
}


class ValidationEngine(ValidationEngineInterface):
    """
    Validates transformed records.

    Built-in rule kinds:
    - required: value present and not blank
    - nhs_number: exactly 10 digits with a valid modulus 11 check digit
    - email: local@domain.tld with no whitespace
    - phone: after removing spaces, +44 followed by 10 digits or 0 followed by 10 digits
    - date: ISO-8601 or dd/mm/yyyy text, or a date/datetime value
    - custom: caller predicate (callable or CUSTOM_VALIDATORS name); a raising predicate is a violation
    """

    def __init__(self, custom_validators: Optional[Dict[str, Callable[[Any], bool]]] = None):
        self.logger = logging.getLogger(__name__)
        self.custom_validators = dict(CUSTOM_VALIDATORS)
        if custom_validators:
            self.custom_validators.update(custom_validators)

    def validate_record(self, record: Row, rules: Sequence[ValidationRule]) -> ValidationOutcome:
        """
        Apply every rule to the record.

        Args:
            record: Transformed row
            rules: Rules of the record's table

        Returns:
            ValidationOutcome with one "{column}: {message}" error per failed rule
        """
        outcome = ValidationOutcome()

        for rule in rules:
            value = record.get(rule.column)
            if not self._check_rule(rule, value):
                outcome.add_violation(RuleViolation(
                    column=rule.column,
                    rule=rule.rule,
                    message=rule.error_message,
                    actual_value=value,
                ))

        if not outcome.is_valid and self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug(f"Record {record.get('id')} failed validation: {outcome.errors}")

        return outcome

    def _check_rule(self, rule: ValidationRule, value: Any) -> bool:
        if rule.rule == ValidationRuleKind.REQUIRED.value:
            return not ValidationUtils.is_empty(value)

        # Absent optional values are not checked by format rules
        if ValidationUtils.is_empty(value):
            return True

        if rule.rule == ValidationRuleKind.NHS_NUMBER.value:
            return self.is_valid_nhs_number(value)
        if rule.rule == ValidationRuleKind.EMAIL.value:
            return self.is_valid_email(value)
        if rule.rule == ValidationRuleKind.PHONE.value:
            return self.is_valid_phone(value)
        if rule.rule == ValidationRuleKind.DATE.value:
            return self.is_valid_date(value)
        if rule.rule == ValidationRuleKind.CUSTOM.value:
            return self._check_custom(rule, value)

        self.logger.warning(f"Unknown validation rule kind '{rule.rule}' for {rule.column}")
        return False

    def _check_custom(self, rule: ValidationRule, value: Any) -> bool:
        predicate = rule.custom_validator
        if isinstance(predicate, str):
            predicate = self.custom_validators.get(predicate)
            if predicate is None:
                self.logger.error(f"Unknown custom validator '{rule.custom_validator}' for {rule.column}")
                return False
        try:
            return bool(predicate(value))
        except Exception as e:
            self.logger.debug(f"Custom validator for {rule.column} raised on value {value!r}: {e}")
            return False

    @staticmethod
    def is_valid_nhs_number(value: Any) -> bool:
        if not isinstance(value, (str, int)) or isinstance(value, bool):
            return False
        return ValidationUtils.is_valid_nhs_number(str(value))

    @staticmethod
    def is_valid_email(value: Any) -> bool:
        return isinstance(value, str) and _EMAIL.match(value) is not None

    @staticmethod
    def is_valid_phone(value: Any) -> bool:
        if not isinstance(value, str):
            return False
        return _UK_PHONE.match(StringUtils.remove_whitespace(value)) is not None

    @staticmethod
    def is_valid_date(value: Any) -> bool:
        if isinstance(value, (date, datetime)):
            return True
        if not isinstance(value, str):
            return False
        try:
            parse_uk_date(value)
            return True
        except ValueError:
            return False
