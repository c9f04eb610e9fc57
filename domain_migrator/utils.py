"""
Utility functions for common patterns across the domain migration system.
"""

import re
from datetime import datetime, timezone
from typing import Any


class StringUtils:
    """Utility methods for string normalization."""

    # Cached regex patterns for performance
    _regex_cache = {
        'numbers_only': re.compile(r'[^0-9]'),
        'whitespace': re.compile(r'\s+'),
        'any_whitespace': re.compile(r'\s'),
    }

    @staticmethod
    def extract_numbers_only(value: Any) -> str:
        """
        Extract only numeric characters from value.

        Args:
            value: Input value

        Returns:
            String containing only numeric characters
        """
        if value is None:
            return ''
        return StringUtils._regex_cache['numbers_only'].sub('', str(value))

    @staticmethod
    def normalize_whitespace(value: Any) -> str:
        """Collapse runs of whitespace to single spaces and strip the ends."""
        if value is None:
            return ''
        return StringUtils._regex_cache['whitespace'].sub(' ', str(value).strip())

    @staticmethod
    def remove_whitespace(value: Any) -> str:
        if value is None:
            return ''
        return StringUtils._regex_cache['any_whitespace'].sub('', str(value))


class ValidationUtils:
    """Utility methods for validation patterns."""

    @staticmethod
    def is_empty(value: Any) -> bool:
        """True for None and for strings that are blank after stripping."""
        if value is None:
            return True
        if isinstance(value, str):
            return value.strip() == ''
        return False

    @staticmethod
    def is_valid_nhs_number(value: Any) -> bool:
        """
        Modulus 11 check of a 10-digit NHS number.

        The first nine digits are weighted 10 down to 2; the check digit is
        11 - (sum % 11), where 11 means 0 and 10 means the number is invalid.
        """
        if value is None:
            return False
        digits = str(value)
        if len(digits) != 10 or not digits.isdigit():
            return False
        total = sum(int(digit) * (10 - index) for index, digit in enumerate(digits[:9]))
        check_digit = 11 - (total % 11)
        if check_digit == 11:
            check_digit = 0
        if check_digit == 10:
            return False
        return check_digit == int(digits[9])


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)
