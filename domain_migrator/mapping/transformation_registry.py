"""
Named value transformations referenced from migration configuration.

Every transformation is a pure function of one value. Rules reference them by name,
or by a comma-separated chain of names applied left to right ("trim,uppercase").
"""

import logging
import re
import threading
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional

from ..utils import StringUtils, ValidationUtils


_UK_DATE = re.compile(r'^(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{4})$')
_PHONE_PUNCTUATION = re.compile(r'[\s\-()]')
_MEDICATION_NAME = re.compile(r'^([A-Za-z\s]+)')
_MEDICATION_DOSAGE = re.compile(r'(\d+(?:\.\d+)?)\s*(mg|mcg|g|ml|units?)', re.IGNORECASE)
_MEDICATION_FREQUENCY = re.compile(r'\b(OD|BD|TDS|QDS|PRN|ON)\b', re.IGNORECASE)
_MEDICATION_SEPARATOR = re.compile(r'[;,]')

_BIT_TRUE = ('y', 'yes', 'true', 't', '1')
_BIT_FALSE = ('n', 'no', 'false', 'f', '0')


def identity(value: Any) -> Any:
    return value


def trim(value: Any) -> Any:
    return value.strip() if isinstance(value, str) else value


def lowercase(value: Any) -> Any:
    return value.lower() if isinstance(value, str) else value


def uppercase(value: Any) -> Any:
    return value.upper() if isinstance(value, str) else value


def remove_whitespace(value: Any) -> Any:
    return StringUtils.remove_whitespace(value) if isinstance(value, str) else value


def numbers_only(value: Any) -> Optional[str]:
    digits = StringUtils.extract_numbers_only(value)
    return digits or None


def to_int(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, float):
        return int(value)
    return int(str(value).strip())


def to_float(value: Any) -> float:
    return float(str(value).strip()) if not isinstance(value, (int, float)) else float(value)


def to_decimal(value: Any) -> Decimal:
    try:
        return Decimal(str(value).strip())
    except InvalidOperation:
        raise ValueError(f"Cannot convert '{value}' to decimal")


def to_bit(value: Any) -> int:
    """Map Y/N, yes/no, true/false and 1/0 to 1 or 0."""
    if isinstance(value, bool):
        return int(value)
    text = str(value).strip().lower()
    if text in _BIT_TRUE:
        return 1
    if text in _BIT_FALSE:
        return 0
    raise ValueError(f"Cannot convert '{value}' to bit")


def normalize_name(value: Any) -> Any:
    """Capitalize each space separated part of a name ("jOHN smith" -> "John Smith")."""
    if not isinstance(value, str):
        return value
    parts = StringUtils.normalize_whitespace(value).split(' ')
    return ' '.join(part[:1].upper() + part[1:].lower() for part in parts)


def parse_uk_date(value: Any) -> date:
    """
    Parse a UK day-first date (dd/mm/yyyy, dd-mm-yyyy, dd.mm.yyyy) or an ISO-8601 date.

    Raises:
        ValueError: If the value is not a recognizable date
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    match = _UK_DATE.match(text)
    if match:
        day, month, year = match.groups()
        return date(int(year), int(month), int(day))
    try:
        return datetime.fromisoformat(text.replace('Z', '+00:00')).date()
    except ValueError:
        raise ValueError(f"Unrecognized date '{text}'")


def parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    text = str(value).strip()
    try:
        return datetime.fromisoformat(text.replace('Z', '+00:00'))
    except ValueError:
        parsed = parse_uk_date(text)
        return datetime(parsed.year, parsed.month, parsed.day)


def normalize_phone_uk(value: Any) -> str:
    """
    Normalize a UK phone number to +44 international form ("01234 567890" -> "+441234567890").

    Numbers already in another country's international form keep their own prefix.
    """
    phone = _PHONE_PUNCTUATION.sub('', str(value))
    if phone.startswith('0'):
        return '+44' + phone[1:]
    if phone.startswith('+'):
        return phone
    return '+44' + phone


def normalize_postcode_uk(value: Any) -> str:
    """Uppercase and insert the single space before the inward code ("sw1a1aa" -> "SW1A 1AA")."""
    cleaned = StringUtils.remove_whitespace(str(value)).upper()
    if len(cleaned) >= 5:
        return f"{cleaned[:-3]} {cleaned[-3:]}"
    return str(value).upper()


def validate_nhs_number(value: Any) -> str:
    """
    Strip spaces and check the modulus 11 check digit.

    Raises:
        ValueError: If the value is not a valid NHS number
    """
    cleaned = StringUtils.remove_whitespace(str(value))
    if len(cleaned) != 10 or not cleaned.isdigit():
        raise ValueError("NHS number must be 10 digits")
    if not ValidationUtils.is_valid_nhs_number(cleaned):
        raise ValueError("Invalid NHS number check digit")
    return cleaned


def parse_medications(value: Any) -> List[Dict[str, Any]]:
    """
    Parse a free text medication list into structured entries.

    Used for sample previews in mapping recommendations; the output is not a
    valid column value, so migration rules store the text with 'trim' instead.
    """
    if value is None:
        return []
    text = str(value).strip()
    if not text or text.lower() == 'none':
        return []

    medications = []
    for entry in _MEDICATION_SEPARATOR.split(text):
        entry = entry.strip()
        if not entry:
            continue
        name_match = _MEDICATION_NAME.match(entry)
        dosage_match = _MEDICATION_DOSAGE.search(entry)
        frequency_match = _MEDICATION_FREQUENCY.search(entry)
        name = name_match.group(1).strip() if name_match else entry
        if not name:
            continue
        medications.append({
            'name': name,
            'dosage': f"{dosage_match.group(1)}{dosage_match.group(2)}" if dosage_match else '',
            'frequency': frequency_match.group(1).upper() if frequency_match else 'As directed',
            'route': 'Oral',
            'active': True,
        })
    return medications


_BUILTIN_TRANSFORMATIONS: Dict[str, Callable[[Any], Any]] = {
    'identity': identity,
    'trim': trim,
    'lowercase': lowercase,
    'uppercase': uppercase,
    'remove_whitespace': remove_whitespace,
    'numbers_only': numbers_only,
    'to_int': to_int,
    'to_float': to_float,
    'to_decimal': to_decimal,
    'to_bit': to_bit,
    'title_case': normalize_name,
    'normalize_name': normalize_name,
    'parse_uk_date': parse_uk_date,
    'parse_datetime': parse_datetime,
    'normalize_phone_uk': normalize_phone_uk,
    'normalize_postcode_uk': normalize_postcode_uk,
    'validate_nhs_number': validate_nhs_number,
    'parse_medications': parse_medications,
}


class TransformationRegistry:
    """
    Registry of named transformations.

    Lookups are lock-free; registration is serialized so a registry can be
    extended while other threads read from it.
    """

    def __init__(self, include_builtins: bool = True):
        self.logger = logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._transformations: Dict[str, Callable[[Any], Any]] = (
            dict(_BUILTIN_TRANSFORMATIONS) if include_builtins else {}
        )

    def register(self, name: str, transformation: Callable[[Any], Any]) -> None:
        """
        Register (or replace) a named transformation.

        Args:
            name: Name used in TransformationRule.transformation
            transformation: Pure function of one value
        """
        if not name or ',' in name:
            raise ValueError(f"Invalid transformation name: '{name}'")
        if not callable(transformation):
            raise ValueError(f"Transformation '{name}' must be callable")
        with self._lock:
            replaced = name in self._transformations
            self._transformations = {**self._transformations, name: transformation}
        if replaced:
            self.logger.warning(f"Replaced registered transformation '{name}'")
        else:
            self.logger.debug(f"Registered transformation '{name}'")

    def has(self, name: str) -> bool:
        return name in self._transformations

    def get(self, name: str) -> Callable[[Any], Any]:
        """
        Look up a transformation by name.

        Raises:
            KeyError: If no transformation is registered under the name
        """
        try:
            return self._transformations[name]
        except KeyError:
            raise KeyError(f"Unknown transformation '{name}'")

    def names(self) -> List[str]:
        return sorted(self._transformations)


_default_registry: Optional[TransformationRegistry] = None
_default_registry_lock = threading.Lock()


def get_default_registry() -> TransformationRegistry:
    """Get the shared registry holding the built-in transformations."""
    global _default_registry

    if _default_registry is None:
        with _default_registry_lock:
            if _default_registry is None:
                _default_registry = TransformationRegistry()
    return _default_registry
