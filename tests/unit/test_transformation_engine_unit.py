"""
Unit tests for the TransformationRegistry built-ins and the TransformationEngine.
"""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from domain_migrator.exceptions import TransformationError
from domain_migrator.mapping.transformation_engine import (
    CREATED_AT_COLUMN, MIGRATION_SOURCE_COLUMN, TransformationEngine
)
from domain_migrator.mapping.transformation_registry import (
    TransformationRegistry, get_default_registry, normalize_name, normalize_phone_uk,
    normalize_postcode_uk, parse_medications, parse_uk_date, to_bit, validate_nhs_number
)
from domain_migrator.models import TransformationRule


FIXED_NOW = datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine():
    return TransformationEngine(provenance_marker='monolith', clock=lambda: FIXED_NOW)


class TestBuiltinTransformations:
    def test_normalize_name(self):
        assert normalize_name("  jOHN   o'neill ") == "John O'neill"
        assert normalize_name(42) == 42

    @pytest.mark.parametrize("value,expected", [
        ("15/03/1945", date(1945, 3, 15)),
        ("1-2-2001", date(2001, 2, 1)),
        ("07.11.1950", date(1950, 11, 7)),
        ("1945-03-15", date(1945, 3, 15)),
        (datetime(1945, 3, 15, 8, 0), date(1945, 3, 15)),
    ])
    def test_parse_uk_date(self, value, expected):
        assert parse_uk_date(value) == expected

    def test_parse_uk_date_rejects_garbage(self):
        with pytest.raises(ValueError):
            parse_uk_date("not a date")

    @pytest.mark.parametrize("value,expected", [
        ("01234 567890", "+441234567890"),
        ("(01234) 567-890", "+441234567890"),
        ("+44 1234 567890", "+441234567890"),
        ("1234567890", "+441234567890"),
        ("+1 555 010 0199", "+15550100199"),
        ("+353 1 234 5678", "+35312345678"),
    ])
    def test_normalize_phone_uk(self, value, expected):
        assert normalize_phone_uk(value) == expected

    def test_normalize_postcode_uk(self):
        assert normalize_postcode_uk("sw1a1aa") == "SW1A 1AA"
        assert normalize_postcode_uk(" bt7 1nn ") == "BT7 1NN"

    def test_validate_nhs_number(self):
        assert validate_nhs_number("943 476 5919") == "9434765919"
        with pytest.raises(ValueError, match="check digit"):
            validate_nhs_number("9434765918")
        with pytest.raises(ValueError, match="10 digits"):
            validate_nhs_number("12345")

    def test_to_bit(self):
        assert to_bit("Y") == 1
        assert to_bit("false") == 0
        with pytest.raises(ValueError):
            to_bit("maybe")

    def test_parse_medications(self):
        medications = parse_medications("Paracetamol 500mg QDS; Aspirin 75mg od")

        assert [m['name'] for m in medications] == ['Paracetamol', 'Aspirin']
        assert medications[0]['dosage'] == '500mg'
        assert medications[0]['frequency'] == 'QDS'
        assert medications[1]['frequency'] == 'OD'
        assert parse_medications("None") == []


class TestTransformationRegistry:
    def test_default_registry_is_shared(self):
        assert get_default_registry() is get_default_registry()
        assert get_default_registry().has('parse_uk_date')

    def test_register_and_chain(self):
        registry = TransformationRegistry()
        registry.register('add_prefix', lambda v: f"R-{v}")
        engine = TransformationEngine(registry=registry, clock=lambda: FIXED_NOW)

        row = engine.transform_record({'ref': '  abc '},
                                      [TransformationRule('ref', 'reference', 'trim,uppercase,add_prefix')])

        assert row['reference'] == 'R-ABC'

    def test_chain_stops_on_none(self):
        registry = TransformationRegistry(include_builtins=False)
        registry.register('to_none', lambda v: None)
        registry.register('explode', lambda v: 1 / 0)
        engine = TransformationEngine(registry=registry, clock=lambda: FIXED_NOW)

        row = engine.transform_record({'ref': 'x'}, [TransformationRule('ref', 'reference', 'to_none,explode')])

        assert row['reference'] is None

    def test_unknown_name(self):
        with pytest.raises(KeyError):
            TransformationRegistry().get('no_such_thing')

    @pytest.mark.parametrize("name", ["", "a,b"])
    def test_invalid_names_rejected(self, name):
        with pytest.raises(ValueError):
            TransformationRegistry().register(name, lambda v: v)


class TestTransformationEngine:
    def test_applies_rules_in_order_and_stamps_provenance(self, engine):
        rules = [
            TransformationRule('surname', 'last_name', 'trim,normalize_name'),
            TransformationRule('dob', 'date_of_birth', 'parse_uk_date'),
            TransformationRule('fee', 'weekly_fee', 'to_decimal'),
        ]
        row = engine.transform_record({'id': 7, 'surname': ' SMITH ', 'dob': '15/03/1945', 'fee': '950.50'}, rules)

        assert row == {
            'last_name': 'Smith',
            'date_of_birth': date(1945, 3, 15),
            'weekly_fee': Decimal('950.50'),
            CREATED_AT_COLUMN: FIXED_NOW,
            MIGRATION_SOURCE_COLUMN: 'monolith',
        }

    def test_missing_required_field_names_target_column(self, engine):
        rules = [TransformationRule('nhs_no', 'nhs_number', required=True)]

        with pytest.raises(TransformationError) as exc_info:
            engine.transform_record({'id': 3, 'nhs_no': None}, rules)

        assert exc_info.value.column == 'nhs_number'
        assert exc_info.value.source_record_id == '3'
        assert str(exc_info.value).startswith('nhs_number:')

    def test_missing_optional_field_is_none(self, engine):
        rules = [TransformationRule('email', 'email', 'lowercase')]
        assert engine.transform_record({}, rules)['email'] is None

    def test_throwing_transformation_fails_record(self, engine):
        rules = [TransformationRule('dob', 'date_of_birth', 'parse_uk_date')]

        with pytest.raises(TransformationError) as exc_info:
            engine.transform_record({'dob': 'soon'}, rules)

        assert exc_info.value.transformation == 'parse_uk_date'
        assert exc_info.value.source_value == 'soon'

    def test_required_value_emptied_by_chain(self, engine):
        rules = [TransformationRule('code', 'code', 'numbers_only', required=True)]
        with pytest.raises(TransformationError, match="became empty"):
            engine.transform_record({'code': 'abc'}, rules)

    def test_output_outside_row_variants_rejected(self, engine):
        rules = [TransformationRule('meds', 'current_medications', 'parse_medications')]
        with pytest.raises(TransformationError, match="unsupported value type"):
            engine.transform_record({'meds': 'Aspirin 75mg OD'}, rules)

    def test_custom_registry(self):
        registry = TransformationRegistry()
        registry.register('room_code', lambda v: f"ROOM-{int(v):03d}")
        engine = TransformationEngine('legacy', registry=registry, clock=lambda: FIXED_NOW)

        row = engine.transform_record({'room': 7}, [TransformationRule('room', 'room_number', 'room_code')])

        assert row['room_number'] == 'ROOM-007'
        assert row[MIGRATION_SOURCE_COLUMN] == 'legacy'

    def test_transformation_rule_chain_parsing(self):
        rule = TransformationRule('a', 'b', ' trim , uppercase ')
        assert rule.transformation_chain == ['trim', 'uppercase']
