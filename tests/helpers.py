"""Test helpers for building sqlite source/target stores and migration configuration.

The stores mirror a small slice of the monolith: a residents table with a care_notes
child table, and the matching service-store tables carrying provenance columns.
"""
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional

from domain_migrator.models import (
    DatabaseConnectionConfig, MigrationConfig, MigrationPlan, TableMigrationConfig,
    TransformationRule, ValidationRule
)


SOURCE_SCHEMA = """
CREATE TABLE residents (
    id INTEGER PRIMARY KEY,
    nhs_no TEXT,
    first_name TEXT,
    surname TEXT,
    dob TEXT,
    email TEXT,
    phone TEXT
);
CREATE TABLE care_notes (
    id INTEGER PRIMARY KEY,
    resident_id INTEGER NOT NULL,
    note TEXT
);
"""

TARGET_SCHEMA = """
CREATE TABLE residents (
    id INTEGER PRIMARY KEY,
    nhs_number TEXT NOT NULL,
    first_name TEXT,
    last_name TEXT,
    date_of_birth TEXT,
    email TEXT,
    phone_number TEXT,
    created_at TEXT NOT NULL,
    migration_source TEXT NOT NULL
);
CREATE TABLE care_notes (
    id INTEGER PRIMARY KEY,
    resident_id INTEGER NOT NULL REFERENCES residents(id),
    note TEXT,
    created_at TEXT NOT NULL,
    migration_source TEXT NOT NULL
);
"""


def make_nhs_number(seed: int) -> str:
    """Return a valid 10 digit NHS number derived from seed (modulus 11 check digit)."""
    base = 400000000 + seed
    while True:
        digits = str(base)
        total = sum(int(d) * (10 - i) for i, d in enumerate(digits))
        check = 11 - (total % 11)
        if check == 11:
            check = 0
        if check != 10:
            return digits + str(check)
        base += 1


def make_resident(resident_id: int, **overrides) -> Dict[str, Any]:
    resident = {
        'id': resident_id,
        'nhs_no': make_nhs_number(resident_id),
        'first_name': 'mary',
        'surname': f'SMITH{resident_id}',
        'dob': '15/03/1945',
        'email': f'resident{resident_id}@example.org',
        'phone': '01234 567890',
    }
    resident.update(overrides)
    return resident


def create_source_store(path: Path, residents: List[Dict[str, Any]],
                        care_notes: Optional[List[Dict[str, Any]]] = None) -> Path:
    connection = sqlite3.connect(str(path))
    try:
        connection.executescript(SOURCE_SCHEMA)
        connection.executemany(
            "INSERT INTO residents (id, nhs_no, first_name, surname, dob, email, phone) "
            "VALUES (:id, :nhs_no, :first_name, :surname, :dob, :email, :phone)",
            residents)
        if care_notes:
            connection.executemany(
                "INSERT INTO care_notes (id, resident_id, note) VALUES (:id, :resident_id, :note)",
                care_notes)
        connection.commit()
    finally:
        connection.close()
    return path


def create_target_store(path: Path) -> Path:
    connection = sqlite3.connect(str(path))
    try:
        connection.executescript(TARGET_SCHEMA)
        connection.commit()
    finally:
        connection.close()
    return path


def fetch_all(path: Path, table: str) -> List[Dict[str, Any]]:
    connection = sqlite3.connect(str(path))
    connection.row_factory = sqlite3.Row
    try:
        return [dict(row) for row in connection.execute(f"SELECT * FROM {table} ORDER BY id")]
    finally:
        connection.close()


def count_rows(path: Path, table: str) -> int:
    connection = sqlite3.connect(str(path))
    try:
        return connection.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
    finally:
        connection.close()


def residents_table_config(**overrides) -> TableMigrationConfig:
    values = dict(
        source_table='residents',
        target_table='residents',
        transformation_rules=(
            TransformationRule('id', 'id', 'identity', required=True),
            TransformationRule('nhs_no', 'nhs_number', 'remove_whitespace', required=True),
            TransformationRule('first_name', 'first_name', 'trim,normalize_name'),
            TransformationRule('surname', 'last_name', 'trim,normalize_name'),
            TransformationRule('dob', 'date_of_birth', 'parse_uk_date'),
            TransformationRule('email', 'email', 'trim,lowercase'),
            TransformationRule('phone', 'phone_number', 'normalize_phone_uk'),
        ),
        validation_rules=(
            ValidationRule('nhs_number', 'nhs_number', 'Invalid NHS number'),
            ValidationRule('email', 'email', 'Invalid email address'),
            ValidationRule('phone_number', 'phone', 'Invalid UK phone number'),
        ),
        healthcare_context='patient_demographics',
    )
    values.update(overrides)
    return TableMigrationConfig(**values)


def care_notes_table_config() -> TableMigrationConfig:
    return TableMigrationConfig(
        source_table='care_notes',
        target_table='care_notes',
        transformation_rules=(
            TransformationRule('id', 'id', required=True),
            TransformationRule('resident_id', 'resident_id', required=True),
            TransformationRule('note', 'note', 'trim'),
        ),
        healthcare_context='care_planning',
    )


def sqlite_migration_config(source_path: Path, targets: Dict[str, Path], **overrides) -> MigrationConfig:
    values = dict(
        source_database=DatabaseConnectionConfig(dialect='sqlite', path=str(source_path)),
        target_databases={name: DatabaseConnectionConfig(dialect='sqlite', path=str(path))
                          for name, path in targets.items()},
        batch_size=4,
        max_retries=1,
        retry_delay_ms=0,
    )
    values.update(overrides)
    return MigrationConfig(**values)


def resident_plan(service_name: str = 'resident_service', phase: int = 1,
                  include_care_notes: bool = True) -> MigrationPlan:
    tables = [residents_table_config()]
    if include_care_notes:
        tables.append(care_notes_table_config())
    return MigrationPlan(service_name=service_name, phase=phase, tables=tables)
