"""
Abstract interfaces and base classes for the domain migration system.

This module defines the contracts that the orchestrator's collaborators must
implement to ensure consistent behavior and enable dependency injection.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from .models import AuditEvent, Row, TransformationRule, ValidationRule


class MigrationEngineInterface(ABC):
    """Abstract interface for the table gateway of one relational store."""

    @abstractmethod
    def count_rows(self, table_name: str, where: Optional[str] = None) -> int:
        """
        Count rows of a table.

        Args:
            table_name: Unqualified table name
            where: Optional SQL predicate restricting the rows counted

        Returns:
            Number of matching rows
        """
        pass

    @abstractmethod
    def fetch_page(self, table_name: str, order_by: str, offset: int, limit: int,
                   where: Optional[str] = None) -> List[Row]:
        """
        Read one page of rows in a stable order.

        Args:
            table_name: Unqualified table name
            order_by: Column giving a stable read order
            offset: Rows to skip
            limit: Maximum rows to return
            where: Optional SQL predicate restricting the rows read

        Returns:
            Rows as column -> value dictionaries
        """
        pass

    @abstractmethod
    def write_batch(self, table_name: str, records: List[Row]) -> Any:
        """
        Insert records in a single transaction.

        Args:
            table_name: Unqualified target table name
            records: Rows to insert

        Returns:
            BatchWriteResult with inserted and rejected counts
        """
        pass

    @abstractmethod
    def delete_by_provenance(self, table_names: Sequence[str], provenance_marker: str) -> int:
        """
        Delete migrated rows from the given tables, in the given order, in one transaction.

        Args:
            table_names: Tables to clear, children before parents
            provenance_marker: Value of migration_source identifying migrated rows

        Returns:
            Total number of rows deleted
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """Release all pooled connections."""
        pass


class TransformationEngineInterface(ABC):
    """Abstract interface for row transformation components."""

    @abstractmethod
    def transform_record(self, source_row: Row, rules: Sequence[TransformationRule]) -> Row:
        """
        Transform one source row into one target-shaped row.

        Args:
            source_row: Row read from the source table
            rules: Field rules applied in declared order

        Returns:
            Target row stamped with created_at and migration_source

        Raises:
            TransformationError: If the record cannot be transformed
        """
        pass


class ValidationEngineInterface(ABC):
    """Abstract interface for row validation components."""

    @abstractmethod
    def validate_record(self, record: Row, rules: Sequence[ValidationRule]) -> Any:
        """
        Check a transformed row against declared rules, collecting every violation.

        Returns:
            ValidationOutcome with is_valid and "{column}: {message}" errors
        """
        pass


class AuditSinkInterface(ABC):
    """Abstract interface for the audit collaborator."""

    @abstractmethod
    def log(self, event: AuditEvent) -> None:
        """
        Record one lifecycle event.

        Args:
            event: Audit event to record
        """
        pass


class EncryptionServiceInterface(ABC):
    """Abstract interface for the encryption collaborator used on PII columns."""

    @abstractmethod
    def encrypt(self, value: str) -> str:
        """Encrypt a plaintext value."""
        pass

    @abstractmethod
    def decrypt(self, value: str) -> str:
        """Decrypt a value produced by encrypt()."""
        pass


class ProgressTrackerInterface(ABC):
    """Abstract interface for run-wide progress tracking."""

    @abstractmethod
    def start(self, total_phases: int, total_tables: int) -> None:
        pass

    @abstractmethod
    def add_total_records(self, count: int) -> None:
        pass

    @abstractmethod
    def record_migrated(self, count: int) -> None:
        pass

    @abstractmethod
    def snapshot(self) -> Any:
        """
        Get a copy of the current progress.

        Returns:
            MigrationProgress with estimated_completion computed
        """
        pass

    @abstractmethod
    def get_current_metrics(self) -> Dict[str, Any]:
        pass
