"""
Custom exceptions for the domain migration system.

This module defines specific exception types for the different error conditions
that can occur while recommending mappings and migrating records from the
monolith into per-service stores.

Record-level errors (TransformationError, ValidationError) are recovered by the
orchestrator and surfaced through MigrationResult.validation_errors. Connector and
rollback errors propagate to the caller.
"""


class MigrationError(Exception):
    """Base exception for all migration related errors."""

    def __init__(self, message: str, source_record_id: str = None, table_name: str = None):
        """
        Initialize migration error.

        Args:
            message: Error description
            source_record_id: Optional identifier of the source record that caused the error
            table_name: Optional source table being migrated when the error occurred
        """
        super().__init__(message)
        self.source_record_id = source_record_id
        self.table_name = table_name


class ConnectorError(MigrationError):
    """
    Exception raised when a source or target store cannot be reached or used.

    Covers connection, authentication and timeout failures. Retryable errors are
    retried with exponential backoff before the run is aborted.
    """

    def __init__(self, message: str, service_name: str = None, retryable: bool = True,
                 source_record_id: str = None, table_name: str = None):
        """
        Initialize connector error.

        Args:
            message: Error description
            service_name: Name of the service (or 'source') whose store failed
            retryable: Whether the operation may succeed if attempted again
            source_record_id: Optional identifier of the source record
            table_name: Optional table being read or written
        """
        super().__init__(message, source_record_id, table_name)
        self.service_name = service_name
        self.retryable = retryable


class TransformationError(MigrationError):
    """Exception raised when a source row cannot be transformed. Fails one record only."""

    def __init__(self, message: str, column: str = None, source_value=None,
                 transformation: str = None, source_record_id: str = None):
        """
        Initialize transformation error.

        Args:
            message: Error description
            column: Target column the failing rule writes to
            source_value: Original value that failed transformation
            transformation: Name of the transformation that failed
            source_record_id: Optional identifier of the source record
        """
        super().__init__(message, source_record_id)
        self.column = column
        self.source_value = source_value
        self.transformation = transformation


class ValidationError(MigrationError):
    """Exception raised when a transformed record violates one or more validation rules."""

    def __init__(self, message: str, errors: list = None, source_record_id: str = None):
        super().__init__(message, source_record_id)
        self.errors = list(errors or [])


class RollbackError(MigrationError):
    """Exception raised when a service rollback fails. Prior migration state is left untouched."""

    def __init__(self, message: str, service_name: str = None):
        super().__init__(message)
        self.service_name = service_name


class ConfigurationError(MigrationError):
    """Exception raised when configuration is invalid or missing."""
    pass


class MigrationCancelledError(MigrationError):
    """Exception raised inside a table migration when cancellation was requested."""
    pass


class MappingRecommendationError(MigrationError):
    """Exception raised when sampled source data cannot be analyzed."""
    pass


class EncryptionError(MigrationError):
    """Exception raised when the encryption collaborator fails to encrypt or decrypt a value."""

    def __init__(self, message: str, column: str = None, retryable: bool = False):
        super().__init__(message)
        self.column = column
        self.retryable = retryable
