"""
Domain Migration System

A configuration-driven tool for moving healthcare records out of a monolithic
database into per-service stores: field mapping recommendations for reviewers,
row transformation and validation, and batched, resumable, auditable migration
with per-service rollback.
"""

__version__ = "1.0.0"

# Import core models and interfaces for easy access
from .models import (
    DatabaseConnectionConfig,
    MigrationConfig,
    MigrationPlan,
    MigrationProgress,
    MigrationResult,
    MigrationStatus,
    ProgressStatus,
    TableMigrationConfig,
    TransformationRule,
    ValidationRule,
    AuditEvent
)

from .interfaces import (
    MigrationEngineInterface,
    TransformationEngineInterface,
    ValidationEngineInterface,
    AuditSinkInterface,
    EncryptionServiceInterface,
    ProgressTrackerInterface
)

from .exceptions import (
    MigrationError,
    ConnectorError,
    TransformationError,
    ValidationError,
    RollbackError,
    ConfigurationError,
    MigrationCancelledError,
    MappingRecommendationError,
    EncryptionError
)

__all__ = [
    # Core models
    "DatabaseConnectionConfig",
    "MigrationConfig",
    "MigrationPlan",
    "MigrationProgress",
    "MigrationResult",
    "MigrationStatus",
    "ProgressStatus",
    "TableMigrationConfig",
    "TransformationRule",
    "ValidationRule",
    "AuditEvent",

    # Interfaces
    "MigrationEngineInterface",
    "TransformationEngineInterface",
    "ValidationEngineInterface",
    "AuditSinkInterface",
    "EncryptionServiceInterface",
    "ProgressTrackerInterface",

    # Exceptions
    "MigrationError",
    "ConnectorError",
    "TransformationError",
    "ValidationError",
    "RollbackError",
    "ConfigurationError",
    "MigrationCancelledError",
    "MappingRecommendationError",
    "EncryptionError",
]
