"""
Core data models for the domain migration system.

This module defines the primary data structures used throughout the system
for run configuration, per-table migration contracts, and migration results.
Configuration objects are frozen: they are built once from the plan file (or
from approved mapping recommendations) and never change during a run.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Union


# Closed set of value variants a migrated row may carry
RowValue = Union[str, int, float, Decimal, bool, date, datetime, None]
Row = Dict[str, RowValue]
ROW_VALUE_TYPES = (str, int, float, Decimal, bool, date, datetime, type(None))


class MigrationStatus(Enum):
    """Status of a single table migration."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


class ProgressStatus(Enum):
    """Status of a complete migration run."""
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ValidationRuleKind(Enum):
    """Built-in validation rule kinds."""
    REQUIRED = "required"
    NHS_NUMBER = "nhs_number"
    EMAIL = "email"
    PHONE = "phone"
    DATE = "date"
    CUSTOM = "custom"


class Dialect(Enum):
    """Supported relational dialects."""
    MSSQL = "mssql"
    SQLITE = "sqlite"


@dataclass(frozen=True)
class DatabaseConnectionConfig:
    """
    Connection settings for one relational store.

    Attributes:
        dialect: 'mssql' (pyodbc) or 'sqlite' (local files, test stores)
        connection_string: Full ODBC connection string; built from components when empty
        driver: ODBC driver name (mssql)
        server: Database server (mssql)
        database: Database name (mssql)
        username: SQL login; trusted connection is used when empty (mssql)
        password: SQL login password (mssql)
        path: Database file path (sqlite)
        schema: Schema qualifying table names ('dbo', 'sandbox'); empty for none
        pool_size: Maximum pooled connections for this store
        connection_timeout: Connection timeout in seconds
    """
    dialect: str = "mssql"
    connection_string: str = ""
    driver: str = "ODBC Driver 17 for SQL Server"
    server: str = "localhost"
    database: str = ""
    username: str = ""
    password: str = ""
    path: str = ""
    schema: str = ""
    pool_size: int = 5
    connection_timeout: int = 30

    def __post_init__(self):
        """Validate connection configuration."""
        if self.dialect not in [d.value for d in Dialect]:
            raise ValueError(f"Unsupported dialect: {self.dialect}")
        if self.pool_size <= 0:
            raise ValueError("pool_size must be positive")
        if self.dialect == Dialect.SQLITE.value and not self.path:
            raise ValueError("path is required for sqlite connections")
        if self.dialect == Dialect.MSSQL.value and not (self.connection_string or self.database):
            raise ValueError("connection_string or database is required for mssql connections")

    def build_connection_string(self) -> str:
        """Return the ODBC connection string, building it from components when not given."""
        if self.connection_string:
            return self.connection_string

        connection_string = (
            f"DRIVER={{{self.driver}}};"
            f"SERVER={self.server};"
            f"DATABASE={self.database};"
        )
        if self.username:
            connection_string += f"UID={self.username};PWD={self.password};"
        else:
            connection_string += "Trusted_Connection=yes;"
        connection_string += (
            f"Connection Timeout={self.connection_timeout};"
            f"Application Name=Domain Migrator;"
            f"TrustServerCertificate=yes;"
        )
        return connection_string

    def describe(self) -> Dict[str, Any]:
        """Connection summary safe for logs and audit events (no credentials)."""
        if self.dialect == Dialect.SQLITE.value:
            return {'dialect': self.dialect, 'path': self.path}
        return {
            'dialect': self.dialect,
            'server': self.server,
            'database': self.database,
            'schema': self.schema,
            'pool_size': self.pool_size,
        }


@dataclass(frozen=True)
class TransformationRule:
    """
    Defines how one source column maps to one target column.

    Attributes:
        source_column: Column read from the source row
        target_column: Column written to the target row
        transformation: Registry name, or comma-separated chain of names applied in order
        required: Whether a null/missing source value fails the record
    """
    source_column: str
    target_column: str
    transformation: str = "identity"
    required: bool = False

    def __post_init__(self):
        if not self.source_column:
            raise ValueError("source_column cannot be empty")
        if not self.target_column:
            raise ValueError("target_column cannot be empty")
        if not self.transformation:
            raise ValueError("transformation cannot be empty")

    @property
    def transformation_chain(self) -> List[str]:
        """Transformation names in application order."""
        return [name.strip() for name in self.transformation.split(",") if name.strip()]


@dataclass(frozen=True)
class ValidationRule:
    """
    Declares a check applied to one column of a transformed row.

    Attributes:
        column: Target column to check
        rule: Rule kind (required, nhs_number, email, phone, date, custom)
        error_message: Message reported as "{column}: {error_message}"
        custom_validator: Predicate for 'custom' rules; a callable or a registry name
    """
    column: str
    rule: str
    error_message: str
    custom_validator: Optional[Union[str, Callable[[Any], bool]]] = None

    def __post_init__(self):
        if not self.column:
            raise ValueError("column cannot be empty")
        if self.rule not in [kind.value for kind in ValidationRuleKind]:
            raise ValueError(f"Unknown validation rule kind: {self.rule}")
        if self.rule == ValidationRuleKind.CUSTOM.value and self.custom_validator is None:
            raise ValueError(f"custom rule for {self.column} requires custom_validator")


DEFAULT_PII_COLUMNS = (
    'first_name', 'last_name', 'nhs_number', 'email_address', 'phone_number', 'address'
)


@dataclass(frozen=True)
class TableMigrationConfig:
    """
    Immutable migration contract for one source table.

    Attributes:
        source_table: Table read from the monolith
        target_table: Table written in the service store
        contains_pii: Whether PII columns are encrypted before writing
        healthcare_context: Context tag carried on lifecycle events
        retention_years: Retention period recorded with the table
        transformation_rules: Ordered field rules
        validation_rules: Rules applied to each transformed row
        order_by: Source column giving a stable read order
        source_filter: Optional SQL predicate restricting the rows to migrate
        pii_columns: Target columns encrypted when contains_pii is set
    """
    source_table: str
    target_table: str
    transformation_rules: Tuple[TransformationRule, ...]
    validation_rules: Tuple[ValidationRule, ...] = ()
    contains_pii: bool = False
    healthcare_context: str = ""
    retention_years: int = 7
    order_by: str = "id"
    source_filter: Optional[str] = None
    pii_columns: Tuple[str, ...] = DEFAULT_PII_COLUMNS

    def __post_init__(self):
        if not self.source_table:
            raise ValueError("source_table cannot be empty")
        if not self.target_table:
            raise ValueError("target_table cannot be empty")
        if not self.transformation_rules:
            raise ValueError("At least one transformation rule must be specified")
        # Normalize lists from callers into tuples
        object.__setattr__(self, 'transformation_rules', tuple(self.transformation_rules))
        object.__setattr__(self, 'validation_rules', tuple(self.validation_rules))
        object.__setattr__(self, 'pii_columns', tuple(self.pii_columns))


@dataclass(frozen=True)
class MigrationPlan:
    """
    Ordered tables of one target service.

    Attributes:
        service_name: Target service (key into MigrationConfig.target_databases)
        phase: Phase number; phases run in ascending order
        tables: Tables in parent-before-child order
        dependencies: Services that must be migrated in an earlier phase
    """
    service_name: str
    phase: int
    tables: Tuple[TableMigrationConfig, ...]
    dependencies: Tuple[str, ...] = ()

    def __post_init__(self):
        if not self.service_name:
            raise ValueError("service_name cannot be empty")
        if self.phase <= 0:
            raise ValueError("phase must be positive")
        object.__setattr__(self, 'tables', tuple(self.tables))
        object.__setattr__(self, 'dependencies', tuple(self.dependencies))


@dataclass(frozen=True)
class MigrationConfig:
    """
    Run configuration. Read-only for the duration of a run.

    Attributes:
        source_database: Monolith connection
        target_databases: Service name -> service store connection
        batch_size: Rows per read/transform/validate/write unit
        max_retries: Retries for connector operations before the run aborts
        retry_delay_ms: Initial backoff delay, doubled on each retry
        validation_enabled: Whether validation rules are applied
        dry_run: Read, transform and validate without writing to targets
        provenance_marker: Value stamped into migration_source and used by rollback
        max_parallel_services: Upper bound on services migrated concurrently
    """
    source_database: DatabaseConnectionConfig
    target_databases: Dict[str, DatabaseConnectionConfig]
    batch_size: int = 1000
    max_retries: int = 3
    retry_delay_ms: int = 1000
    validation_enabled: bool = True
    dry_run: bool = False
    provenance_marker: str = "monolith"
    max_parallel_services: Optional[int] = None

    def __post_init__(self):
        """Validate run configuration."""
        if self.batch_size <= 0:
            raise ValueError("batch_size must be positive")
        if self.max_retries < 0:
            raise ValueError("max_retries cannot be negative")
        if self.retry_delay_ms < 0:
            raise ValueError("retry_delay_ms cannot be negative")
        if not self.provenance_marker:
            raise ValueError("provenance_marker cannot be empty")
        if self.max_parallel_services is not None and self.max_parallel_services <= 0:
            raise ValueError("max_parallel_services must be positive")

    @property
    def parallel_services(self) -> int:
        """Worker bound for concurrent services: explicit setting or the smallest target pool."""
        if self.max_parallel_services:
            return self.max_parallel_services
        if not self.target_databases:
            return 1
        return min(target.pool_size for target in self.target_databases.values())

    def to_audit_dict(self) -> Dict[str, Any]:
        """Triggering configuration for audit events (no credentials)."""
        return {
            'source': self.source_database.describe(),
            'targets': {name: target.describe() for name, target in self.target_databases.items()},
            'batch_size': self.batch_size,
            'max_retries': self.max_retries,
            'retry_delay_ms': self.retry_delay_ms,
            'validation_enabled': self.validation_enabled,
            'dry_run': self.dry_run,
            'provenance_marker': self.provenance_marker,
        }


@dataclass
class MigrationResult:
    """
    Outcome of migrating one table.

    Invariant: migrated_records + failed_records == total_records once the
    table reaches COMPLETED or PARTIAL.
    """
    service_name: str
    table_name: str
    status: MigrationStatus = MigrationStatus.PENDING
    total_records: int = 0
    migrated_records: int = 0
    failed_records: int = 0
    validation_errors: List[str] = field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_ms: float = 0.0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'service_name': self.service_name,
            'table_name': self.table_name,
            'status': self.status.value,
            'total_records': self.total_records,
            'migrated_records': self.migrated_records,
            'failed_records': self.failed_records,
            'validation_errors': list(self.validation_errors),
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'duration_ms': self.duration_ms,
            'error': self.error,
        }


@dataclass
class MigrationProgress:
    """Run-wide progress. Created once per run and updated in place."""
    total_phases: int = 0
    current_phase: int = 0
    total_tables: int = 0
    completed_tables: int = 0
    total_records: int = 0
    migrated_records: int = 0
    start_time: Optional[datetime] = None
    status: ProgressStatus = ProgressStatus.NOT_STARTED
    estimated_completion: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_phases': self.total_phases,
            'current_phase': self.current_phase,
            'total_tables': self.total_tables,
            'completed_tables': self.completed_tables,
            'total_records': self.total_records,
            'migrated_records': self.migrated_records,
            'start_time': self.start_time.isoformat() if self.start_time else None,
            'status': self.status.value,
            'estimated_completion': self.estimated_completion.isoformat() if self.estimated_completion else None,
        }


@dataclass
class AuditEvent:
    """
    Lifecycle event handed to the audit collaborator.

    Attributes:
        action: MIGRATION_STARTED, MIGRATION_COMPLETED, MIGRATION_FAILED, MIGRATION_ROLLBACK, ...
        resource_type: Always 'migration' for this subsystem
        resource_id: Run or service identifier
        details: Event payload including the triggering configuration
        timestamp: When the event occurred (UTC)
        user_id: Actor; 'system' for orchestrated runs
        correlation_id: Identifier shared by all events of one run
    """
    action: str
    resource_id: str
    details: Dict[str, Any]
    timestamp: datetime
    correlation_id: str
    resource_type: str = "migration"
    user_id: str = "system"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'action': self.action,
            'resource_type': self.resource_type,
            'resource_id': self.resource_id,
            'details': self.details,
            'timestamp': self.timestamp.isoformat(),
            'user_id': self.user_id,
            'correlation_id': self.correlation_id,
        }
