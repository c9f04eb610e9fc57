"""Connector layer: pooled connections, table gateway, bulk insert and retry."""

from .bulk_insert_strategy import BatchWriteResult, BulkInsertStrategy
from .connection_pool import ConnectionPool
from .migration_engine import MigrationEngine
from .retry import backoff_delay_ms, call_with_retry

__all__ = [
    'BatchWriteResult',
    'BulkInsertStrategy',
    'ConnectionPool',
    'MigrationEngine',
    'backoff_delay_ms',
    'call_with_retry',
]
