"""
Migration Engine - Table Gateway for Source and Target Stores

Reads source tables in stable pages and writes migrated batches into service stores.

KEY FEATURES:
- Pooled connections: acquired per operation from a bounded ConnectionPool, always released
- Atomic batches: each batch is written in one transaction (commit or rollback)
- Performance: executemany with fallback to individual inserts (BulkInsertStrategy)
- Schema isolation: table names qualified as [schema].[table] when a schema is configured
- Rollback: provenance deletes across a service's tables in one transaction
"""

import logging
import re
from contextlib import contextmanager
from typing import Any, Dict, List, Optional, Sequence

from ..interfaces import MigrationEngineInterface
from ..exceptions import ConnectorError, RollbackError
from ..models import DatabaseConnectionConfig, Dialect, Row
from .bulk_insert_strategy import BatchWriteResult, BulkInsertStrategy
from .connection_pool import ConnectionPool, is_connection_error


_IDENTIFIER = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')


class MigrationEngine(MigrationEngineInterface):
    """
    Table gateway for one relational store.

    One MigrationEngine wraps the source store and one wraps each target service
    store. All SQL uses '?' parameters; identifiers are validated and bracket quoted.
    """

    def __init__(self, connection_config: DatabaseConnectionConfig, name: str = "store",
                 pool: Optional[ConnectionPool] = None):
        """
        Initialize the migration engine.

        Args:
            connection_config: Store connection settings
            name: Store name for logs and errors ('source' or the service name)
            pool: Optional pre-built pool; one is created from connection_config when None
        """
        self.logger = logging.getLogger(__name__)
        self.config = connection_config
        self.name = name
        self.pool = pool or ConnectionPool(connection_config, name)
        self.bulk_insert = BulkInsertStrategy(connection_config.dialect, self.pool.error_types)

        self.logger.debug(f"MigrationEngine initialized for {name}: {connection_config.describe()}")

    def get_qualified_table_name(self, table_name: str) -> str:
        """
        Get schema-qualified table name.

        Args:
            table_name: Unqualified table name (e.g., "residents")

        Returns:
            "[schema].[table]" when a schema is configured, otherwise "[table]"
        """
        self._check_identifier(table_name)
        if self.config.schema:
            self._check_identifier(self.config.schema)
            return f"[{self.config.schema}].[{table_name}]"
        return f"[{table_name}]"

    @contextmanager
    def transaction(self):
        """
        Context manager for one transaction on a pooled connection.

        Commits when the block completes, rolls back on any error.

        Yields:
            Active connection
        """
        with self.pool.connection() as connection:
            try:
                yield connection
                connection.commit()
                self.logger.debug(f"Transaction committed on {self.name}")
            except Exception as e:
                try:
                    connection.rollback()
                    self.logger.error(f"Transaction on {self.name} rolled back due to error: {str(e)[:200]}")
                except self.pool.error_types as rollback_error:
                    self.logger.critical(f"ROLLBACK FAILED on {self.name} - store may be in inconsistent state: "
                                         f"{rollback_error}")
                raise

    def count_rows(self, table_name: str, where: Optional[str] = None) -> int:
        sql = f"SELECT COUNT(*) FROM {self.get_qualified_table_name(table_name)}"
        if where:
            sql += f" WHERE {where}"
        with self._driver_errors(f"count rows in {table_name}"):
            with self.pool.connection() as connection:
                cursor = connection.cursor()
                try:
                    cursor.execute(sql)
                    row = cursor.fetchone()
                finally:
                    cursor.close()
                # Reads must not leave a transaction open on the pooled connection
                connection.rollback()
        return int(row[0]) if row else 0

    def fetch_page(self, table_name: str, order_by: str, offset: int, limit: int,
                   where: Optional[str] = None) -> List[Row]:
        self._check_identifier(order_by)
        sql = f"SELECT * FROM {self.get_qualified_table_name(table_name)}"
        if where:
            sql += f" WHERE {where}"
        if self.config.dialect == Dialect.SQLITE.value:
            sql += f" ORDER BY [{order_by}] LIMIT ? OFFSET ?"
            params = (limit, offset)
        else:
            sql += f" ORDER BY [{order_by}] OFFSET ? ROWS FETCH NEXT ? ROWS ONLY"
            params = (offset, limit)

        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug(f"Fetching {table_name} page offset={offset} limit={limit} from {self.name}")

        with self._driver_errors(f"fetch {table_name} page at offset {offset}"):
            with self.pool.connection() as connection:
                cursor = connection.cursor()
                try:
                    cursor.execute(sql, params)
                    columns = [description[0] for description in cursor.description]
                    rows = [dict(zip(columns, values)) for values in cursor.fetchall()]
                finally:
                    cursor.close()
                connection.rollback()
        return rows

    def write_batch(self, table_name: str, records: List[Row]) -> BatchWriteResult:
        """
        Insert one batch in a single transaction.

        Raises:
            ConnectorError: If the store fails; the transaction is rolled back
        """
        if not records:
            return BatchWriteResult()
        qualified_table_name = self.get_qualified_table_name(table_name)
        with self._driver_errors(f"write batch into {table_name}"):
            with self.transaction() as connection:
                return self.bulk_insert.insert(connection, records, table_name, qualified_table_name)

    def delete_by_provenance(self, table_names: Sequence[str], provenance_marker: str) -> int:
        """
        Delete rows stamped with the provenance marker, in the given table order, in one transaction.

        Raises:
            RollbackError: If any delete fails; nothing is deleted
        """
        deleted: Dict[str, int] = {}
        try:
            with self.transaction() as connection:
                cursor = connection.cursor()
                try:
                    for table_name in table_names:
                        qualified_table_name = self.get_qualified_table_name(table_name)
                        cursor.execute(f"DELETE FROM {qualified_table_name} WHERE [migration_source] = ?",
                                       (provenance_marker,))
                        deleted[table_name] = max(cursor.rowcount, 0)
                        self.logger.info(f"Deleted {deleted[table_name]} migrated rows from "
                                         f"{qualified_table_name} on {self.name}")
                finally:
                    cursor.close()
        except (ConnectorError, ValueError) + self.pool.error_types as e:
            raise RollbackError(f"Rollback of {self.name} failed: {e}", service_name=self.name) from e
        return sum(deleted.values())

    def close(self) -> None:
        self.pool.close_all()

    @contextmanager
    def _driver_errors(self, description: str):
        """Translate driver errors into ConnectorError, classified by retryability."""
        try:
            yield
        except self.pool.error_types as e:
            self.logger.error(f"Failed to {description} on {self.name}: {e}")
            raise ConnectorError(f"Failed to {description} on {self.name}: {e}", service_name=self.name,
                                 retryable=is_connection_error(e)) from e

    @staticmethod
    def _check_identifier(name: str) -> None:
        if not _IDENTIFIER.match(name or ''):
            raise ValueError(f"Invalid SQL identifier: '{name}'")
