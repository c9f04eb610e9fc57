"""
Bulk Insert Strategy - Batch Data Loading

Encapsulates the strategy for inserting one batch of migrated rows with automatic
fallback from executemany to individual inserts. Rows the target rejects during the
fallback (constraint or conversion errors) are counted as rejected instead of
failing the batch.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Tuple

from ..exceptions import ConnectorError
from ..models import Dialect
from .connection_pool import is_connection_error, is_data_error


@dataclass
class BatchWriteResult:
    """Outcome of writing one batch."""
    inserted: int = 0
    rejected: int = 0
    errors: List[str] = field(default_factory=list)


class BulkInsertStrategy:
    """
    Strategy for inserting one batch into a target table.

    Implements two-tier insertion strategy:
    1. Fast path: executemany for the whole batch
    2. Fallback path: roll back, then execute row by row, skipping rejected rows

    The caller owns the transaction and commits after insert() returns.
    """

    def __init__(self, dialect: str = Dialect.MSSQL.value, error_types: tuple = (Exception,),
                 logger: logging.Logger = None):
        """
        Initialize bulk insert strategy.

        Args:
            dialect: Target dialect ('mssql' or 'sqlite')
            error_types: Driver error classes to handle
            logger: Optional logger instance
        """
        self.dialect = dialect
        self.error_types = error_types
        self.logger = logger or logging.getLogger(__name__)

    def insert(self, connection, records: List[Dict[str, Any]], table_name: str,
               qualified_table_name: str) -> BatchWriteResult:
        """
        Insert records using executemany with per-row fallback.

        Args:
            connection: Active connection with an open transaction
            records: Rows to insert
            table_name: Unqualified table name (for messages)
            qualified_table_name: Schema-qualified table name ([schema].[table])

        Returns:
            BatchWriteResult with inserted and rejected counts

        Raises:
            ConnectorError: On connection-level failures
        """
        if not records:
            return BatchWriteResult()

        columns, data_tuples, sql = self._prepare_data_tuples(records, qualified_table_name)

        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug(f"SQL: {sql}")
            sample_map = {col: data_tuples[0][i] for i, col in enumerate(columns)}
            self.logger.debug(f"Sample params (first record): {sample_map}")

        cursor = connection.cursor()
        try:
            if self._try_fast_insert(connection, cursor, sql, data_tuples, table_name):
                self.logger.info(f"Inserted {len(data_tuples)} records into {table_name}")
                return BatchWriteResult(inserted=len(data_tuples))

            result = self._fallback_individual_insert(cursor, sql, data_tuples, records, table_name)
            self.logger.info(f"Inserted {result.inserted} records into {table_name} "
                             f"({result.rejected} rejected)")
            return result
        except self.error_types as e:
            raise ConnectorError(f"Database error during bulk insert into {table_name}: {e}",
                                 retryable=is_connection_error(e)) from e
        finally:
            cursor.close()

    def _prepare_data_tuples(self, records: List[Dict[str, Any]],
                             qualified_table_name: str) -> Tuple[List[str], List[Tuple], str]:
        """
        Prepare data tuples from records, handling null and type conversions.

        Returns:
            (columns, data_tuples, sql_statement)
        """
        columns = list(records[0].keys())
        column_list = ', '.join(f"[{col}]" for col in columns)
        placeholders = ', '.join('?' * len(columns))
        sql = f"INSERT INTO {qualified_table_name} ({column_list}) VALUES ({placeholders})"

        data_tuples = []
        for record in records:
            data_tuples.append(tuple(self._prepare_value(record.get(col)) for col in columns))

        return columns, data_tuples, sql

    def _prepare_value(self, value):
        # Convert empty string to None
        if value == '':
            return None
        if self.dialect == Dialect.SQLITE.value:
            if isinstance(value, bool):
                return int(value)
            if isinstance(value, (datetime, date)):
                return value.isoformat()
            if isinstance(value, Decimal):
                return str(value)
        return value

    def _try_fast_insert(self, connection, cursor, sql: str, data_tuples: List[Tuple], table_name: str) -> bool:
        """
        Attempt the batch with executemany.

        Returns:
            True if the fast path inserted every row, False if the per-row fallback is needed
        """
        if len(data_tuples) <= 1:
            return False

        if self.dialect == Dialect.MSSQL.value:
            cursor.fast_executemany = True

        try:
            cursor.executemany(sql, data_tuples)
            return True
        except self.error_types as e:
            if not is_data_error(e):
                raise
            self.logger.debug(f"executemany into {table_name} failed with data error, "
                              f"using individual inserts: {e}")
            # Discard rows executemany may have written before failing
            connection.rollback()
            return False

    def _fallback_individual_insert(self, cursor, sql: str, data_tuples: List[Tuple],
                                    records: List[Dict[str, Any]], table_name: str) -> BatchWriteResult:
        """Insert rows one at a time, counting rows the target rejects."""
        result = BatchWriteResult()
        for record_values, record in zip(data_tuples, records):
            try:
                cursor.execute(sql, record_values)
                result.inserted += 1
            except self.error_types as record_error:
                if not is_data_error(record_error):
                    raise
                record_id = record.get('id')
                message = f"{table_name}: record {record_id} rejected by target: {record_error}"
                self.logger.warning(message)
                result.rejected += 1
                result.errors.append(message)
        return result
