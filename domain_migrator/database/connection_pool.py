"""
Bounded connection pool for source and target stores.

Connections are acquired per operation and always released. SQL Server connections
use pyodbc with explicit transactions (autocommit off); sqlite connections back
local and test stores.
"""

import logging
import queue
import sqlite3
import threading
from contextlib import contextmanager
from typing import Any, List, Optional

from ..config.processing_defaults import ProcessingDefaults
from ..exceptions import ConnectorError
from ..models import DatabaseConnectionConfig, Dialect


_CONNECTION_ERROR_MARKERS = (
    'connection', 'login', 'network', 'timeout', 'timed out',
    'cannot open database', 'unable to open database', 'database is locked', 'communication link',
)
_DATA_ERROR_MARKERS = (
    'primary key', 'foreign key', 'check constraint', 'duplicate key', 'unique constraint',
    'cast specification', 'converting', 'null constraint', 'not null',
)
# SQLSTATE class 08 (connection exception) plus HYT00/HYT01 (timeouts)
_CONNECTION_SQLSTATES = ('08', 'HYT00', 'HYT01')


def driver_error_types(dialect: str) -> tuple:
    """DB-API error base classes raised by the driver of a dialect."""
    if dialect == Dialect.SQLITE.value:
        return (sqlite3.Error,)
    import pyodbc
    return (pyodbc.Error,)


def _sqlstate(error: Exception) -> Optional[str]:
    """SQLSTATE of an ODBC error (pyodbc puts it in args[0]), or None."""
    args = getattr(error, 'args', ())
    if len(args) > 1 and isinstance(args[0], str) and len(args[0]) == 5:
        return args[0].upper()
    return None


def is_connection_error(error: Exception) -> bool:
    """True when a driver error describes a connectivity problem rather than a data problem."""
    sqlstate = _sqlstate(error)
    if sqlstate is not None:
        return sqlstate.startswith(_CONNECTION_SQLSTATES)
    error_str = str(error).lower()
    return (any(marker in error_str for marker in _CONNECTION_ERROR_MARKERS)
            and not any(marker in error_str for marker in _DATA_ERROR_MARKERS))


def is_data_error(error: Exception) -> bool:
    """True when a driver error describes a row the target rejected (constraint or conversion)."""
    if isinstance(error, (sqlite3.IntegrityError, sqlite3.DataError)):
        return True
    error_str = str(error).lower()
    return any(marker in error_str for marker in _DATA_ERROR_MARKERS)


class ConnectionPool:
    """
    Bounded pool of DB-API connections for one store.

    At most pool_size connections exist at once; callers block (up to
    acquire_timeout seconds) until one is free.
    """

    def __init__(self, connection_config: DatabaseConnectionConfig, name: str = "store",
                 acquire_timeout: float = ProcessingDefaults.POOL_ACQUIRE_TIMEOUT):
        """
        Initialize the pool. No connection is opened until first use.

        Args:
            connection_config: Store connection settings
            name: Store name used in logs and errors ('source' or the service name)
            acquire_timeout: Seconds to wait for a free connection
        """
        self.logger = logging.getLogger(__name__)
        self.config = connection_config
        self.name = name
        self.acquire_timeout = acquire_timeout
        self.error_types = driver_error_types(connection_config.dialect)

        self._idle: "queue.LifoQueue" = queue.LifoQueue()
        self._all_connections: List[Any] = []
        self._slots = threading.BoundedSemaphore(connection_config.pool_size)
        self._lock = threading.Lock()
        self._closed = False

    @property
    def dialect(self) -> str:
        return self.config.dialect

    @contextmanager
    def connection(self):
        """
        Context manager lending one pooled connection.

        Yields:
            DB-API connection with autocommit off

        Raises:
            ConnectorError: If the store cannot be reached or the pool is exhausted
        """
        connection = self._acquire()
        broken = False
        try:
            yield connection
        except self.error_types as e:
            broken = is_connection_error(e)
            raise
        except ConnectorError as e:
            # Driver errors already wrapped inside the block (bulk insert)
            broken = e.retryable
            raise
        finally:
            self._release(connection, broken)

    def close_all(self) -> None:
        """Close every connection. Safe to call repeatedly."""
        with self._lock:
            self._closed = True
            connections = list(self._all_connections)
            self._all_connections.clear()
        while True:
            try:
                self._idle.get_nowait()
            except queue.Empty:
                break
        for connection in connections:
            try:
                connection.close()
            except self.error_types as e:
                self.logger.warning(f"Error closing {self.name} connection: {e}")
        if connections:
            self.logger.info(f"Closed {len(connections)} pooled connection(s) for {self.name}")

    def _acquire(self):
        if self._closed:
            raise ConnectorError(f"Connection pool for {self.name} is closed", service_name=self.name,
                                 retryable=False)
        if not self._slots.acquire(timeout=self.acquire_timeout):
            raise ConnectorError(f"Timed out waiting for a {self.name} connection "
                                 f"(pool_size={self.config.pool_size})", service_name=self.name)
        try:
            return self._idle.get_nowait()
        except queue.Empty:
            pass
        try:
            connection = self._connect()
        except Exception:
            self._slots.release()
            raise
        with self._lock:
            self._all_connections.append(connection)
        return connection

    def _release(self, connection, broken: bool) -> None:
        try:
            if broken or self._closed:
                with self._lock:
                    if connection in self._all_connections:
                        self._all_connections.remove(connection)
                try:
                    connection.close()
                except self.error_types as e:
                    self.logger.debug(f"Discarded broken {self.name} connection: {e}")
            else:
                self._idle.put(connection)
        finally:
            self._slots.release()

    def _connect(self):
        if self.config.dialect == Dialect.SQLITE.value:
            try:
                connection = sqlite3.connect(self.config.path, timeout=self.config.connection_timeout,
                                             check_same_thread=False)
                connection.execute("PRAGMA foreign_keys = ON")
                return connection
            except sqlite3.Error as e:
                self.logger.error(f"Database connection failed for {self.name}: {e}")
                raise ConnectorError(f"Failed to connect to {self.name} database: {e}", service_name=self.name)

        import pyodbc
        try:
            connection = pyodbc.connect(
                self.config.build_connection_string(),
                autocommit=False,  # Explicit transaction control for atomic batches
                timeout=self.config.connection_timeout
            )
            connection.setdecoding(pyodbc.SQL_CHAR, encoding='utf-8')
            connection.setdecoding(pyodbc.SQL_WCHAR, encoding='utf-8')
            connection.setencoding(encoding='utf-8')
            return connection
        except pyodbc.Error as e:
            self.logger.error(f"Database connection failed for {self.name}: {e}")
            # Authentication failures will not succeed on retry
            raise ConnectorError(f"Failed to connect to {self.name} database: {e}", service_name=self.name,
                                 retryable='login failed' not in str(e).lower())
