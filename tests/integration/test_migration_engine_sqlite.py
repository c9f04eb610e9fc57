"""
Integration tests for MigrationEngine and ConnectionPool against sqlite stores.
"""

import sqlite3
from unittest.mock import Mock, patch

import pytest

from domain_migrator.database import MigrationEngine
from domain_migrator.database.connection_pool import ConnectionPool
from domain_migrator.database.retry import call_with_retry
from domain_migrator.exceptions import ConnectorError, RollbackError
from domain_migrator.models import DatabaseConnectionConfig
from tests.helpers import count_rows, create_source_store, create_target_store, fetch_all, make_resident


@pytest.fixture
def source_path(tmp_path):
    residents = [make_resident(i) for i in range(1, 8)]
    residents[2]['nhs_no'] = None
    return create_source_store(tmp_path / 'source.db', residents)


@pytest.fixture
def target_path(tmp_path):
    return create_target_store(tmp_path / 'target.db')


def sqlite_engine(path, name='store', pool_size=2):
    return MigrationEngine(DatabaseConnectionConfig(dialect='sqlite', path=str(path), pool_size=pool_size), name)


def target_row(resident_id, marker='monolith'):
    return {
        'id': resident_id,
        'nhs_number': f'90000000{resident_id:02d}',
        'last_name': 'Smith',
        'created_at': '2026-01-05T12:00:00+00:00',
        'migration_source': marker,
    }


class TestSourceReads:
    def test_count_rows(self, source_path):
        engine = sqlite_engine(source_path, 'source')
        try:
            assert engine.count_rows('residents') == 7
            assert engine.count_rows('residents', 'nhs_no IS NULL') == 1
        finally:
            engine.close()

    def test_fetch_pages_in_stable_order(self, source_path):
        engine = sqlite_engine(source_path, 'source')
        try:
            first = engine.fetch_page('residents', 'id', 0, 3)
            second = engine.fetch_page('residents', 'id', 3, 3)
            last = engine.fetch_page('residents', 'id', 6, 3)
            beyond = engine.fetch_page('residents', 'id', 9, 3)
        finally:
            engine.close()

        assert [row['id'] for row in first + second + last] == list(range(1, 8))
        assert first[0]['surname'] == 'SMITH1'
        assert beyond == []

    def test_fetch_with_filter(self, source_path):
        engine = sqlite_engine(source_path, 'source')
        try:
            rows = engine.fetch_page('residents', 'id', 0, 10, 'id > 5')
        finally:
            engine.close()
        assert [row['id'] for row in rows] == [6, 7]

    def test_missing_table_is_a_connector_error(self, source_path):
        engine = sqlite_engine(source_path, 'source')
        try:
            with pytest.raises(ConnectorError) as exc_info:
                engine.count_rows('discharges')
        finally:
            engine.close()
        assert not exc_info.value.retryable
        assert exc_info.value.service_name == 'source'

    @pytest.mark.parametrize("name", ["residents; DROP TABLE residents", "1abc", ""])
    def test_identifiers_validated(self, source_path, name):
        engine = sqlite_engine(source_path, 'source')
        try:
            with pytest.raises(ValueError):
                engine.get_qualified_table_name(name)
        finally:
            engine.close()


class TestTargetWrites:
    def test_write_batch(self, target_path):
        engine = sqlite_engine(target_path, 'resident_service')
        try:
            result = engine.write_batch('residents', [target_row(1), target_row(2)])
        finally:
            engine.close()

        assert result.inserted == 2
        assert [row['id'] for row in fetch_all(target_path, 'residents')] == [1, 2]

    def test_rejected_rows_do_not_fail_the_batch(self, target_path):
        engine = sqlite_engine(target_path, 'resident_service')
        try:
            engine.write_batch('residents', [target_row(1)])
            result = engine.write_batch('residents', [target_row(1), target_row(2), target_row(3)])
        finally:
            engine.close()

        assert result.inserted == 2
        assert result.rejected == 1
        assert 'record 1 rejected' in result.errors[0]
        assert count_rows(target_path, 'residents') == 3

    def test_foreign_keys_enforced(self, target_path):
        engine = sqlite_engine(target_path, 'resident_service')
        note = {'id': 1, 'resident_id': 99, 'note': 'Settled well',
                'created_at': '2026-01-05T12:00:00+00:00', 'migration_source': 'monolith'}
        try:
            result = engine.write_batch('care_notes', [note])
        finally:
            engine.close()

        assert result.rejected == 1
        assert count_rows(target_path, 'care_notes') == 0

    def test_empty_batch(self, target_path):
        engine = sqlite_engine(target_path, 'resident_service')
        try:
            assert engine.write_batch('residents', []).inserted == 0
        finally:
            engine.close()

    def test_transaction_rolls_back_on_error(self, target_path):
        engine = sqlite_engine(target_path, 'resident_service')
        try:
            with pytest.raises(RuntimeError):
                with engine.transaction() as connection:
                    connection.execute(
                        "INSERT INTO residents (id, nhs_number, created_at, migration_source) VALUES (?, ?, ?, ?)",
                        (1, '9434765919', 'now', 'monolith'))
                    raise RuntimeError("abort")
        finally:
            engine.close()

        assert count_rows(target_path, 'residents') == 0


class TestDeleteByProvenance:
    def test_deletes_only_marked_rows(self, target_path):
        engine = sqlite_engine(target_path, 'resident_service')
        try:
            engine.write_batch('residents', [target_row(1), target_row(2), target_row(3, marker='manual')])
            engine.write_batch('care_notes', [{'id': 1, 'resident_id': 1, 'note': 'x',
                                               'created_at': 'now', 'migration_source': 'monolith'}])

            deleted = engine.delete_by_provenance(['care_notes', 'residents'], 'monolith')
            again = engine.delete_by_provenance(['care_notes', 'residents'], 'monolith')
        finally:
            engine.close()

        assert deleted == 3
        assert again == 0
        assert [row['id'] for row in fetch_all(target_path, 'residents')] == [3]

    def test_failure_leaves_store_unchanged(self, target_path):
        engine = sqlite_engine(target_path, 'resident_service')
        try:
            engine.write_batch('residents', [target_row(1)])
            engine.write_batch('care_notes', [{'id': 1, 'resident_id': 1, 'note': 'x',
                                               'created_at': 'now', 'migration_source': 'monolith'}])

            # Parent before child violates the foreign key
            with pytest.raises(RollbackError) as exc_info:
                engine.delete_by_provenance(['residents', 'care_notes'], 'monolith')
        finally:
            engine.close()

        assert exc_info.value.service_name == 'resident_service'
        assert count_rows(target_path, 'residents') == 1
        assert count_rows(target_path, 'care_notes') == 1


class TestConnectionPool:
    def test_connections_reused(self, target_path):
        pool = ConnectionPool(DatabaseConnectionConfig(dialect='sqlite', path=str(target_path), pool_size=1))
        try:
            with pool.connection() as first:
                pass
            with pool.connection() as second:
                pass
        finally:
            pool.close_all()
        assert first is second

    def test_exhausted_pool_times_out(self, target_path):
        pool = ConnectionPool(DatabaseConnectionConfig(dialect='sqlite', path=str(target_path), pool_size=1),
                              'resident_service', acquire_timeout=0.01)
        try:
            with pool.connection():
                with pytest.raises(ConnectorError, match='Timed out'):
                    with pool.connection():
                        pass
        finally:
            pool.close_all()

    def test_closed_pool_rejects_requests(self, target_path):
        pool = ConnectionPool(DatabaseConnectionConfig(dialect='sqlite', path=str(target_path)))
        pool.close_all()
        pool.close_all()

        with pytest.raises(ConnectorError) as exc_info:
            with pool.connection():
                pass
        assert not exc_info.value.retryable

    def test_unreachable_store(self, tmp_path):
        pool = ConnectionPool(DatabaseConnectionConfig(dialect='sqlite', path=str(tmp_path / 'no' / 'such.db')),
                              'care_service')
        with pytest.raises(ConnectorError) as exc_info:
            with pool.connection():
                pass
        assert exc_info.value.service_name == 'care_service'

    def test_driver_errors_propagate(self, target_path):
        pool = ConnectionPool(DatabaseConnectionConfig(dialect='sqlite', path=str(target_path)))
        try:
            with pytest.raises(sqlite3.OperationalError):
                with pool.connection() as connection:
                    connection.execute("SELECT * FROM missing_table")
        finally:
            pool.close_all()

    def test_write_retry_gets_a_fresh_connection_after_link_failure(self, target_path):
        engine = sqlite_engine(target_path, 'resident_service', pool_size=1)
        dropped = Mock()
        dropped.cursor.return_value.executemany.side_effect = sqlite3.OperationalError(
            "Communication link failure: connection lost")
        connect = Mock(side_effect=[dropped, engine.pool._connect()])
        try:
            with patch.object(engine.pool, '_connect', connect):
                result = call_with_retry(lambda: engine.write_batch('residents', [target_row(1), target_row(2)]),
                                         "write residents", max_retries=2, retry_delay_ms=0, sleep=Mock())
        finally:
            engine.close()

        assert result.inserted == 2
        assert connect.call_count == 2
        dropped.close.assert_called_once()
        assert count_rows(target_path, 'residents') == 2

    def test_permanent_write_error_keeps_the_connection(self, target_path):
        engine = sqlite_engine(target_path, 'resident_service', pool_size=1)
        try:
            with engine.pool.connection() as first:
                pass
            with pytest.raises(ConnectorError) as exc_info:
                engine.write_batch('missing_table', [target_row(1), target_row(2)])
            with engine.pool.connection() as second:
                pass
        finally:
            engine.close()

        assert not exc_info.value.retryable
        assert first is second
