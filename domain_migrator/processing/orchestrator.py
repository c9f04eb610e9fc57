"""
Migration Orchestrator - Phase/Service/Table Coordinator

Moves records from the monolith into per-service stores, one table at a time.

KEY FEATURES:
- Phases run in ascending order; services of one phase run concurrently on a thread pool
- Tables of one service run sequentially in configured (parent-before-child) order
- Batch loop per table: count -> page -> transform -> validate -> encrypt PII -> bulk write
- Record-level failures (transformation, validation, rows rejected by the target) never abort
- Connector failures retry with exponential backoff, then abort the whole run
- Cancellation is observed at batch boundaries; committed batches are kept
- Rollback deletes every row stamped with the provenance marker, per service, in one transaction

DATA FLOW:
    source MigrationEngine -> TransformationEngine -> ValidationEngine -> encryption
        -> target MigrationEngine (BulkInsertStrategy) -> MigrationResult / audit / events
"""

import logging
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from itertools import groupby
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ..audit.audit_sink import LoggingAuditSink
from ..audit.events import (
    EventEmitter, TableMigrationCompleted, TABLE_MIGRATION_COMPLETED,
    MIGRATION_CANCELLED, MIGRATION_COMPLETED, MIGRATION_FAILED, MIGRATION_ROLLBACK, MIGRATION_STARTED
)
from ..database.migration_engine import MigrationEngine
from ..database.retry import call_with_retry
from ..exceptions import (
    ConfigurationError, MigrationCancelledError, RollbackError, TransformationError
)
from ..interfaces import (
    AuditSinkInterface, EncryptionServiceInterface, MigrationEngineInterface,
    TransformationEngineInterface, ValidationEngineInterface
)
from ..mapping.transformation_engine import TransformationEngine
from ..models import (
    AuditEvent, DatabaseConnectionConfig, MigrationConfig, MigrationPlan, MigrationProgress,
    MigrationResult, MigrationStatus, ProgressStatus, Row, TableMigrationConfig
)
from ..monitoring.progress_tracker import ProgressTracker
from ..utils import ValidationUtils, utc_now
from ..validation.validation_engine import ValidationEngine


EngineFactory = Callable[[DatabaseConnectionConfig, str], MigrationEngineInterface]

SOURCE_ENGINE_NAME = 'source'
_STOP_CANCELLED = 'cancelled'
_STOP_ABORTED = 'aborted'


def _default_engine_factory(connection_config: DatabaseConnectionConfig, name: str) -> MigrationEngineInterface:
    return MigrationEngine(connection_config, name)


class MigrationOrchestrator:
    """
    Coordinates a migration run across services and tables.

    One orchestrator owns one source engine and one engine per target service,
    created on first use and released by shutdown(). Services of a phase share the
    source engine; its pool bounds concurrent reads.
    """

    def __init__(self, config: MigrationConfig, plans: Sequence[MigrationPlan],
                 audit_sink: Optional[AuditSinkInterface] = None,
                 encryption_service: Optional[EncryptionServiceInterface] = None,
                 event_emitter: Optional[EventEmitter] = None,
                 transformation_engine: Optional[TransformationEngineInterface] = None,
                 validation_engine: Optional[ValidationEngineInterface] = None,
                 progress_tracker: Optional[ProgressTracker] = None,
                 engine_factory: Optional[EngineFactory] = None,
                 sleep: Callable[[float], None] = time.sleep):
        """
        Initialize the orchestrator.

        Args:
            config: Run configuration (read-only for the run)
            plans: Service migration plans
            audit_sink: Receives lifecycle audit events; logs them when None
            encryption_service: Encrypts PII columns; required when any table contains PII
            event_emitter: Receives TableMigrationCompleted events
            transformation_engine: Row transformer; stamps config.provenance_marker by default
            validation_engine: Row validator
            progress_tracker: Run-wide progress holder
            engine_factory: Builds a MigrationEngine for a connection config and store name
            sleep: Sleep function used between retries
        """
        self.logger = logging.getLogger(__name__)
        self.config = config
        self.plans = list(plans)
        self.audit_sink = audit_sink or LoggingAuditSink()
        self.encryption_service = encryption_service
        self.events = event_emitter or EventEmitter()
        self.transformation_engine = transformation_engine or TransformationEngine(config.provenance_marker)
        self.validation_engine = validation_engine or ValidationEngine()
        self.progress = progress_tracker or ProgressTracker()
        self.engine_factory = engine_factory or _default_engine_factory
        self._sleep = sleep

        self.correlation_id: Optional[str] = None
        self._engines: Dict[str, MigrationEngineInterface] = {}
        self._engines_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._stop_reason: Optional[str] = None
        self._results: Dict[str, List[MigrationResult]] = {}
        self._results_lock = threading.Lock()

        self.logger.info(f"MigrationOrchestrator initialized with {len(self.plans)} service plans, "
                         f"batch_size={config.batch_size}, parallel_services={config.parallel_services}, "
                         f"dry_run={config.dry_run}")

    # ------------------------------------------------------------------
    # Run control

    def execute_migration(self, services: Optional[Sequence[str]] = None) -> List[MigrationResult]:
        """
        Run the configured plans (or only the named services) phase by phase.

        Args:
            services: Optional service names to migrate; all plans when None

        Returns:
            One MigrationResult per table that started, in phase/service/table order.
            A cancelled run returns the results so far, the interrupted table FAILED.
            A cancel() issued before the run starts is honoured: nothing is migrated.

        Raises:
            ConfigurationError: Unknown service names, or a PII table without an encryption service
            ConnectorError: A store failed after retries; MIGRATION_FAILED is audited first
        """
        plans = self._select_plans(services)
        for plan in plans:
            for table_config in plan.tables:
                self._require_encryption(table_config)

        phases = [(phase, list(phase_plans))
                  for phase, phase_plans in groupby(sorted(plans, key=lambda p: p.phase), key=lambda p: p.phase)]

        self.correlation_id = str(uuid.uuid4())
        with self._results_lock:
            self._results = {plan.service_name: [] for _, phase_plans in phases for plan in phase_plans}

        self.progress.start(total_phases=len(phases), total_tables=sum(len(p.tables) for p in plans))
        service_names = [plan.service_name for plan in plans]
        self._audit(MIGRATION_STARTED, self.correlation_id, {'services': service_names})
        self.logger.info(f"Migration {self.correlation_id} started: {len(phases)} phases, "
                         f"services {', '.join(service_names)}")

        try:
            return self._run_phases(phases, service_names)
        finally:
            # The stop request belongs to this run only
            self._stop_event.clear()
            self._stop_reason = None

    def _run_phases(self, phases: List[Tuple[int, List[MigrationPlan]]],
                    service_names: List[str]) -> List[MigrationResult]:
        for phase, phase_plans in phases:
            if self._stop_event.is_set():
                break
            self.progress.set_phase(phase)
            phase_resource = f"phase-{phase}"
            phase_services = [plan.service_name for plan in phase_plans]
            self._audit(MIGRATION_STARTED, phase_resource, {'phase': phase, 'services': phase_services})

            errors = self._run_phase(phase_plans)

            failures = [e for e in errors if not isinstance(e, MigrationCancelledError)]
            if failures:
                error = failures[0]
                self.progress.finish(ProgressStatus.FAILED)
                self._audit(MIGRATION_FAILED, phase_resource, {
                    'phase': phase,
                    'services': phase_services,
                    'error': str(error),
                    'error_type': type(error).__name__,
                    'service_name': getattr(error, 'service_name', None),
                    'table_name': getattr(error, 'table_name', None),
                })
                self.logger.error(f"Migration {self.correlation_id} aborted in phase {phase}: {error}")
                raise error

            if errors or self._stop_reason == _STOP_CANCELLED:
                return self._finish_cancelled(phase)

            self._audit(MIGRATION_COMPLETED, phase_resource, {
                'phase': phase,
                'services': phase_services,
                'summary': self._summarize(phase_services),
            })

        if self._stop_reason == _STOP_CANCELLED:
            return self._finish_cancelled(None)

        self.progress.finish(ProgressStatus.COMPLETED)
        results = self.get_results()
        self._audit(MIGRATION_COMPLETED, self.correlation_id, {
            'services': service_names,
            'summary': self._summarize(service_names),
        })
        self.logger.info(f"Migration {self.correlation_id} completed: {len(results)} tables, "
                         f"{sum(r.migrated_records for r in results)} migrated, "
                         f"{sum(r.failed_records for r in results)} failed")
        return results

    def cancel(self) -> None:
        """Request cancellation; observed before the next batch of every running table."""
        if not self._stop_event.is_set():
            self._stop_reason = _STOP_CANCELLED
            self._stop_event.set()
            self.logger.warning("Migration cancellation requested")

    def get_migration_progress(self) -> MigrationProgress:
        return self.progress.snapshot()

    def get_results(self) -> List[MigrationResult]:
        """Results recorded so far (including in-progress tables), in service/table order."""
        with self._results_lock:
            return [result for service_results in self._results.values() for result in service_results]

    def rollback_service(self, service_name: str) -> int:
        """
        Delete every row this migration wrote to one service, in reverse table order.

        Runs in one target transaction; calling it again deletes nothing and succeeds.

        Returns:
            Number of rows deleted

        Raises:
            ConfigurationError: If the service has no plan
            RollbackError: If any delete fails; the service store is left unchanged
        """
        plan = self._get_plan(service_name)
        table_names = [table_config.target_table for table_config in reversed(plan.tables)]
        engine = self._get_target_engine(service_name)
        resource_id = self.correlation_id or service_name

        self.logger.warning(f"Rolling back service {service_name}: tables {', '.join(table_names)}")
        try:
            deleted = engine.delete_by_provenance(table_names, self.config.provenance_marker)
        except RollbackError as e:
            self._audit(MIGRATION_FAILED, resource_id, {
                'operation': 'rollback',
                'service_name': service_name,
                'tables': table_names,
                'error': str(e),
            })
            raise

        self._audit(MIGRATION_ROLLBACK, resource_id, {
            'service_name': service_name,
            'tables': table_names,
            'deleted_records': deleted,
        })
        self.logger.info(f"Rollback of {service_name} completed: {deleted} rows deleted")
        return deleted

    def shutdown(self) -> None:
        """Release all pooled connections. Safe to call repeatedly."""
        with self._engines_lock:
            engines = list(self._engines.items())
            self._engines.clear()
        for name, engine in engines:
            engine.close()
            self.logger.debug(f"Closed engine for {name}")

    # ------------------------------------------------------------------
    # Table migration

    def migrate_table(self, table_config: TableMigrationConfig, target_engine: MigrationEngineInterface,
                      service_name: str, phase: int = 0) -> MigrationResult:
        """
        Migrate one table in batch_size chunks.

        Returns:
            COMPLETED result when every record migrated, PARTIAL when some failed

        Raises:
            MigrationCancelledError: Cancellation observed; the recorded result is FAILED
            ConnectorError: Store failure after retries; the recorded result is FAILED
        """
        self._require_encryption(table_config)
        table_name = table_config.source_table
        result = MigrationResult(service_name=service_name, table_name=table_name,
                                 status=MigrationStatus.IN_PROGRESS, started_at=utc_now())
        self._record_result(result)
        start = time.perf_counter()
        source_engine = self._get_source_engine()

        self.logger.info(f"Migrating {service_name}.{table_name} -> {table_config.target_table}")
        try:
            self._check_stop(service_name, table_name)
            total = self._with_retry(
                lambda: source_engine.count_rows(table_name, table_config.source_filter),
                f"count rows in {table_name}")
            result.total_records = total
            self.progress.add_total_records(total)

            offset = 0
            batch_number = 0
            while offset < total:
                self._check_stop(service_name, table_name)
                page = self._with_retry(
                    lambda: source_engine.fetch_page(table_name, table_config.order_by, offset,
                                                     self.config.batch_size, table_config.source_filter),
                    f"fetch {table_name} page at offset {offset}")
                if not page:
                    break
                batch_number += 1
                self._process_batch(page, table_config, target_engine, service_name, result)
                offset += len(page)

                if self.logger.isEnabledFor(logging.DEBUG):
                    self.logger.debug(f"{service_name}.{table_name} batch {batch_number}: "
                                      f"{result.migrated_records + result.failed_records}/{total} processed")
        except Exception as e:
            result.status = MigrationStatus.FAILED
            result.error = str(e)
            self._complete_timing(result, start)
            if getattr(e, 'table_name', None) is None and hasattr(e, 'table_name'):
                e.table_name = table_name
            self.logger.error(f"Migration of {service_name}.{table_name} failed: {e}")
            raise

        processed = result.migrated_records + result.failed_records
        if processed != result.total_records:
            self.logger.warning(f"{table_name}: counted {result.total_records} rows but read {processed}; "
                                f"source changed during migration")
            result.total_records = processed

        result.status = MigrationStatus.COMPLETED if result.failed_records == 0 else MigrationStatus.PARTIAL
        self._complete_timing(result, start)
        self.progress.table_completed()

        self.events.emit(TABLE_MIGRATION_COMPLETED, TableMigrationCompleted(
            service_name=service_name,
            table_name=table_name,
            status=result.status.value,
            total_records=result.total_records,
            migrated_records=result.migrated_records,
            failed_records=result.failed_records,
            duration_ms=result.duration_ms,
            phase=phase,
            healthcare_context=table_config.healthcare_context,
            contains_pii=table_config.contains_pii,
            metadata={
                'target_table': table_config.target_table,
                'retention_years': table_config.retention_years,
                'dry_run': self.config.dry_run,
                'correlation_id': self.correlation_id,
            },
        ))

        self.logger.info(f"Migrated {service_name}.{table_name}: {result.status.value} - "
                         f"{result.migrated_records}/{result.total_records} migrated, "
                         f"{result.failed_records} failed in {result.duration_ms:.0f}ms")
        return result

    def _process_batch(self, page: List[Row], table_config: TableMigrationConfig,
                       target_engine: MigrationEngineInterface, service_name: str,
                       result: MigrationResult) -> None:
        valid_records = []
        for source_row in page:
            record_id = source_row.get(table_config.order_by)
            try:
                record = self.transformation_engine.transform_record(source_row, table_config.transformation_rules)
            except TransformationError as e:
                result.failed_records += 1
                result.validation_errors.append(f"Record {record_id}: {e}")
                continue

            if self.config.validation_enabled and table_config.validation_rules:
                outcome = self.validation_engine.validate_record(record, table_config.validation_rules)
                if not outcome.is_valid:
                    result.failed_records += 1
                    result.validation_errors.extend(f"Record {record_id}: {error}" for error in outcome.errors)
                    continue

            if table_config.contains_pii:
                record = self._encrypt_pii(record, table_config)
            valid_records.append(record)

        if self.config.dry_run:
            migrated = len(valid_records)
        else:
            write_result = self._with_retry(
                lambda: target_engine.write_batch(table_config.target_table, valid_records),
                f"write batch into {service_name}.{table_config.target_table}")
            migrated = write_result.inserted
            result.failed_records += write_result.rejected
            result.validation_errors.extend(write_result.errors)

        result.migrated_records += migrated
        self.progress.record_migrated(migrated)

    def _encrypt_pii(self, record: Row, table_config: TableMigrationConfig) -> Row:
        encrypted = dict(record)
        for column in table_config.pii_columns:
            value = encrypted.get(column)
            if ValidationUtils.is_empty(value):
                continue
            encrypted[column] = self._with_retry(
                lambda value=value: self.encryption_service.encrypt(value),
                f"encrypt {table_config.target_table}.{column}")
        return encrypted

    # ------------------------------------------------------------------
    # Helpers

    def _run_phase(self, phase_plans: List[MigrationPlan]) -> List[Exception]:
        """Run the services of one phase concurrently; return the errors they raised."""
        max_workers = max(1, min(self.config.parallel_services, len(phase_plans)))
        errors: List[Exception] = []
        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix='migrate') as executor:
            futures = [executor.submit(self._migrate_service, plan) for plan in phase_plans]
            for future in futures:
                error = future.exception()
                if error is not None:
                    errors.append(error)
        return errors

    def _migrate_service(self, plan: MigrationPlan) -> None:
        target_engine = self._get_target_engine(plan.service_name)
        self.logger.info(f"Service {plan.service_name} (phase {plan.phase}): migrating {len(plan.tables)} tables")
        try:
            for table_config in plan.tables:
                self.migrate_table(table_config, target_engine, plan.service_name, plan.phase)
        except MigrationCancelledError:
            raise
        except Exception:
            # Stop sibling services at their next batch boundary
            if not self._stop_event.is_set():
                self._stop_reason = _STOP_ABORTED
                self._stop_event.set()
            raise

    def _finish_cancelled(self, phase: Optional[int]) -> List[MigrationResult]:
        self.progress.finish(ProgressStatus.CANCELLED)
        results = self.get_results()
        self._audit(MIGRATION_CANCELLED, self.correlation_id, {
            'phase': phase,
            'summary': self._summarize(list(self._results)),
        })
        self.logger.warning(f"Migration {self.correlation_id} cancelled: {len(results)} tables started")
        return results

    def _check_stop(self, service_name: str, table_name: str) -> None:
        if self._stop_event.is_set():
            if self._stop_reason == _STOP_CANCELLED:
                message = f"Migration of {service_name}.{table_name} cancelled"
            else:
                message = f"Migration of {service_name}.{table_name} stopped after another service failed"
            raise MigrationCancelledError(message, table_name=table_name)

    def _with_retry(self, operation, description: str):
        return call_with_retry(operation, description, self.config.max_retries,
                               self.config.retry_delay_ms, sleep=self._sleep)

    def _require_encryption(self, table_config: TableMigrationConfig) -> None:
        if table_config.contains_pii and self.encryption_service is None:
            raise ConfigurationError(
                f"Table {table_config.source_table} contains PII but no encryption key is configured")

    def _select_plans(self, services: Optional[Sequence[str]]) -> List[MigrationPlan]:
        if services is None:
            return list(self.plans)
        known = {plan.service_name for plan in self.plans}
        unknown = [name for name in services if name not in known]
        if unknown:
            raise ConfigurationError(f"Unknown services: {', '.join(unknown)}")
        return [plan for plan in self.plans if plan.service_name in services]

    def _get_plan(self, service_name: str) -> MigrationPlan:
        for plan in self.plans:
            if plan.service_name == service_name:
                return plan
        raise ConfigurationError(f"No migration plan for service '{service_name}'")

    def _get_source_engine(self) -> MigrationEngineInterface:
        with self._engines_lock:
            if SOURCE_ENGINE_NAME not in self._engines:
                self._engines[SOURCE_ENGINE_NAME] = self.engine_factory(self.config.source_database,
                                                                        SOURCE_ENGINE_NAME)
            return self._engines[SOURCE_ENGINE_NAME]

    def _get_target_engine(self, service_name: str) -> MigrationEngineInterface:
        connection_config = self.config.target_databases.get(service_name)
        if connection_config is None:
            raise ConfigurationError(f"No target connection configured for service '{service_name}'")
        key = f"target:{service_name}"
        with self._engines_lock:
            if key not in self._engines:
                self._engines[key] = self.engine_factory(connection_config, service_name)
            return self._engines[key]

    def _record_result(self, result: MigrationResult) -> None:
        with self._results_lock:
            self._results.setdefault(result.service_name, []).append(result)

    def _summarize(self, service_names: Sequence[str]) -> Dict[str, Dict[str, Any]]:
        with self._results_lock:
            summary = {}
            for service_name in service_names:
                for result in self._results.get(service_name, []):
                    summary[f"{service_name}.{result.table_name}"] = {
                        'status': result.status.value,
                        'total_records': result.total_records,
                        'migrated_records': result.migrated_records,
                        'failed_records': result.failed_records,
                    }
            return summary

    @staticmethod
    def _complete_timing(result: MigrationResult, start: float) -> None:
        result.completed_at = utc_now()
        result.duration_ms = (time.perf_counter() - start) * 1000

    def _audit(self, action: str, resource_id: str, details: Dict[str, Any]) -> None:
        details = dict(details)
        details['configuration'] = self.config.to_audit_dict()
        self.audit_sink.log(AuditEvent(
            action=action,
            resource_id=resource_id,
            details=details,
            timestamp=utc_now(),
            correlation_id=self.correlation_id or str(uuid.uuid4()),
        ))
