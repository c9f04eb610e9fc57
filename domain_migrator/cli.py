"""
Command-line interface for the domain migration system.

    migrate --config config/migration_plan.yaml run [--dry-run] [--service NAME ...]
    migrate --config config/migration_plan.yaml rollback --service NAME
    migrate --config config/migration_plan.yaml status

Exit codes: 0 on full success, 1 when any table failed or has failed records (or the
run raised), 2 on configuration errors.
"""

import argparse
import dataclasses
import json
import logging
import sys
from typing import List, Optional

from .audit.audit_sink import CompositeAuditSink, JsonLinesAuditSink, LoggingAuditSink
from .config.config_manager import MigrationSettings, get_config_manager
from .config.processing_defaults import ProcessingDefaults
from .exceptions import ConfigurationError, MigrationError
from .models import MigrationResult, MigrationStatus
from .processing.orchestrator import MigrationOrchestrator
from .security.encryption import build_encryption_service


EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_CONFIGURATION_ERROR = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="migrate", description="Monolith to service store data migration")
    parser.add_argument("--config", default=None,
                        help=f"Migration plan file (default: $MIGRATOR_CONFIG_PATH or {ProcessingDefaults.PLAN_PATH})")
    parser.add_argument("--log-level", default=ProcessingDefaults.LOG_LEVEL,
                        choices=["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"],
                        help=f"Logging level (default: {ProcessingDefaults.LOG_LEVEL})")

    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Migrate configured services phase by phase")
    run_parser.add_argument("--dry-run", action="store_true",
                            help="Read, transform and validate without writing to service stores")
    run_parser.add_argument("--service", action="append", dest="services",
                            help="Migrate only this service (repeatable)")

    rollback_parser = subparsers.add_parser("rollback", help="Delete migrated rows from one service store")
    rollback_parser.add_argument("--service", required=True, help="Service to roll back")

    subparsers.add_parser("status", help="Show the last lifecycle event from the audit log")
    return parser


def main(args: Optional[List[str]] = None) -> int:
    """
    Main entry point for the CLI application.

    Args:
        args: Optional command line arguments (defaults to sys.argv)

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    if args is None:
        args = sys.argv[1:]
    options = build_parser().parse_args(args)

    # Set up logging without reconfiguring root if already configured
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
        root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, options.log_level))
    logger = logging.getLogger(__name__)
    if logger.isEnabledFor(logging.DEBUG):
        ProcessingDefaults.log_summary(logger)

    try:
        settings = get_config_manager().load_migration_settings(options.config)
        if options.command == "run":
            return _run(settings, options)
        if options.command == "rollback":
            return _rollback(settings, options.service)
        return _status(settings)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIGURATION_ERROR
    except MigrationError as e:
        logger.error(f"Migration failed: {e}")
        print(f"Migration failed: {e}", file=sys.stderr)
        return EXIT_FAILURE
    except KeyboardInterrupt:
        print("\nMigration interrupted by user", file=sys.stderr)
        return EXIT_FAILURE


def _build_orchestrator(settings: MigrationSettings, dry_run: bool = False) -> MigrationOrchestrator:
    config = settings.migration_config
    if dry_run and not config.dry_run:
        config = dataclasses.replace(config, dry_run=True)
    return MigrationOrchestrator(
        config,
        settings.plans,
        audit_sink=_build_audit_sink(settings),
        encryption_service=build_encryption_service(settings.encryption_key),
    )


def _build_audit_sink(settings: MigrationSettings):
    if settings.audit_log_path:
        return CompositeAuditSink([LoggingAuditSink(), JsonLinesAuditSink(settings.audit_log_path)])
    return LoggingAuditSink()


def _run(settings: MigrationSettings, options: argparse.Namespace) -> int:
    orchestrator = _build_orchestrator(settings, dry_run=options.dry_run)
    try:
        results = orchestrator.execute_migration(options.services)
    except MigrationError:
        # Aborted run: report the tables that started before the failure
        started = orchestrator.get_results()
        if started:
            _print_summary(orchestrator, started)
        raise
    finally:
        orchestrator.shutdown()

    _print_summary(orchestrator, results)

    if any(_is_unsuccessful(result) for result in results):
        return EXIT_FAILURE
    return EXIT_SUCCESS


def _rollback(settings: MigrationSettings, service_name: str) -> int:
    orchestrator = _build_orchestrator(settings)
    try:
        deleted = orchestrator.rollback_service(service_name)
    finally:
        orchestrator.shutdown()
    print(f" Rolled back {service_name}: {deleted} rows deleted")
    return EXIT_SUCCESS


def _status(settings: MigrationSettings) -> int:
    if not settings.audit_log_path:
        raise ConfigurationError("No audit log configured (audit.path) - status is unavailable")
    event = JsonLinesAuditSink(settings.audit_log_path).last_event()
    if event is None:
        print(" No migration events recorded")
        return EXIT_SUCCESS
    print(json.dumps(event, indent=2))
    return EXIT_SUCCESS


def _is_unsuccessful(result: MigrationResult) -> bool:
    return result.status == MigrationStatus.FAILED or result.failed_records > 0


def _print_summary(orchestrator: MigrationOrchestrator, results: List[MigrationResult]) -> None:
    _print_results(results)
    print(f" Run status: {orchestrator.get_migration_progress().status.value}")


def _print_results(results: List[MigrationResult]) -> None:
    print("=" * 82)
    print(f" {'SERVICE.TABLE':<40} {'STATUS':<12} {'TOTAL':>8} {'MIGRATED':>9} {'FAILED':>8}")
    print("=" * 82)
    for result in results:
        name = f"{result.service_name}.{result.table_name}"
        print(f" {name:<40} {result.status.value:<12} {result.total_records:>8} "
              f"{result.migrated_records:>9} {result.failed_records:>8}")
        for error in result.validation_errors[:5]:
            print(f"     - {error}")
        if len(result.validation_errors) > 5:
            print(f"     ... {len(result.validation_errors) - 5} more")
    print("=" * 82)


if __name__ == "__main__":
    sys.exit(main())
