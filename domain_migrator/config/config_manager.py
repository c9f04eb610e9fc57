"""
Centralized configuration management for the domain migration system.

This module provides the ConfigManager class that serves as the single source of truth
for run configuration: the migration plan file (source and target connections, service
phases, table contracts), processing parameters, and environment variable handling.
"""

import os
import json
import logging
import re
from pathlib import Path
from typing import Dict, List, Any, Optional, Union
from dataclasses import dataclass, field

from .processing_defaults import ProcessingDefaults
from ..models import (
    DatabaseConnectionConfig, MigrationConfig, MigrationPlan, TableMigrationConfig,
    TransformationRule, ValidationRule, ValidationRuleKind, DEFAULT_PII_COLUMNS
)
from ..exceptions import ConfigurationError
from ..mapping.transformation_registry import get_default_registry
from ..validation.validation_engine import CUSTOM_VALIDATORS


_ENV_REFERENCE = re.compile(r'\$\{([A-Za-z_][A-Za-z0-9_]*)\}')
_TRUE_VALUES = ('true', '1', 'yes', 'on')


def _env_flag(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    value = os.environ.get(name)
    if value is None or value.strip() == '':
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"Environment variable {name} must be an integer, got '{value}'")


@dataclass
class ProcessingParameters:
    """Processing parameters with plan file and environment variable support."""
    batch_size: int = ProcessingDefaults.BATCH_SIZE
    max_retries: int = ProcessingDefaults.MAX_RETRIES
    retry_delay_ms: int = ProcessingDefaults.RETRY_DELAY_MS
    validation_enabled: bool = ProcessingDefaults.VALIDATION_ENABLED
    dry_run: bool = ProcessingDefaults.DRY_RUN
    provenance_marker: str = ProcessingDefaults.PROVENANCE_MARKER
    max_parallel_services: Optional[int] = None

    @classmethod
    def from_environment(cls, plan_section: Optional[Dict[str, Any]] = None) -> 'ProcessingParameters':
        """
        Create processing parameters from the plan 'processing' section, then apply
        MIGRATOR_* environment overrides.
        """
        section = plan_section or {}
        base = cls(
            batch_size=int(section.get('batch_size', cls.batch_size)),
            max_retries=int(section.get('max_retries', cls.max_retries)),
            retry_delay_ms=int(section.get('retry_delay_ms', cls.retry_delay_ms)),
            validation_enabled=bool(section.get('validation_enabled', cls.validation_enabled)),
            dry_run=bool(section.get('dry_run', cls.dry_run)),
            provenance_marker=str(section.get('provenance_marker', cls.provenance_marker)),
            max_parallel_services=section.get('max_parallel_services'),
        )
        return cls(
            batch_size=_env_int('MIGRATOR_BATCH_SIZE', base.batch_size),
            max_retries=_env_int('MIGRATOR_MAX_RETRIES', base.max_retries),
            retry_delay_ms=_env_int('MIGRATOR_RETRY_DELAY_MS', base.retry_delay_ms),
            validation_enabled=_env_flag('MIGRATOR_VALIDATION_ENABLED', base.validation_enabled),
            dry_run=_env_flag('MIGRATOR_DRY_RUN', base.dry_run),
            provenance_marker=os.environ.get('MIGRATOR_PROVENANCE_MARKER', base.provenance_marker),
            max_parallel_services=_env_int('MIGRATOR_MAX_PARALLEL_SERVICES', base.max_parallel_services),
        )


@dataclass
class MigrationSettings:
    """Everything a run needs, as loaded from one plan file."""
    migration_config: MigrationConfig
    plans: List[MigrationPlan]
    audit_log_path: Optional[str] = None
    encryption_key: Optional[str] = None
    source_path: Optional[Path] = None

    def get_plan(self, service_name: str) -> MigrationPlan:
        for plan in self.plans:
            if plan.service_name == service_name:
                return plan
        raise ConfigurationError(f"Service not found in migration plan: {service_name}")


@dataclass
class ConfigPaths:
    """Configuration file paths with environment variable support."""
    plan_path: Path = field(default_factory=lambda: Path(ProcessingDefaults.PLAN_PATH))

    @classmethod
    def from_environment(cls, plan_path: Optional[Union[str, Path]] = None) -> 'ConfigPaths':
        """Create configuration paths from arguments or environment variables."""
        if plan_path:
            return cls(plan_path=Path(plan_path))
        return cls(plan_path=Path(os.environ.get('MIGRATOR_CONFIG_PATH', ProcessingDefaults.PLAN_PATH)))


class ConfigManager:
    """
    Centralized configuration manager serving as single source of truth.

    This class consolidates all configuration management including:
    - Migration plan loading (YAML or JSON)
    - ${ENV_VAR} expansion for credentials and paths
    - MIGRATOR_* processing overrides
    - Plan validation (transformations, rule kinds, phase ordering, targets)
    """

    def __init__(self, plan_path: Optional[Union[str, Path]] = None):
        """
        Initialize the configuration manager.

        Args:
            plan_path: Migration plan file. If None, uses MIGRATOR_CONFIG_PATH or the default path.
        """
        self.logger = logging.getLogger(__name__)
        self.paths = ConfigPaths.from_environment(plan_path)

        self._settings_cache: Dict[str, MigrationSettings] = {}

        self.logger.info(f"ConfigManager initialized with plan path: {self.paths.plan_path}")

    def load_migration_settings(self, plan_path: Optional[Union[str, Path]] = None) -> MigrationSettings:
        """
        Load, validate and cache a migration plan file.

        Args:
            plan_path: Optional plan file path. If None, uses the configured path.

        Returns:
            MigrationSettings for the run

        Raises:
            ConfigurationError: If the file is missing, unreadable or invalid
        """
        full_path = Path(plan_path) if plan_path else self.paths.plan_path
        cache_key = str(full_path)

        if cache_key in self._settings_cache:
            self.logger.debug(f"Returning cached migration settings for {cache_key}")
            return self._settings_cache[cache_key]

        raw_data = self.load_plan_file(full_path)
        settings = self._parse_settings(raw_data, full_path)
        self.validate_plan(settings)

        self._settings_cache[cache_key] = settings
        self.logger.info(f"Loaded migration plan from {full_path}: "
                         f"{len(settings.plans)} services, "
                         f"{sum(len(p.tables) for p in settings.plans)} tables")
        return settings

    def load_plan_file(self, full_path: Path) -> Dict[str, Any]:
        """Read a YAML or JSON plan file and expand ${ENV_VAR} references."""
        if not full_path.exists():
            raise ConfigurationError(f"Migration plan file not found: {full_path}")

        try:
            with open(full_path, 'r', encoding='utf-8') as file:
                if full_path.suffix.lower() in ['.yaml', '.yml']:
                    import yaml
                    plan_data = yaml.safe_load(file)
                elif full_path.suffix.lower() == '.json':
                    plan_data = json.load(file)
                else:
                    raise ConfigurationError(f"Unsupported file format: {full_path.suffix}")
        except ConfigurationError:
            raise
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Failed to parse migration plan file {full_path}: {e}")
        except Exception as e:
            raise ConfigurationError(f"Failed to read migration plan file {full_path}: {e}")

        if not isinstance(plan_data, dict):
            raise ConfigurationError(f"Migration plan file {full_path} must contain a mapping")

        return self.expand_environment(plan_data)

    def expand_environment(self, value: Any) -> Any:
        """
        Recursively replace ${ENV_VAR} references in string values.

        Raises:
            ConfigurationError: If a referenced variable is not set
        """
        if isinstance(value, dict):
            return {key: self.expand_environment(item) for key, item in value.items()}
        if isinstance(value, list):
            return [self.expand_environment(item) for item in value]
        if isinstance(value, str):
            def replace(match):
                name = match.group(1)
                if name not in os.environ:
                    raise ConfigurationError(f"Environment variable referenced in plan is not set: {name}")
                return os.environ[name]
            return _ENV_REFERENCE.sub(replace, value)
        return value

    def validate_plan(self, settings: MigrationSettings) -> bool:
        """
        Validate a loaded plan.

        Returns:
            True if the plan is valid

        Raises:
            ConfigurationError: If any part of the plan is invalid
        """
        errors = []
        registry = get_default_registry()
        phases = {plan.service_name: plan.phase for plan in settings.plans}

        if not settings.plans:
            errors.append("At least one service must be configured")

        seen_services = set()
        for plan in settings.plans:
            if plan.service_name in seen_services:
                errors.append(f"Duplicate service '{plan.service_name}'")
            seen_services.add(plan.service_name)

            if plan.service_name not in settings.migration_config.target_databases:
                errors.append(f"Service '{plan.service_name}' has no target database connection")

            for dependency in plan.dependencies:
                if dependency not in phases:
                    errors.append(f"Service '{plan.service_name}' depends on unknown service '{dependency}'")
                elif phases[dependency] >= plan.phase:
                    errors.append(f"Service '{plan.service_name}' (phase {plan.phase}) depends on "
                                  f"'{dependency}' which is not in an earlier phase ({phases[dependency]})")

            for table in plan.tables:
                for rule in table.transformation_rules:
                    for name in rule.transformation_chain:
                        if not registry.has(name):
                            errors.append(f"{plan.service_name}.{table.target_table}.{rule.target_column}: "
                                          f"unknown transformation '{name}'")
                for rule in table.validation_rules:
                    if isinstance(rule.custom_validator, str) and rule.custom_validator not in CUSTOM_VALIDATORS:
                        errors.append(f"{plan.service_name}.{table.target_table}.{rule.column}: "
                                      f"unknown custom validator '{rule.custom_validator}'")

        if errors:
            raise ConfigurationError(f"Migration plan validation failed: {'; '.join(errors)}")

        self.logger.debug("Migration plan validation passed")
        return True

    def get_configuration_summary(self, plan_path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
        """
        Get a summary of the loaded configuration (no credentials).

        Returns:
            Dictionary containing configuration summary
        """
        settings = self.load_migration_settings(plan_path)
        return {
            'plan_path': str(settings.source_path),
            'processing': settings.migration_config.to_audit_dict(),
            'services': [
                {
                    'service_name': plan.service_name,
                    'phase': plan.phase,
                    'dependencies': list(plan.dependencies),
                    'tables': [table.target_table for table in plan.tables],
                }
                for plan in settings.plans
            ],
            'audit_log_path': settings.audit_log_path,
        }

    def clear_cache(self) -> None:
        """Clear all cached configurations."""
        self._settings_cache.clear()
        self.logger.info("Configuration cache cleared")

    def reload_configuration(self) -> None:
        """Reload paths from environment variables and clear cache."""
        self.paths = ConfigPaths.from_environment()
        self.clear_cache()
        self.logger.info("Configuration reloaded from environment variables")

    def _parse_settings(self, plan_data: Dict[str, Any], plan_path: Path) -> MigrationSettings:
        """
        Parse raw plan data into MigrationSettings.

        Raises:
            ConfigurationError: If the plan structure is invalid
        """
        base_dir = plan_path.parent
        try:
            source_database = self._parse_connection(plan_data.get('source') or {}, base_dir, 'source')

            targets_data = plan_data.get('targets') or {}
            target_databases = {
                name: self._parse_connection(target_data or {}, base_dir, name)
                for name, target_data in targets_data.items()
            }

            params = ProcessingParameters.from_environment(plan_data.get('processing'))
            migration_config = MigrationConfig(
                source_database=source_database,
                target_databases=target_databases,
                batch_size=params.batch_size,
                max_retries=params.max_retries,
                retry_delay_ms=params.retry_delay_ms,
                validation_enabled=params.validation_enabled,
                dry_run=params.dry_run,
                provenance_marker=params.provenance_marker,
                max_parallel_services=params.max_parallel_services,
            )

            plans = [self._parse_service(service_data) for service_data in plan_data.get('services') or []]
        except ConfigurationError:
            raise
        except (ValueError, TypeError, KeyError, AttributeError) as e:
            raise ConfigurationError(f"Invalid migration plan {plan_path}: {e}")

        audit_path = (plan_data.get('audit') or {}).get('path')
        if audit_path:
            audit_path = str(self._resolve_path(audit_path, base_dir))

        encryption_key = (plan_data.get('security') or {}).get('encryption_key') \
            or os.environ.get('MIGRATOR_ENCRYPTION_KEY')

        return MigrationSettings(
            migration_config=migration_config,
            plans=plans,
            audit_log_path=audit_path,
            encryption_key=encryption_key,
            source_path=plan_path,
        )

    def _parse_connection(self, data: Dict[str, Any], base_dir: Path, name: str) -> DatabaseConnectionConfig:
        if not data:
            raise ConfigurationError(f"Connection settings missing for '{name}'")
        values = dict(data)
        if values.get('dialect') == 'sqlite' and values.get('path'):
            values['path'] = str(self._resolve_path(values['path'], base_dir))
        values.setdefault('pool_size', ProcessingDefaults.POOL_SIZE)
        values.setdefault('connection_timeout', ProcessingDefaults.CONNECTION_TIMEOUT)
        return DatabaseConnectionConfig(**values)

    def _parse_service(self, data: Dict[str, Any]) -> MigrationPlan:
        tables = [self._parse_table(table_data) for table_data in data.get('tables') or []]
        return MigrationPlan(
            service_name=data['name'],
            phase=int(data['phase']),
            tables=tables,
            dependencies=data.get('dependencies') or [],
        )

    def _parse_table(self, data: Dict[str, Any]) -> TableMigrationConfig:
        transformation_rules = [
            TransformationRule(
                source_column=rule['source_column'],
                target_column=rule.get('target_column', rule['source_column']),
                transformation=rule.get('transformation', 'identity'),
                required=bool(rule.get('required', False)),
            )
            for rule in data.get('transformation_rules') or []
        ]
        validation_rules = []
        for rule in data.get('validation_rules') or []:
            kind = rule.get('rule', '')
            if kind not in [k.value for k in ValidationRuleKind]:
                raise ConfigurationError(f"{data.get('target_table')}.{rule.get('column')}: "
                                         f"unknown validation rule kind '{kind}'")
            validation_rules.append(ValidationRule(
                column=rule['column'],
                rule=kind,
                error_message=rule.get('error_message', f"failed {kind} validation"),
                custom_validator=rule.get('custom_validator'),
            ))
        return TableMigrationConfig(
            source_table=data['source_table'],
            target_table=data.get('target_table', data['source_table']),
            transformation_rules=transformation_rules,
            validation_rules=validation_rules,
            contains_pii=bool(data.get('contains_pii', False)),
            healthcare_context=data.get('healthcare_context', ''),
            retention_years=int(data.get('retention_years', 7)),
            order_by=data.get('order_by', 'id'),
            source_filter=data.get('source_filter'),
            pii_columns=data.get('pii_columns') or DEFAULT_PII_COLUMNS,
        )

    @staticmethod
    def _resolve_path(value: str, base_dir: Path) -> Path:
        path = Path(value)
        return path if path.is_absolute() else base_dir / path


# Global configuration manager instance
_global_config_manager: Optional[ConfigManager] = None


def get_config_manager(plan_path: Optional[Union[str, Path]] = None) -> ConfigManager:
    """
    Get the global configuration manager instance.

    Args:
        plan_path: Migration plan path. Only used on first call.

    Returns:
        Global ConfigManager instance
    """
    global _global_config_manager

    if _global_config_manager is None:
        _global_config_manager = ConfigManager(plan_path)

    return _global_config_manager


def reset_config_manager() -> None:
    """Reset the global configuration manager instance."""
    global _global_config_manager
    _global_config_manager = None
