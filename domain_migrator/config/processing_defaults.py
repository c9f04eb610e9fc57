"""
Centralized configuration defaults for migration runs.

This module defines operational configuration constants used throughout the system.
These are processing infrastructure settings (not service-specific), shared across all
migration plans. Plan files, MIGRATOR_* environment variables and CLI arguments can
override these defaults at runtime.
"""


class ProcessingDefaults:
    """
    Centralized operational configuration for migration runs.

    All values are defaults that can be overridden:
    - in the plan file 'processing' section
    - via MIGRATOR_* environment variables (MIGRATOR_BATCH_SIZE=500)
    - via CLI arguments (migrate run --dry-run, migrate --log-level DEBUG)
    """

    # Batch processing
    BATCH_SIZE = 1000  # Rows per read/transform/validate/write unit
    VALIDATION_ENABLED = True
    DRY_RUN = False

    # Connector retry (delay = RETRY_DELAY_MS * 2 ** attempt)
    MAX_RETRIES = 3
    RETRY_DELAY_MS = 1000

    # Provenance stamped into migration_source; rollback deletes by this marker
    PROVENANCE_MARKER = "monolith"

    # Connection pooling
    POOL_SIZE = 5  # Maximum pooled connections per store
    CONNECTION_TIMEOUT = 30  # Connection timeout in seconds
    POOL_ACQUIRE_TIMEOUT = 60  # Seconds to wait for a free pooled connection

    # Files
    PLAN_PATH = "config/migration_plan.yaml"

    # Logging
    LOG_LEVEL = "WARNING"  # Default logging level (CRITICAL, ERROR, WARNING, INFO, DEBUG)

    @classmethod
    def to_dict(cls) -> dict:
        """
        Export all defaults as a dictionary.

        Returns:
            Dictionary of all ProcessingDefaults class attributes.
        """
        return {
            key: getattr(cls, key)
            for key in dir(cls)
            if not key.startswith('_') and key.isupper()
        }

    @classmethod
    def log_summary(cls, logger=None):
        """
        Log a summary of all operational defaults.

        Args:
            logger: Optional logger instance. If None, prints to stdout.
        """
        config_dict = cls.to_dict()
        summary = "\n".join([f"  {key}: {value}" for key, value in sorted(config_dict.items())])
        message = f"Processing Configuration Defaults:\n{summary}"

        if logger:
            logger.info(message)
        else:
            print(message)
