"""Shared pytest fixtures."""

import sys
from pathlib import Path

import pytest

# Make the repository root importable so tests can use tests.helpers
sys.path.insert(0, str(Path(__file__).parent.parent))

from domain_migrator.config.config_manager import reset_config_manager  # noqa: E402


@pytest.fixture(autouse=True)
def clean_migrator_environment(monkeypatch):
    """Isolate tests from MIGRATOR_* variables set in the developer's shell."""
    for name in ('MIGRATOR_BATCH_SIZE', 'MIGRATOR_MAX_RETRIES', 'MIGRATOR_RETRY_DELAY_MS',
                 'MIGRATOR_VALIDATION_ENABLED', 'MIGRATOR_DRY_RUN', 'MIGRATOR_PROVENANCE_MARKER',
                 'MIGRATOR_MAX_PARALLEL_SERVICES', 'MIGRATOR_CONFIG_PATH', 'MIGRATOR_ENCRYPTION_KEY'):
        monkeypatch.delenv(name, raising=False)
    reset_config_manager()
    yield
    reset_config_manager()

