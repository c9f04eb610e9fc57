"""
Processing module for the domain migration system.

This module provides the MigrationOrchestrator, which runs service plans phase by
phase with concurrent services, batched tables, retry, cancellation and rollback.
"""

from .orchestrator import MigrationOrchestrator

__all__ = [
    'MigrationOrchestrator'
]
