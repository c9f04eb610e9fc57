"""
Monitoring module for the domain migration system.

This module provides run-wide progress tracking with a linear completion estimate.
"""

from .progress_tracker import ProgressTracker

__all__ = [
    'ProgressTracker'
]
