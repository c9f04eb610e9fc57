"""
Run-wide progress tracking for migrations.

ProgressTracker owns the single MigrationProgress of a run. Service workers update
it concurrently; readers get copies with the linear completion estimate filled in.
"""

import copy
import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from ..interfaces import ProgressTrackerInterface
from ..models import MigrationProgress, ProgressStatus
from ..utils import utc_now


class ProgressTracker(ProgressTrackerInterface):
    """
    Thread-safe MigrationProgress holder.

    While the run is in progress and at least one record has migrated,
    estimated_completion = start_time + (elapsed / migrated_records) * total_records.
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self.logger = logging.getLogger(__name__)
        self._clock = clock
        self._lock = threading.Lock()
        self._progress = MigrationProgress()

    def start(self, total_phases: int, total_tables: int) -> None:
        with self._lock:
            self._progress = MigrationProgress(
                total_phases=total_phases,
                total_tables=total_tables,
                start_time=self._clock(),
                status=ProgressStatus.IN_PROGRESS,
            )
        self.logger.info(f"Migration started: {total_phases} phases, {total_tables} tables")

    def set_phase(self, phase: int) -> None:
        with self._lock:
            self._progress.current_phase = phase

    def add_total_records(self, count: int) -> None:
        with self._lock:
            self._progress.total_records += count

    def record_migrated(self, count: int) -> None:
        with self._lock:
            self._progress.migrated_records += count

    def table_completed(self) -> None:
        with self._lock:
            self._progress.completed_tables += 1

    def finish(self, status: ProgressStatus) -> None:
        """Set the terminal status; a cancelled or failed run is not overwritten by a later finish."""
        with self._lock:
            if self._progress.status in (ProgressStatus.CANCELLED, ProgressStatus.FAILED):
                return
            self._progress.status = status
        self.logger.info(f"Migration finished with status {status.value}")

    @property
    def status(self) -> ProgressStatus:
        with self._lock:
            return self._progress.status

    def snapshot(self) -> MigrationProgress:
        with self._lock:
            progress = copy.copy(self._progress)
        progress.estimated_completion = self._estimate_completion(progress)
        return progress

    def get_current_metrics(self) -> Dict[str, Any]:
        progress = self.snapshot()
        metrics = progress.to_dict()
        if progress.start_time:
            elapsed_seconds = (self._clock() - progress.start_time).total_seconds()
            metrics['elapsed_seconds'] = elapsed_seconds
            metrics['records_per_second'] = (
                progress.migrated_records / elapsed_seconds if elapsed_seconds > 0 else 0
            )
        return metrics

    def _estimate_completion(self, progress: MigrationProgress) -> Optional[datetime]:
        if progress.status != ProgressStatus.IN_PROGRESS or progress.migrated_records <= 0:
            return None
        if progress.start_time is None:
            return None
        elapsed = self._clock() - progress.start_time
        return progress.start_time + (elapsed / progress.migrated_records) * progress.total_records
