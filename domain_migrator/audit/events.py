"""
In-process event emitter for lifecycle notifications.

Listeners are plain callables registered per event name. A failing listener is
logged and does not stop delivery to the others or affect the emitter.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List


# Event names
MAPPING_ANALYSIS_STARTED = 'mapping_analysis_started'
MAPPING_ANALYSIS_COMPLETED = 'mapping_analysis_completed'
LEARNING_UPDATED = 'learning_updated'
BATCH_PROCESSING = 'batch_processing'
TABLE_MIGRATION_COMPLETED = 'table_migration_completed'

# Audit actions
MIGRATION_STARTED = 'MIGRATION_STARTED'
MIGRATION_COMPLETED = 'MIGRATION_COMPLETED'
MIGRATION_FAILED = 'MIGRATION_FAILED'
MIGRATION_ROLLBACK = 'MIGRATION_ROLLBACK'
MIGRATION_CANCELLED = 'MIGRATION_CANCELLED'


@dataclass
class TableMigrationCompleted:
    """Payload emitted after each table finishes (completed or partial)."""
    service_name: str
    table_name: str
    status: str
    total_records: int
    migrated_records: int
    failed_records: int
    duration_ms: float
    phase: int
    healthcare_context: str
    contains_pii: bool
    metadata: Dict[str, Any] = field(default_factory=dict)


class EventEmitter:
    """Thread-safe publish/subscribe by event name."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._listeners: Dict[str, List[Callable[[Any], None]]] = {}

    def on(self, event_name: str, listener: Callable[[Any], None]) -> None:
        with self._lock:
            self._listeners.setdefault(event_name, []).append(listener)

    def off(self, event_name: str, listener: Callable[[Any], None]) -> None:
        with self._lock:
            listeners = self._listeners.get(event_name, [])
            if listener in listeners:
                listeners.remove(listener)

    def emit(self, event_name: str, payload: Any = None) -> int:
        """
        Deliver a payload to every listener of the event.

        Returns:
            Number of listeners that received the payload without raising
        """
        with self._lock:
            listeners = list(self._listeners.get(event_name, []))

        delivered = 0
        for listener in listeners:
            try:
                listener(payload)
                delivered += 1
            except Exception:
                self.logger.exception(f"Listener for '{event_name}' raised")
        return delivered

    def listener_count(self, event_name: str) -> int:
        with self._lock:
            return len(self._listeners.get(event_name, []))
