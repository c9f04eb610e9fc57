"""Audit sinks and in-process lifecycle events."""

from .audit_sink import CompositeAuditSink, JsonLinesAuditSink, LoggingAuditSink
from .events import EventEmitter, TableMigrationCompleted

__all__ = [
    'CompositeAuditSink',
    'EventEmitter',
    'JsonLinesAuditSink',
    'LoggingAuditSink',
    'TableMigrationCompleted',
]
