"""
Audit sinks for migration lifecycle events.

LoggingAuditSink writes events to a named logger; JsonLinesAuditSink appends one
JSON object per line to a file, which `migrate status` reads back.
"""

import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..interfaces import AuditSinkInterface
from ..models import AuditEvent


def _json_default(value: Any) -> Any:
    if hasattr(value, 'isoformat'):
        return value.isoformat()
    if hasattr(value, 'value'):
        return value.value
    return str(value)


class LoggingAuditSink(AuditSinkInterface):
    """Audit sink writing each event as one INFO record on the 'domain_migrator.audit' logger."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger('domain_migrator.audit')

    def log(self, event: AuditEvent) -> None:
        self.logger.info(f"{event.action} {event.resource_type}/{event.resource_id} "
                         f"correlation_id={event.correlation_id} "
                         f"details={json.dumps(event.details, default=_json_default)}")


class JsonLinesAuditSink(AuditSinkInterface):
    """Audit sink appending events to a JSON-lines file."""

    def __init__(self, path: Union[str, Path]):
        self.logger = logging.getLogger(__name__)
        self.path = Path(path)
        self._lock = threading.Lock()

    def log(self, event: AuditEvent) -> None:
        line = json.dumps(event.to_dict(), default=_json_default)
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, 'a', encoding='utf-8') as file:
                file.write(line + '\n')
        self.logger.debug(f"Audited {event.action} for {event.resource_id} to {self.path}")

    def read_events(self) -> List[Dict[str, Any]]:
        """Read every event in file order; unparseable lines are skipped with a warning."""
        if not self.path.exists():
            return []
        events = []
        with open(self.path, 'r', encoding='utf-8') as file:
            for line_number, line in enumerate(file, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    events.append(json.loads(line))
                except json.JSONDecodeError as e:
                    self.logger.warning(f"Skipping malformed audit line {line_number} in {self.path}: {e}")
        return events

    def last_event(self) -> Optional[Dict[str, Any]]:
        events = self.read_events()
        return events[-1] if events else None


class CompositeAuditSink(AuditSinkInterface):
    """Fans one event out to several sinks."""

    def __init__(self, sinks: List[AuditSinkInterface]):
        self.sinks = list(sinks)

    def log(self, event: AuditEvent) -> None:
        for sink in self.sinks:
            sink.log(event)
