import json
import logging
import threading
from pathlib import Path
from typing import Protocol, runtime_checkable

from lockguard.models import AuditEvent

logger = logging.getLogger(__name__)


@runtime_checkable
class AuditSink(Protocol):
    def emit(self, event: AuditEvent) -> None:
        ...


class NullAuditSink:
    def emit(self, event: AuditEvent) -> None:
        pass


class MemoryAuditSink:
    """Keeps events in a list; handy for tests and the hammer script."""

    def __init__(self):
        self._lock = threading.Lock()
        self.events: list[AuditEvent] = []

    def emit(self, event: AuditEvent) -> None:
        with self._lock:
            self.events.append(event)


class JsonlAuditSink:
    def __init__(self, path: str):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._total_events = 0

    def emit(self, event: AuditEvent) -> None:
        with self._lock:
            self._total_events += 1
            record = event.model_dump(mode="json")
            record["event_id"] = self._total_events

            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(record) + "\n")


class FanoutAuditSink:
    def __init__(self, *sinks: AuditSink):
        self.sinks = list(sinks)

    def emit(self, event: AuditEvent) -> None:
        for sink in self.sinks:
            emit_safely(sink, event)


def emit_safely(sink: AuditSink, event: AuditEvent) -> None:
    # the state change already happened; a broken sink must not undo it
    try:
        sink.emit(event)
    except Exception:
        logger.exception("audit sink %s failed to record %s for %s", type(sink).__name__, event.kind, event.identifier)
