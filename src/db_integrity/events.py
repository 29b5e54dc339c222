"""Structured integrity events and the sinks that receive them.

Every detection, generation, and reconciliation pass emits an
``IntegrityEvent``.  Components take a sink at construction instead of
reaching for a global logger, so tests can swap in ``RecordingEventSink``.

Usage:
    from db_integrity.events import EventCategory, RecordingEventSink, track_operation

    sink = RecordingEventSink()
    with track_operation(sink, EventCategory.DRIFT_DETECTION, "detect", "DriftDetector") as op:
        op.details["drifts"] = 3
    assert sink.events[-1].success
"""

import logging
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Protocol

from pydantic import BaseModel, Field


class EventCategory(str, Enum):
    DRIFT_DETECTION = "drift_detection"
    MIGRATION = "migration"
    RECONCILIATION = "reconciliation"
    INTROSPECTION = "introspection"
    PARSING = "parsing"


class EventLevel(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"
    CRITICAL = "critical"


_LOGGING_LEVELS = {
    EventLevel.DEBUG: logging.DEBUG,
    EventLevel.INFO: logging.INFO,
    EventLevel.WARN: logging.WARNING,
    EventLevel.ERROR: logging.ERROR,
    EventLevel.CRITICAL: logging.CRITICAL,
}


class IntegrityEvent(BaseModel):
    """One structured event emitted by an integrity pass."""

    category: EventCategory
    level: EventLevel = EventLevel.INFO
    operation: str
    component: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)
    duration_ms: float | None = None
    success: bool | None = None
    correlation_id: str | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class EventSink(Protocol):
    """Receiver for integrity events (storage is the receiver's concern)."""

    def emit(self, event: IntegrityEvent) -> None:
        ...


class LoggingEventSink:
    """Default sink: forwards events to stdlib logging."""

    def __init__(self, logger_name: str = "db_integrity.events") -> None:
        self._logger = logging.getLogger(logger_name)

    def emit(self, event: IntegrityEvent) -> None:
        self._logger.log(
            _LOGGING_LEVELS[event.level],
            "[%s] %s.%s: %s",
            event.category.value,
            event.component,
            event.operation,
            event.message,
            extra={"integrity_event": event.model_dump(mode="json")},
        )


class NullEventSink:
    """Sink that discards everything."""

    def emit(self, event: IntegrityEvent) -> None:
        pass


class RecordingEventSink:
    """Sink that keeps every event in memory, in emission order."""

    def __init__(self) -> None:
        self.events: list[IntegrityEvent] = []

    def emit(self, event: IntegrityEvent) -> None:
        self.events.append(event)

    def by_category(self, category: EventCategory) -> list[IntegrityEvent]:
        return [e for e in self.events if e.category == category]


class OperationContext:
    """Mutable state for an in-flight tracked operation."""

    def __init__(self, correlation_id: str) -> None:
        self.correlation_id = correlation_id
        self.details: dict[str, Any] = {}
        self.message: str | None = None
        self.level: EventLevel = EventLevel.INFO


@contextmanager
def track_operation(
    sink: EventSink,
    category: EventCategory,
    operation: str,
    component: str,
    correlation_id: str | None = None,
) -> Iterator[OperationContext]:
    """Time a block and emit exactly one event describing its outcome.

    The caller may set ``message``, ``level`` and ``details`` on the
    yielded context.  An exception inside the block is recorded as a
    failed event and re-raised unchanged.

    Args:
        sink: Event receiver.
        category: Event category.
        operation: Operation name (e.g. ``"detect"``).
        component: Emitting component name.
        correlation_id: Optional id tying related events together.  A new
            uuid4 is generated when omitted.
    """
    ctx = OperationContext(correlation_id or str(uuid.uuid4()))
    started = time.perf_counter()
    try:
        yield ctx
    except Exception as e:
        sink.emit(
            IntegrityEvent(
                category=category,
                level=EventLevel.ERROR,
                operation=operation,
                component=component,
                message=f"{operation} failed: {e}",
                details={**ctx.details, "error_type": type(e).__name__},
                duration_ms=(time.perf_counter() - started) * 1000,
                success=False,
                correlation_id=ctx.correlation_id,
            )
        )
        raise
    sink.emit(
        IntegrityEvent(
            category=category,
            level=ctx.level,
            operation=operation,
            component=component,
            message=ctx.message or f"{operation} completed",
            details=ctx.details,
            duration_ms=(time.perf_counter() - started) * 1000,
            success=True,
            correlation_id=ctx.correlation_id,
        )
    )
