"""Tests for integrity events and operation tracking."""

import logging

import pytest

from db_integrity.events import (
    EventCategory,
    EventLevel,
    IntegrityEvent,
    LoggingEventSink,
    NullEventSink,
    RecordingEventSink,
    track_operation,
)


class TestTrackOperation:
    def test_success_emits_one_event(self) -> None:
        sink = RecordingEventSink()
        with track_operation(sink, EventCategory.MIGRATION, "generate", "Gen") as op:
            op.details["changes"] = 2
            op.message = "Generated 1"

        assert len(sink.events) == 1
        event = sink.events[0]
        assert event.success is True
        assert event.level == EventLevel.INFO
        assert event.message == "Generated 1"
        assert event.details == {"changes": 2}
        assert event.component == "Gen"
        assert event.duration_ms >= 0

    def test_default_message(self) -> None:
        sink = RecordingEventSink()
        with track_operation(sink, EventCategory.PARSING, "parse", "Parser"):
            pass
        assert sink.events[0].message == "parse completed"

    def test_failure_recorded_and_reraised(self) -> None:
        sink = RecordingEventSink()
        with pytest.raises(RuntimeError):
            with track_operation(sink, EventCategory.INTROSPECTION, "introspect", "I"):
                raise RuntimeError("catalog gone")

        event = sink.events[0]
        assert event.success is False
        assert event.level == EventLevel.ERROR
        assert event.message == "introspect failed: catalog gone"
        assert event.details["error_type"] == "RuntimeError"

    def test_correlation_id(self) -> None:
        sink = RecordingEventSink()
        with track_operation(sink, EventCategory.PARSING, "parse", "P", correlation_id="abc"):
            pass
        with track_operation(sink, EventCategory.PARSING, "parse", "P"):
            pass
        assert sink.events[0].correlation_id == "abc"
        assert sink.events[1].correlation_id


class TestSinks:
    def _event(self, level: EventLevel = EventLevel.WARN) -> IntegrityEvent:
        return IntegrityEvent(
            category=EventCategory.DRIFT_DETECTION,
            level=level,
            operation="detect",
            component="DriftDetector",
            message="Detected 2 drift(s)",
        )

    def test_logging_sink(self, caplog) -> None:
        with caplog.at_level(logging.WARNING, logger="db_integrity.events"):
            LoggingEventSink().emit(self._event())
        record = caplog.records[0]
        assert record.levelno == logging.WARNING
        assert "DriftDetector.detect: Detected 2 drift(s)" in record.getMessage()
        assert record.integrity_event["category"] == "drift_detection"

    def test_null_sink(self) -> None:
        NullEventSink().emit(self._event())

    def test_recording_sink_by_category(self) -> None:
        sink = RecordingEventSink()
        sink.emit(self._event())
        assert sink.by_category(EventCategory.DRIFT_DETECTION) == sink.events
        assert sink.by_category(EventCategory.MIGRATION) == []
