"""
Migration Events: Structured Output for External Collectors

The engine emits one event per notable transition. It never computes
metrics itself; collectors subscribe through an EventSink.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from tierstore.core.errors import TierStoreError
from tierstore.core.types import Timestamp
from tierstore.observability.logging import LogLevel, StructuredLogger


class EventKind(Enum):
    """Kinds of migration events."""
    CYCLE_STARTED = "cycle_started"
    CYCLE_COMPLETED = "cycle_completed"
    CYCLE_STOPPED = "cycle_stopped"
    CYCLE_FAILED = "cycle_failed"
    RECORD_MIGRATED = "record_migrated"
    RECORD_VANISHED = "record_vanished"
    RECORD_STALE = "record_stale"
    RECORD_FAILED = "record_failed"
    VERIFICATION_FAILED = "verification_failed"
    COLD_CLEANUP_FAILED = "cold_cleanup_failed"
    CURSOR_CORRUPTED = "cursor_corrupted"

    @property
    def level(self) -> LogLevel:
        return _LEVELS.get(self, LogLevel.INFO)


_LEVELS = {
    EventKind.RECORD_MIGRATED: LogLevel.DEBUG,
    EventKind.RECORD_VANISHED: LogLevel.DEBUG,
    EventKind.RECORD_STALE: LogLevel.INFO,
    EventKind.RECORD_FAILED: LogLevel.WARNING,
    EventKind.COLD_CLEANUP_FAILED: LogLevel.WARNING,
    EventKind.CURSOR_CORRUPTED: LogLevel.WARNING,
    EventKind.CYCLE_FAILED: LogLevel.ERROR,
    EventKind.VERIFICATION_FAILED: LogLevel.ERROR,
}


@dataclass(frozen=True)
class MigrationEvent:
    """One structured migration event."""
    kind: EventKind
    job_id: str
    cycle_id: str
    timestamp: Timestamp = field(default_factory=Timestamp.now)
    storage_key: Optional[str] = None
    error: Optional[TierStoreError] = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def is_error(self) -> bool:
        return self.kind.level >= LogLevel.ERROR

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "event": self.kind.value,
            "job_id": self.job_id,
            "cycle_id": self.cycle_id,
            "timestamp_nanos": self.timestamp.nanos,
        }
        if self.storage_key is not None:
            data["storage_key"] = self.storage_key
        if self.error is not None:
            data["error"] = self.error.to_dict()
        data.update(self.details)
        return data


class EventSink(ABC):
    """Consumer of migration events."""

    @abstractmethod
    def emit(self, event: MigrationEvent) -> None:
        ...


class LoggingEventSink(EventSink):
    """Renders events as structured log lines on `tierstore.events`."""

    __slots__ = ("_logger",)

    def __init__(self, logger_name: str = "tierstore.events") -> None:
        self._logger = StructuredLogger(logger_name)

    def emit(self, event: MigrationEvent) -> None:
        self._logger.log(event.kind.level, f"migration.{event.kind.value}", **event.to_dict())


class InMemoryEventSink(EventSink):
    """Collects events; used by tests and the CLI summary."""

    __slots__ = ("events",)

    def __init__(self) -> None:
        self.events: list[MigrationEvent] = []

    def emit(self, event: MigrationEvent) -> None:
        self.events.append(event)

    def of_kind(self, kind: EventKind) -> list[MigrationEvent]:
        return [e for e in self.events if e.kind is kind]

    def clear(self) -> None:
        self.events.clear()


class FanOutEventSink(EventSink):
    """Delivers each event to several sinks in order."""

    __slots__ = ("_sinks",)

    def __init__(self, *sinks: EventSink) -> None:
        self._sinks = sinks

    def emit(self, event: MigrationEvent) -> None:
        for sink in self._sinks:
            sink.emit(event)


__all__ = [
    "EventKind",
    "MigrationEvent",
    "EventSink",
    "LoggingEventSink",
    "InMemoryEventSink",
    "FanOutEventSink",
]
