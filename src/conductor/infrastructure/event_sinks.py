"""Event sink implementations."""

from dataclasses import dataclass, field
from typing import Any

from conductor.domain.ports.event_sink import EventSink, OrchestrationEvent
from conductor.infrastructure.logger import get_logger

logger = get_logger(__name__)


class NullEventSink(EventSink):
    """Drops every signal."""

    def emit(self, event: OrchestrationEvent, payload: dict[str, Any]) -> None:
        pass


class LoggingEventSink(EventSink):
    """Forwards signals to the structured log at DEBUG level."""

    def emit(self, event: OrchestrationEvent, payload: dict[str, Any]) -> None:
        logger.debug("orchestration_event", signal=event.value, **payload)


@dataclass
class RecordedEvent:
    event: OrchestrationEvent
    payload: dict[str, Any]


@dataclass
class RecordingEventSink(EventSink):
    """Keeps every signal in order, for inspection."""

    events: list[RecordedEvent] = field(default_factory=list)

    def emit(self, event: OrchestrationEvent, payload: dict[str, Any]) -> None:
        self.events.append(RecordedEvent(event=event, payload=dict(payload)))

    def names(self) -> list[OrchestrationEvent]:
        return [e.event for e in self.events]

    def of(self, event: OrchestrationEvent) -> list[dict[str, Any]]:
        """Payloads of every recorded occurrence of ``event``."""
        return [e.payload for e in self.events if e.event == event]

    def clear(self) -> None:
        self.events.clear()
