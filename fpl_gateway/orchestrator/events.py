"""
Source coordination events.

Listeners registered on the coordinator receive these events synchronously,
in registration order. A failing listener is logged and never interrupts
data fetching.
"""

import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceEvent:
    """Base class for coordinator events."""

    source: str
    timestamp: float = field(default_factory=time.time, kw_only=True)

    @property
    def event_type(self) -> str:
        return "source_event"

    def to_dict(self) -> dict:
        return {"event_type": self.event_type, **asdict(self)}


@dataclass(frozen=True)
class SourceSwitched(SourceEvent):
    """An operation was served by a different source than last time.

    Attributes:
        source: Source that served the operation
        previous: Source that served it before (None on first use)
        operation: Abstract operation name
        reason: Why the switch happened (fallback, manual, recovered)
    """

    previous: Optional[str] = None
    operation: Optional[str] = None
    reason: str = "fallback"

    @property
    def event_type(self) -> str:
        return "source_switched"


@dataclass(frozen=True)
class SourceStatusUpdated(SourceEvent):
    """A source's availability changed."""

    available: bool = True
    error_count: int = 0
    next_available_at: Optional[float] = None

    @property
    def event_type(self) -> str:
        return "source_status_updated"


@dataclass(frozen=True)
class SourceRateLimited(SourceEvent):
    """A source reported or reached its quota."""

    next_available_at: Optional[float] = None
    day_exhausted: bool = False

    @property
    def event_type(self) -> str:
        return "source_rate_limited"


@dataclass(frozen=True)
class CircuitOpened(SourceEvent):
    """A source's circuit breaker moved to OPEN."""

    next_attempt_at: Optional[float] = None

    @property
    def event_type(self) -> str:
        return "circuit_opened"


EventListener = Callable[[SourceEvent], None]


class EventPublisher:
    """
    Minimal observer registry.

    Example:
        >>> publisher = EventPublisher()
        >>> publisher.add_listener(lambda event: print(event.event_type))
        >>> publisher.publish(CircuitOpened(source="rapidapi_fpl"))
        circuit_opened
    """

    def __init__(self, history_size: int = 20):
        self._listeners: List[EventListener] = []
        self._history: List[SourceEvent] = []
        self._history_size = history_size

    def add_listener(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: EventListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def publish(self, event: SourceEvent) -> None:
        self._history.append(event)
        del self._history[:-self._history_size]

        logger.debug(f"Event {event.event_type}: {event.source}")
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(
                    f"Event listener failed for {event.event_type}: {e}",
                    extra={"source": event.source},
                )

    def recent(self, event_type: Optional[str] = None, limit: int = 10) -> List[dict]:
        """Recent events as dicts, newest last."""
        events = [
            e for e in self._history if event_type is None or e.event_type == event_type
        ]
        return [e.to_dict() for e in events[-limit:]]
