"""Routing events for observability.

Every routing decision and fallback chain transition is emitted as a
RoutingEvent, so a failure can always be attributed to a specific model
rather than just "the task failed".

Unlike a module-level event list, an EventLog is an ordinary object: one
instance is created per service (or per test) and passed to the components
that emit into it.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger("health_router.events")


class RoutingEventType(Enum):
    """Types of events emitted by the router and fallback chains."""

    # Router
    ROUTE_DECIDED = "route_decided"
    ROUTE_LAST_RESORT = "route_last_resort"

    # Fallback chain
    ATTEMPT_STARTED = "attempt_started"
    ATTEMPT_FAILED = "attempt_failed"
    ATTEMPT_SUCCEEDED = "attempt_succeeded"
    CHAIN_SUCCEEDED = "chain_succeeded"
    CHAIN_EXHAUSTED = "chain_exhausted"

    # Ensemble
    ENSEMBLE_COMPLETED = "ensemble_completed"


@dataclass
class RoutingEvent:
    """A single observable routing event."""

    event_type: RoutingEventType
    data: Dict[str, Any]
    model_id: Optional[str] = None
    attempt: Optional[int] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


EventObserver = Callable[[RoutingEvent], None]


class EventLog:
    """In-memory, bounded record of routing events.

    Args:
        max_events: Oldest events are dropped beyond this count.
    """

    def __init__(self, max_events: int = 1000):
        self.max_events = max_events
        self._events: List[RoutingEvent] = []

    def emit(
        self,
        event_type: RoutingEventType,
        data: Dict[str, Any],
        model_id: Optional[str] = None,
        attempt: Optional[int] = None,
    ) -> RoutingEvent:
        """Record and log an event.

        Returns:
            The emitted RoutingEvent
        """
        event = RoutingEvent(
            event_type=event_type,
            data=data,
            model_id=model_id,
            attempt=attempt,
        )
        self.record(event)
        return event

    def record(self, event: RoutingEvent) -> None:
        """Record an already-built event."""
        self._events.append(event)
        if len(self._events) > self.max_events:
            del self._events[: len(self._events) - self.max_events]

        logger.info(
            "Routing event: %s model=%s attempt=%s data=%s",
            event.event_type.value,
            event.model_id,
            event.attempt,
            event.data,
        )

    def get_events(
        self, event_type: Optional[RoutingEventType] = None
    ) -> List[RoutingEvent]:
        """Get emitted events in emission order, optionally filtered by type."""
        if event_type is None:
            return list(self._events)
        return [e for e in self._events if e.event_type == event_type]

    def clear(self) -> None:
        self._events.clear()

    def __len__(self) -> int:
        return len(self._events)
