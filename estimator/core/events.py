"""Event system for Server-Sent Events (SSE)."""

import asyncio
import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable
from uuid import UUID


@dataclass
class Event:
    """An SSE event."""

    event_type: str
    data: dict[str, Any]
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_json(self) -> str:
        """Serialize the payload for an SSE data field."""
        return json.dumps({**self.data, "timestamp": self.timestamp.isoformat()})


class EventBus:
    """Fan-out of estimate session events to streaming subscribers.

    Publishing never awaits: a mutation has queued its totals before the
    request that triggered it returns.
    """

    def __init__(self):
        self._subscribers: dict[UUID, list[asyncio.Queue[Event]]] = {}

    def subscribe(self, session_id: UUID) -> asyncio.Queue[Event]:
        """Subscribe to events for a session."""
        queue: asyncio.Queue[Event] = asyncio.Queue()
        self._subscribers.setdefault(session_id, []).append(queue)
        return queue

    def unsubscribe(self, session_id: UUID, queue: asyncio.Queue[Event] | None = None) -> None:
        """Drop one subscriber queue, or all of them when none is given."""
        if queue is None:
            self._subscribers.pop(session_id, None)
            return
        queues = self._subscribers.get(session_id, [])
        if queue in queues:
            queues.remove(queue)
        if not queues:
            self._subscribers.pop(session_id, None)

    def subscriber_count(self, session_id: UUID) -> int:
        return len(self._subscribers.get(session_id, []))

    def publish(self, session_id: UUID, event: Event) -> None:
        """Publish an event for a session."""
        for queue in self._subscribers.get(session_id, []):
            queue.put_nowait(event)

    def listener_for(self, session_id: UUID) -> Callable[[str, dict[str, Any]], None]:
        """Adapt session listener callbacks into published events."""

        def forward(event_type: str, data: dict[str, Any]) -> None:
            self.publish(session_id, Event(event_type=event_type, data=data))

        return forward


# Singleton instance
_event_bus: EventBus | None = None


def get_event_bus() -> EventBus:
    """Get the event bus singleton."""
    global _event_bus
    if _event_bus is None:
        _event_bus = EventBus()
    return _event_bus
