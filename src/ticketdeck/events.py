"""Event manager for change notifications and user-visible notices."""

from __future__ import annotations

import asyncio
import json
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

DEFAULT_HISTORY_SIZE = 200


class EventType(str, Enum):
    """Types of events that can be emitted."""

    CACHE_UPDATED = "cache_updated"
    REFRESH_STARTED = "refresh_started"
    REFRESH_COMPLETED = "refresh_completed"
    STAGE_FAILED = "stage_failed"
    DETAIL_LOADED = "detail_loaded"
    MUTATION_PENDING = "mutation_pending"
    MUTATION_COMMITTED = "mutation_committed"
    MUTATION_ROLLED_BACK = "mutation_rolled_back"
    BULK_COMPLETED = "bulk_completed"
    SNAPSHOT_SAVED = "snapshot_saved"
    NOTICE = "notice"
    HEARTBEAT = "heartbeat"


class NoticeLevel(str, Enum):
    """Severity of a user-visible notice."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


def _now() -> str:
    return datetime.now(UTC).isoformat()


@dataclass
class Event:
    """An event delivered to subscribers and kept in the recent history."""

    event_type: EventType
    data: dict[str, Any]
    timestamp: str = field(default_factory=_now)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.event_type.value, "data": self.data, "timestamp": self.timestamp}

    def to_sse(self) -> str:
        """Convert to SSE format."""
        return f"event: {self.event_type.value}\ndata: {json.dumps(self.data)}\n\n"


@dataclass
class Subscriber:
    """A subscriber to the event stream.

    The queue belongs to the event loop that was running when the subscriber
    was created; events emitted from other threads are handed over through
    that loop.
    """

    id: str
    queue: asyncio.Queue[Event]
    loop: asyncio.AbstractEventLoop | None = None
    event_types: frozenset[EventType] | None = None  # None means all types

    @classmethod
    def create(cls, event_types: frozenset[EventType] | None = None) -> Subscriber:
        """Create a new subscriber bound to the running event loop, if any."""
        try:
            loop: asyncio.AbstractEventLoop | None = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        return cls(id=str(uuid4()), queue=asyncio.Queue(), loop=loop, event_types=event_types)

    def wants(self, event: Event) -> bool:
        if event.event_type is EventType.HEARTBEAT:
            return True
        return self.event_types is None or event.event_type in self.event_types

    def deliver(self, event: Event) -> None:
        if self.loop is None:
            self.queue.put_nowait(event)
            return
        try:
            self.loop.call_soon_threadsafe(self.queue.put_nowait, event)
        except RuntimeError:
            # Event loop already closed; the subscriber is gone
            pass


class EventManager:
    """Fans events out to SSE subscribers and keeps a short history.

    Emitted from the control thread, read from API handlers on the server's
    event loop, so the subscriber table is guarded by a lock.
    """

    def __init__(
        self, history_size: int = DEFAULT_HISTORY_SIZE, heartbeat_interval: int = 30
    ) -> None:
        self._subscribers: dict[str, Subscriber] = {}
        self._lock = threading.Lock()
        self.recent: deque[Event] = deque(maxlen=history_size)
        self.heartbeat_interval = heartbeat_interval

    def subscribe(self, event_types: frozenset[EventType] | None = None) -> Subscriber:
        """Subscribe a client to events.

        Args:
            event_types: Optional filter. None means every event type.

        Returns:
            Subscriber instance for receiving events.
        """
        subscriber = Subscriber.create(event_types)
        with self._lock:
            self._subscribers[subscriber.id] = subscriber
        return subscriber

    def unsubscribe(self, subscriber_id: str) -> None:
        """Unsubscribe a client from events.

        Args:
            subscriber_id: ID of the subscriber to remove.
        """
        with self._lock:
            self._subscribers.pop(subscriber_id, None)

    def emit(self, event: Event) -> None:
        """Record an event and hand it to every matching subscriber.

        Args:
            event: Event to emit.
        """
        with self._lock:
            if event.event_type is not EventType.HEARTBEAT:
                self.recent.append(event)
            subscribers = list(self._subscribers.values())
        for subscriber in subscribers:
            if subscriber.wants(event):
                subscriber.deliver(event)

    @property
    def subscriber_count(self) -> int:
        """Get the number of active subscribers."""
        with self._lock:
            return len(self._subscribers)

    def history(self, event_type: EventType | None = None) -> list[Event]:
        with self._lock:
            events = list(self.recent)
        if event_type is None:
            return events
        return [e for e in events if e.event_type is event_type]

    def notices(self) -> list[Event]:
        return self.history(EventType.NOTICE)

    # Convenience methods for emitting specific event types

    def emit_cache_updated(self, source: str, keys: list[str], version: int) -> None:
        """Emit a cache_updated event."""
        self.emit(
            Event(
                event_type=EventType.CACHE_UPDATED,
                data={"source": source, "keys": keys, "version": version},
            )
        )

    def emit_refresh_started(self, cycle_id: int) -> None:
        self.emit(Event(event_type=EventType.REFRESH_STARTED, data={"cycle_id": cycle_id}))

    def emit_refresh_completed(self, cycle_id: int, failed_stages: list[str]) -> None:
        self.emit(
            Event(
                event_type=EventType.REFRESH_COMPLETED,
                data={
                    "cycle_id": cycle_id,
                    "ok": not failed_stages,
                    "failed_stages": failed_stages,
                },
            )
        )

    def emit_stage_failed(self, cycle_id: int, stage: str, error: str) -> None:
        self.emit(
            Event(
                event_type=EventType.STAGE_FAILED,
                data={"cycle_id": cycle_id, "stage": stage, "error": error},
            )
        )

    def emit_detail_loaded(self, key: str) -> None:
        self.emit(Event(event_type=EventType.DETAIL_LOADED, data={"key": key}))

    def emit_mutation(self, event_type: EventType, mutation: dict[str, Any]) -> None:
        """Emit one of the mutation lifecycle events."""
        self.emit(Event(event_type=event_type, data=mutation))

    def emit_bulk_completed(self, summary: dict[str, Any]) -> None:
        self.emit(Event(event_type=EventType.BULK_COMPLETED, data=summary))

    def emit_snapshot_saved(self, project: str) -> None:
        self.emit(Event(event_type=EventType.SNAPSHOT_SAVED, data={"project": project}))

    def notify(self, message: str, level: NoticeLevel = NoticeLevel.INFO, **context: Any) -> None:
        """Emit a user-visible notice."""
        self.emit(
            Event(
                event_type=EventType.NOTICE,
                data={"level": level.value, "message": message, **context},
            )
        )

    def create_heartbeat_event(self) -> Event:
        """Create a heartbeat event."""
        return Event(event_type=EventType.HEARTBEAT, data={"timestamp": _now()})
