"""
Project lifecycle events.

Background operations never hand mutable state back to the control
surface; they publish immutable ``ProjectEvent`` records instead. A
control surface either subscribes a callback or drains the bus queue on
its own thread. The queue keeps only the newest ``max_queued`` events:

    bus = EventBus()
    bus.subscribe(lambda e: print(e.kind, e.status))
    ...
    for event in bus.drain():
        refresh_row(event.project_id, event.status)
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, UTC
from enum import Enum
from threading import Lock
from typing import Any, Callable, Optional

from .models import RunStatus

logger = logging.getLogger("dockpilot.events")


class EventKind(str, Enum):
    STATUS = "status"
    LOG = "log"
    PORT = "port"
    REGISTERED = "registered"
    DELETED = "deleted"


@dataclass(frozen=True)
class ProjectEvent:
    """Immutable record of something that happened to a project."""
    project_id: str
    kind: EventKind
    status: Optional[RunStatus] = None
    run_handle: Optional[str] = None
    message: str = ""
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "project_id": self.project_id,
            "kind": self.kind.value,
            "status": self.status.value if self.status else None,
            "run_handle": self.run_handle,
            "message": self.message,
            "data": dict(self.data),
            "timestamp": self.timestamp.isoformat(),
        }


EventHandler = Callable[[ProjectEvent], None]


class EventBus:
    """Fan-out of project events to subscribers and a bounded drainable queue.

    When nobody drains, the oldest events are dropped once *max_queued* is
    reached. ``max_queued=0`` disables the queue.
    """

    def __init__(self, max_queued: int = 1000):
        self._subscribers: list[EventHandler] = []
        self._lock = Lock()
        self._queue: Optional[deque[ProjectEvent]] = deque(maxlen=max_queued) if max_queued > 0 else None

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        """Register *handler*; returns a function that unsubscribes it."""
        with self._lock:
            self._subscribers.append(handler)

        def unsubscribe() -> None:
            with self._lock:
                if handler in self._subscribers:
                    self._subscribers.remove(handler)

        return unsubscribe

    def publish(self, event: ProjectEvent) -> None:
        with self._lock:
            if self._queue is not None:
                self._queue.append(event)
            handlers = list(self._subscribers)
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception("Event handler failed for %s", event.kind.value)

    def drain(self) -> list[ProjectEvent]:
        """Return and remove every queued event, oldest first."""
        with self._lock:
            if self._queue is None:
                return []
            events = list(self._queue)
            self._queue.clear()
        return events

    def pending(self) -> int:
        with self._lock:
            return len(self._queue) if self._queue is not None else 0
