"""Worker events and observer broadcast.

A worker publishes WorkerEvents to every attached observer (a chat window,
a floating mini window, a persistence hook). Observers have their own
lifetime: a window can close mid-stream. ObserverRegistry drops such sinks
during broadcast instead of failing the whole publish.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from coworker.logging import get_logger

log = get_logger("observers")


class EventKind(Enum):
    """Types of events a worker emits to its observers."""

    STREAM_START = "stream-start"
    STREAM_TOKEN = "stream-token"
    PROGRESS = "progress"
    HISTORY_UPDATE = "history-update"
    ERROR = "error"
    COMPLETE = "complete"
    CONFIRM_REQUEST = "confirm-request"


@dataclass(frozen=True, slots=True)
class WorkerEvent:
    """Transport-agnostic event emitted by a worker.

    Payload by kind:
        STREAM_START: None
        STREAM_TOKEN: str
        PROGRESS: dict with ``type`` and ``message``
        HISTORY_UPDATE: list of serialized messages
        ERROR: str
        COMPLETE: None
        CONFIRM_REQUEST: dict with ``id``, ``tool``, ``description``, ``input``
    """

    kind: EventKind
    session_id: str
    payload: Any = None
    timestamp: float = field(default_factory=time.time)


class ObserverClosedError(Exception):
    """Raised by an observer's send() when it has gone away mid-delivery."""


@runtime_checkable
class Observer(Protocol):
    """A destination for worker events."""

    def send(self, event: WorkerEvent) -> None:
        """Deliver one event. Must not block."""
        ...

    def is_destroyed(self) -> bool:
        """True once the observer can no longer receive events."""
        ...


class ObserverRegistry:
    """Set of observers with idempotent add/remove and dead-sink filtering."""

    def __init__(self) -> None:
        self._observers: list[Observer] = []

    def add(self, observer: Observer) -> bool:
        """Attach an observer. Returns False if it was already attached."""
        if any(o is observer for o in self._observers):
            return False
        self._observers.append(observer)
        return True

    def remove(self, observer: Observer) -> bool:
        """Detach an observer. Returns False if it was not attached."""
        for i, o in enumerate(self._observers):
            if o is observer:
                del self._observers[i]
                return True
        return False

    def __len__(self) -> int:
        return len(self._observers)

    def __contains__(self, observer: object) -> bool:
        return any(o is observer for o in self._observers)

    def snapshot(self) -> list[Observer]:
        return list(self._observers)

    def publish(self, event: WorkerEvent) -> int:
        """Deliver an event to every live observer.

        Destroyed observers, and ones that raise ObserverClosedError, are
        removed. Any other exception from an observer is logged and the
        broadcast continues.

        Returns:
            Number of observers the event was delivered to.
        """
        delivered = 0
        for observer in list(self._observers):
            if observer.is_destroyed():
                self.remove(observer)
                log.debug("Dropped destroyed observer %r", observer)
                continue
            try:
                observer.send(event)
            except ObserverClosedError:
                self.remove(observer)
                log.debug("Observer %r closed during delivery", observer)
                continue
            except Exception:
                log.exception("Observer %r failed on %s", observer, event.kind.value)
                continue
            delivered += 1
        return delivered

    def clear(self) -> None:
        self._observers.clear()


class QueueObserver:
    """Observer that buffers events in an asyncio.Queue.

    Used by the CLI runner and by tests to consume events in order.
    """

    def __init__(self) -> None:
        self.queue: asyncio.Queue[WorkerEvent] = asyncio.Queue()
        self.events: list[WorkerEvent] = []
        self._closed = False

    def send(self, event: WorkerEvent) -> None:
        if self._closed:
            raise ObserverClosedError("queue observer closed")
        self.events.append(event)
        self.queue.put_nowait(event)

    def is_destroyed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True

    def of_kind(self, kind: EventKind) -> list[WorkerEvent]:
        return [e for e in self.events if e.kind is kind]

    def kinds(self) -> list[EventKind]:
        return [e.kind for e in self.events]
