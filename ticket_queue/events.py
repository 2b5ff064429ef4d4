from __future__ import annotations

# State-change facts and the sinks that receive them.
#
# The engine publishes events only after a transaction has committed. Each
# event carries post-commit snapshots, never live references. What a sink does
# with them (MQTT broadcast, notifications, a test recorder) is not the
# engine's concern.

import queue
import threading
from dataclasses import dataclass, field
from typing import Any, Protocol, Union

from .domain import EntryStatus, Queue, QueueEntry
from .observability import get_logger

log = get_logger("events")


@dataclass(frozen=True)
class QueueUpdated:
    queue: Queue
    # created | admitted | transitioned | paused | resumed | closed | reopened |
    # reset | skipped | recalled | stock_adjusted | undone | deleted
    reason: str
    name: str = field(default="queue.updated", init=False)

    @property
    def queue_id(self) -> str:
        return self.queue.queue_id

    def to_message(self) -> dict[str, Any]:
        return {"type": self.name, "reason": self.reason, "queue": self.queue.to_dict()}


@dataclass(frozen=True)
class EntryCreated:
    queue: Queue
    entry: QueueEntry
    name: str = field(default="entry.created", init=False)

    @property
    def queue_id(self) -> str:
        return self.queue.queue_id

    def to_message(self) -> dict[str, Any]:
        return {"type": self.name, "queue": self.queue.to_dict(), "entry": self.entry.to_dict()}


@dataclass(frozen=True)
class EntryStatusChanged:
    queue: Queue
    entry: QueueEntry
    previous: EntryStatus
    name: str = field(default="entry.status_changed", init=False)

    @property
    def queue_id(self) -> str:
        return self.queue.queue_id

    def to_message(self) -> dict[str, Any]:
        return {
            "type": self.name,
            "previous": self.previous.value,
            "queue": self.queue.to_dict(),
            "entry": self.entry.to_dict(),
        }


@dataclass(frozen=True)
class StockDepleted:
    queue: Queue
    name: str = field(default="stock.depleted", init=False)

    @property
    def queue_id(self) -> str:
        return self.queue.queue_id

    def to_message(self) -> dict[str, Any]:
        return {"type": self.name, "queue": self.queue.to_dict()}


Event = Union[QueueUpdated, EntryCreated, EntryStatusChanged, StockDepleted]


class EventSink(Protocol):
    def publish(self, event: Event) -> None: ...


class NullSink:
    """Drops every event."""

    def publish(self, event: Event) -> None:
        return None


class RecordingSink:
    """Keeps every event in memory, in publish order."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._events: list[Event] = []

    def publish(self, event: Event) -> None:
        with self._lock:
            self._events.append(event)

    @property
    def events(self) -> list[Event]:
        with self._lock:
            return list(self._events)

    def of_type(self, event_type: type) -> list[Event]:
        return [e for e in self.events if isinstance(e, event_type)]

    def clear(self) -> None:
        with self._lock:
            self._events.clear()


class BackgroundSink:
    """Hands events to another sink from a daemon thread.

    `publish()` only enqueues, so a slow or failing downstream sink never
    delays the caller. Delivery order is preserved.
    """

    _STOP = object()

    def __init__(self, target: EventSink, *, maxsize: int = 10_000) -> None:
        self.target = target
        self._q: "queue.Queue[Any]" = queue.Queue(maxsize=maxsize)
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="event-dispatch", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 2.0) -> None:
        """Flush queued events and stop the dispatcher thread."""
        if self._thread is None:
            return
        self._q.put(self._STOP)
        self._thread.join(timeout=timeout)
        self._thread = None

    def publish(self, event: Event) -> None:
        try:
            self._q.put_nowait(event)
        except queue.Full:
            log.warning("event_dropped", event_name=event.name, queue_id=event.queue_id)

    def _run(self) -> None:
        while True:
            item = self._q.get()
            if item is self._STOP:
                return
            try:
                self.target.publish(item)
            except Exception:
                log.exception("event_delivery_failed", event_name=item.name, queue_id=item.queue_id)
