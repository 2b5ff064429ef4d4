from __future__ import annotations

# In-memory persistence for queues and their entries.
#
# Layout mirrors two tables:
#   queues(queue_id, kind, status, sequence_counter, cycle, stock_capacity, stock_remaining)
#   queue_entries(entry_id, queue_id, cycle, sequence_number, status, quantity_allocated,
#                 assigned_handler)  UNIQUE(queue_id, cycle, sequence_number)
#
# Locking:
# - `_lock` (registry) guards the dicts themselves and is only held for short
#   copy-in/copy-out sections.
# - each queue has its own lock. A `Transaction` holds it for the whole
#   read-modify-write and works on private copies; nothing is visible to other
#   threads until `commit()`.
#
# A transaction copies only the entries it asks for, so the time a queue lock
# is held does not grow with the queue's history.

import threading
from typing import Iterable

from .domain import Queue, QueueEntry
from .errors import EntryFinalized, EntryNotFound, LockTimeout, QueueNotFound


class Transaction:
    """A unit of work against one queue and its entries.

    Use as a context manager: a clean exit commits, an exception rolls back
    (the staged copies are discarded). The queue lock is released either way.
    """

    def __init__(self, store: InMemoryStore, queue: Queue, lock: threading.Lock) -> None:
        self._store = store
        self._lock = lock
        self.queue = queue
        self._entries: dict[str, QueueEntry] = {}
        self._handlers_at_start: dict[str, str | None] = {}
        self._all_loaded = False
        self._dirty: set[str] = set()
        self._deleted: set[str] = set()
        self._dropped = False
        self._closed = False

    # -------------------- entry access --------------------

    def _track(self, entries: Iterable[QueueEntry]) -> None:
        for entry in entries:
            if entry.entry_id in self._entries or entry.entry_id in self._deleted:
                continue
            self._entries[entry.entry_id] = entry
            self._handlers_at_start[entry.entry_id] = entry.assigned_handler

    def entries(self) -> list[QueueEntry]:
        """Working view of all of this queue's entries, in queue order."""
        if not self._all_loaded:
            self._track(self._store._entries_of(self.queue.queue_id))
            self._all_loaded = True
        return sorted(self._entries.values(), key=lambda e: e.position)

    def open_entries(self) -> list[QueueEntry]:
        """Working view of the entries that are not completed or cancelled."""
        if not self._all_loaded:
            self._track(self._store._open_entries_of(self.queue.queue_id))
        return sorted(
            (e for e in self._entries.values() if not e.is_terminal),
            key=lambda e: e.position,
        )

    def get_entry(self, entry_id: str) -> QueueEntry:
        entry = self._entries.get(entry_id)
        if entry is None and entry_id not in self._deleted:
            loaded = self._store._entry_of(self.queue.queue_id, entry_id)
            if loaded is not None:
                self._track([loaded])
                entry = loaded
        if entry is None:
            raise EntryNotFound(entry_id)
        return entry

    def add_entry(self, entry: QueueEntry) -> None:
        if entry.queue_id != self.queue.queue_id:
            raise ValueError("entry belongs to another queue")
        self._entries[entry.entry_id] = entry
        self._dirty.add(entry.entry_id)
        self._deleted.discard(entry.entry_id)

    def update_entry(self, entry: QueueEntry) -> None:
        if entry.entry_id not in self._entries:
            raise EntryNotFound(entry.entry_id)
        self._entries[entry.entry_id] = entry
        self._dirty.add(entry.entry_id)

    def delete_entry(self, entry_id: str) -> None:
        self.get_entry(entry_id)
        del self._entries[entry_id]
        self._dirty.discard(entry_id)
        self._deleted.add(entry_id)

    def drop_queue(self) -> None:
        """Remove the queue and all its entries on commit."""
        self._dropped = True

    # -------------------- boundary --------------------

    def commit(self) -> None:
        if self._closed:
            raise RuntimeError("transaction already finished")
        if self._dropped:
            self._store._remove(self.queue.queue_id)
            self._finish()
            return
        self.queue.version += 1
        staged = [self._entries[eid] for eid in self._dirty]
        # Handlers this transaction did not change may have been reassigned
        # concurrently; those are left as committed.
        keep_handler = {
            e.entry_id
            for e in staged
            if e.entry_id in self._handlers_at_start
            and e.assigned_handler == self._handlers_at_start[e.entry_id]
        }
        self._store._apply(self.queue, staged, self._deleted, keep_handler)
        self._finish()

    def rollback(self) -> None:
        if not self._closed:
            self._finish()

    def _finish(self) -> None:
        self._closed = True
        self._lock.release()

    def __enter__(self) -> Transaction:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._closed:
            return
        if exc_type is None:
            try:
                self.commit()
            except BaseException:
                self.rollback()
                raise
        else:
            self.rollback()


class InMemoryStore:
    """Thread-safe storage of queues and entries."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._queues: dict[str, Queue] = {}
        self._entries: dict[str, QueueEntry] = {}
        self._entries_by_queue: dict[str, set[str]] = {}
        self._open_by_queue: dict[str, set[str]] = {}
        # (cycle, sequence_number) -> entry_id, per queue
        self._numbers: dict[str, dict[tuple[int, int], str]] = {}
        self._queue_locks: dict[str, threading.Lock] = {}

    # -------------------- queues --------------------

    def add_queue(self, queue: Queue) -> Queue:
        with self._lock:
            if queue.queue_id in self._queues:
                raise ValueError(f"queue {queue.queue_id!r} already exists")
            self._queues[queue.queue_id] = queue.clone()
            self._entries_by_queue[queue.queue_id] = set()
            self._open_by_queue[queue.queue_id] = set()
            self._numbers[queue.queue_id] = {}
            self._queue_locks[queue.queue_id] = threading.Lock()
            return queue.clone()

    def get_queue(self, queue_id: str) -> Queue:
        with self._lock:
            queue = self._queues.get(queue_id)
            if queue is None:
                raise QueueNotFound(queue_id)
            return queue.clone()

    def list_queues(self) -> list[Queue]:
        with self._lock:
            return [q.clone() for q in self._queues.values()]

    def begin(self, queue_id: str, *, timeout: float) -> Transaction:
        """Lock a queue and open a transaction on it.

        Raises QueueNotFound if the queue does not exist (or was removed while
        waiting) and LockTimeout if the lock is not acquired within `timeout`.
        """
        with self._lock:
            lock = self._queue_locks.get(queue_id)
            if lock is None or queue_id not in self._queues:
                raise QueueNotFound(queue_id)
        if not lock.acquire(timeout=timeout):
            raise LockTimeout(queue_id, timeout)
        try:
            queue = self.get_queue(queue_id)
            return Transaction(self, queue, lock)
        except BaseException:
            lock.release()
            raise

    # -------------------- entries --------------------

    def get_entry(self, entry_id: str) -> QueueEntry:
        with self._lock:
            entry = self._entries.get(entry_id)
            if entry is None:
                raise EntryNotFound(entry_id)
            return entry.clone()

    def entries_of(self, queue_id: str) -> list[QueueEntry]:
        """Committed entries of a queue, in queue order."""
        with self._lock:
            if queue_id not in self._queues:
                raise QueueNotFound(queue_id)
        return sorted(self._entries_of(queue_id), key=lambda e: e.position)

    def open_entries_of(self, queue_id: str) -> list[QueueEntry]:
        """Committed entries that are not completed or cancelled, in queue order."""
        with self._lock:
            if queue_id not in self._queues:
                raise QueueNotFound(queue_id)
        return sorted(self._open_entries_of(queue_id), key=lambda e: e.position)

    def set_handler(self, entry_id: str, handler: str | None, *, updated_at: float) -> QueueEntry:
        """Change only `assigned_handler` of a committed entry, without the queue lock."""
        with self._lock:
            entry = self._entries.get(entry_id)
            if entry is None:
                raise EntryNotFound(entry_id)
            if entry.is_terminal:
                raise EntryFinalized(f"entry {entry_id!r} is {entry.status.value}")
            entry.assigned_handler = handler
            entry.updated_at = updated_at
            return entry.clone()

    def _entry_of(self, queue_id: str, entry_id: str) -> QueueEntry | None:
        with self._lock:
            entry = self._entries.get(entry_id)
            if entry is None or entry.queue_id != queue_id:
                return None
            return entry.clone()

    def _entries_of(self, queue_id: str) -> list[QueueEntry]:
        with self._lock:
            ids = self._entries_by_queue.get(queue_id, set())
            return [self._entries[eid].clone() for eid in ids]

    def _open_entries_of(self, queue_id: str) -> list[QueueEntry]:
        with self._lock:
            ids = self._open_by_queue.get(queue_id, set())
            return [self._entries[eid].clone() for eid in ids]

    def _check_numbers(self, queue_id: str, entries: list[QueueEntry], deleted: set[str]) -> None:
        taken = self._numbers.get(queue_id, {})
        staged: dict[tuple[int, int], str] = {}
        for entry in entries:
            key = entry.position
            owner = staged.setdefault(key, entry.entry_id)
            holder = taken.get(key)
            if owner != entry.entry_id or (
                holder is not None and holder != entry.entry_id and holder not in deleted
            ):
                raise ValueError(
                    f"duplicate sequence number {entry.sequence_number} "
                    f"(cycle {entry.cycle}) in queue {queue_id!r}"
                )

    def _apply(
        self,
        queue: Queue,
        entries: list[QueueEntry],
        deleted: set[str],
        keep_handler: set[str],
    ) -> None:
        qid = queue.queue_id
        with self._lock:
            self._check_numbers(qid, entries, deleted)
            self._queues[qid] = queue.clone()
            index = self._entries_by_queue.setdefault(qid, set())
            open_index = self._open_by_queue.setdefault(qid, set())
            numbers = self._numbers.setdefault(qid, {})
            for eid in deleted:
                gone = self._entries.pop(eid, None)
                index.discard(eid)
                open_index.discard(eid)
                if gone is not None and numbers.get(gone.position) == eid:
                    del numbers[gone.position]
            for entry in entries:
                stored = entry.clone()
                current = self._entries.get(entry.entry_id)
                if current is not None and entry.entry_id in keep_handler:
                    stored.assigned_handler = current.assigned_handler
                self._entries[entry.entry_id] = stored
                index.add(entry.entry_id)
                numbers[stored.position] = entry.entry_id
                if stored.is_terminal:
                    open_index.discard(entry.entry_id)
                else:
                    open_index.add(entry.entry_id)

    def _remove(self, queue_id: str) -> None:
        with self._lock:
            for eid in self._entries_by_queue.pop(queue_id, set()):
                self._entries.pop(eid, None)
            self._open_by_queue.pop(queue_id, None)
            self._numbers.pop(queue_id, None)
            self._queues.pop(queue_id, None)
            # Waiters still holding a reference to the lock re-check existence
            # after acquiring it.
            self._queue_locks.pop(queue_id, None)
