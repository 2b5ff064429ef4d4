from __future__ import annotations

# The queue engine is the authoritative brain of the system.
#
# `QueueEngine` holds all business rules and is usable without any transport:
# - admission: next sequence number + stock debit + auto-close on depletion
# - entry status transitions, with stock restoration on cancellation
# - queue lifecycle: pause/resume/close/reopen/reset/skip/recall/adjust/undo
#
# Every write runs inside one store transaction on the owning queue. Events are
# published only after that transaction has committed; a failing sink is
# logged and otherwise ignored.

import time
import uuid
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Mapping

from .config import EngineConfig
from .domain import ClosedReason, EntryStatus, Queue, QueueEntry, QueueKind, QueueStatus
from .errors import (
    BadRequest,
    Contention,
    InsufficientStock,
    InvalidQuantity,
    LockTimeout,
    NoEntriesToUndo,
    NotStocked,
    QueueInUse,
    QueueNotActive,
)
from .events import (
    EntryCreated,
    EntryStatusChanged,
    Event,
    EventSink,
    NullSink,
    QueueUpdated,
    StockDepleted,
)
from .observability import get_logger
from .store import InMemoryStore, Transaction
from .transitions import check_transition, parse_status

log = get_logger("engine")


def _new_id() -> str:
    return str(uuid.uuid4())


def _is_count(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class QueueEngine:
    """Core business logic (testable without MQTT)."""

    def __init__(
        self,
        *,
        store: InMemoryStore | None = None,
        sink: EventSink | None = None,
        config: EngineConfig | None = None,
    ) -> None:
        self.store = store or InMemoryStore()
        self.sink: EventSink = sink or NullSink()
        self.config = config or EngineConfig()

    # -------------------- plumbing --------------------

    @contextmanager
    def _transaction(self, queue_id: str) -> Iterator[Transaction]:
        """Open a transaction on a queue, retrying lock timeouts a bounded number of times."""
        attempts = self.config.contention_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                tx = self.store.begin(queue_id, timeout=self.config.lock_timeout)
                break
            except LockTimeout:
                if attempt == attempts:
                    log.warning("queue_contention_exhausted", queue_id=queue_id, attempts=attempts)
                    raise
                log.warning("queue_contention_retry", queue_id=queue_id, attempt=attempt)
        with tx:
            yield tx

    def _emit(self, events: list[Event]) -> None:
        for event in events:
            try:
                self.sink.publish(event)
            except Exception:
                log.exception("event_sink_failed", event_name=event.name, queue_id=event.queue_id)

    def _mutate_queue(
        self,
        queue_id: str,
        reason: str,
        mutate: Callable[[Queue], bool],
    ) -> Queue:
        """Apply `mutate` to a locked queue; it returns False when nothing changed.

        Unchanged queues are rolled back (no version bump, no event).
        """
        extra: list[Event] = []
        with self._transaction(queue_id) as tx:
            was_depleted = tx.queue.is_depleted
            if not mutate(tx.queue):
                tx.rollback()
                return tx.queue.clone()
            if tx.queue.is_depleted and not was_depleted:
                extra.append(StockDepleted(tx.queue.clone()))
        snapshot = tx.queue.clone()
        log.info("queue_" + reason, queue_id=queue_id, status=snapshot.status.value)
        self._emit(extra + [QueueUpdated(snapshot, reason)])
        return snapshot

    @staticmethod
    def _restore_stock(queue: Queue, quantity: int) -> bool:
        """Give `quantity` back to a stocked queue; reopen it if it was depleted."""
        if not queue.is_stocked or quantity <= 0:
            return False
        remaining = (queue.stock_remaining or 0) + quantity
        if queue.stock_capacity is not None:
            remaining = min(remaining, queue.stock_capacity)
        queue.stock_remaining = remaining
        if queue.is_depleted and remaining > 0:
            queue.open()
        return True

    # -------------------- queues --------------------

    def create_queue(
        self,
        name: str,
        kind: QueueKind | str = QueueKind.PLAIN,
        *,
        stock_capacity: int | None = None,
        stock_remaining: int | None = None,
        status: QueueStatus | str = QueueStatus.ACTIVE,
        queue_id: str | None = None,
    ) -> Queue:
        try:
            kind = QueueKind(kind)
            status = QueueStatus(status)
        except ValueError as e:
            raise BadRequest(str(e)) from None
        if not name:
            raise BadRequest("name required")

        queue = Queue(queue_id=queue_id or _new_id(), name=name, kind=kind, status=status)
        if status is QueueStatus.CLOSED:
            queue.closed_reason = ClosedReason.MANUAL

        if kind is QueueKind.STOCKED:
            if not _is_count(stock_capacity) or stock_capacity < 0:
                raise InvalidQuantity("stocked queues need a stock_capacity >= 0")
            if stock_remaining is None:
                stock_remaining = stock_capacity
            if not _is_count(stock_remaining) or not 0 <= stock_remaining <= stock_capacity:
                raise InvalidQuantity("stock_remaining must be between 0 and stock_capacity")
            queue.stock_capacity = stock_capacity
            queue.stock_remaining = stock_remaining
            if stock_remaining == 0 and status is QueueStatus.ACTIVE:
                queue.close(ClosedReason.DEPLETED)

        try:
            created = self.store.add_queue(queue)
        except ValueError as e:
            raise BadRequest(str(e)) from None
        log.info("queue_created", queue_id=created.queue_id, name=name, kind=kind.value)
        self._emit([QueueUpdated(created, "created")])
        return created

    def delete_queue(self, queue_id: str) -> None:
        """Remove a queue and its entries. Refused while any entry is still open."""
        with self._transaction(queue_id) as tx:
            open_entries = tx.open_entries()
            if open_entries:
                raise QueueInUse(
                    f"queue {queue_id!r} still has {len(open_entries)} open entries"
                )
            tx.drop_queue()
        log.info("queue_deleted", queue_id=queue_id)
        self._emit([QueueUpdated(tx.queue.clone(), "deleted")])

    def get_queue(self, queue_id: str) -> Queue:
        return self.store.get_queue(queue_id)

    def list_queues(self) -> list[Queue]:
        return self.store.list_queues()

    # -------------------- entries (read) --------------------

    def get_entry(self, entry_id: str) -> QueueEntry:
        return self.store.get_entry(entry_id)

    def list_entries(
        self,
        queue_id: str,
        *,
        status: EntryStatus | str | None = None,
        handler: str | None = None,
    ) -> list[QueueEntry]:
        entries = self.store.entries_of(queue_id)
        if status is not None:
            wanted = parse_status(status)
            entries = [e for e in entries if e.status is wanted]
        if handler is not None:
            entries = [e for e in entries if e.assigned_handler == handler]
        return entries

    def active_entries(self, queue_id: str) -> list[QueueEntry]:
        """Entries still waiting or being served, lowest number first."""
        return self.store.open_entries_of(queue_id)

    def next_entry(self, queue_id: str) -> QueueEntry | None:
        """The earliest entry that is still queued."""
        for entry in self.store.open_entries_of(queue_id):
            if entry.status is EntryStatus.QUEUED:
                return entry
        return None

    # -------------------- admission --------------------

    def admit(
        self,
        queue_id: str,
        requested_quantity: int | None = None,
        metadata: Mapping[str, Any] | None = None,
        *,
        handler: str | None = None,
    ) -> QueueEntry:
        """Create an entry with the next sequence number.

        Stocked queues debit `requested_quantity` from the pool and close the
        moment it reaches zero. Plain queues ignore the quantity.

        Raises:
            QueueNotFound, InvalidQuantity, QueueNotActive, InsufficientStock,
            LockTimeout.
        """
        events: list[Event] = []
        with self._transaction(queue_id) as tx:
            queue = tx.queue
            quantity = 0
            if queue.is_stocked:
                if not _is_count(requested_quantity) or requested_quantity <= 0:
                    raise InvalidQuantity(
                        f"requested_quantity must be a positive integer, got {requested_quantity!r}"
                    )
                quantity = requested_quantity

            if queue.status is not QueueStatus.ACTIVE:
                if queue.is_depleted:
                    raise InsufficientStock(queue_id, quantity, queue.stock_remaining or 0)
                raise QueueNotActive(queue_id, queue.status.value)

            next_number = queue.sequence_counter + 1
            new_remaining = None
            if queue.is_stocked:
                new_remaining = (queue.stock_remaining or 0) - quantity
                if new_remaining < 0:
                    raise InsufficientStock(queue_id, quantity, queue.stock_remaining or 0)

            now = time.time()
            entry = QueueEntry(
                entry_id=_new_id(),
                queue_id=queue_id,
                sequence_number=next_number,
                cycle=queue.cycle,
                status=EntryStatus.QUEUED,
                quantity_allocated=quantity,
                assigned_handler=handler,
                metadata=dict(metadata or {}),
                created_at=now,
                updated_at=now,
            )
            tx.add_entry(entry)

            queue.sequence_counter = next_number
            if new_remaining is not None:
                queue.stock_remaining = new_remaining
                if new_remaining == 0:
                    queue.close(ClosedReason.DEPLETED)

        snapshot = tx.queue.clone()
        if snapshot.is_depleted:
            events.append(StockDepleted(snapshot))
            log.info("stock_depleted", queue_id=queue_id)
        events.append(QueueUpdated(snapshot, "admitted"))
        events.append(EntryCreated(snapshot, entry.clone()))
        log.info(
            "entry_admitted",
            queue_id=queue_id,
            entry_id=entry.entry_id,
            sequence_number=entry.sequence_number,
            quantity=quantity,
        )
        self._emit(events)
        return entry.clone()

    # -------------------- status transitions --------------------

    def transition(self, entry_id: str, new_status: EntryStatus | str) -> QueueEntry:
        """Move an entry along the status table.

        Cancelling a stocked entry gives its quantity back to the queue (and
        reopens a depleted queue) in the same transaction.
        """
        target = parse_status(new_status)
        queue_id = self.store.get_entry(entry_id).queue_id

        restored = False
        with self._transaction(queue_id) as tx:
            # Re-read under the lock: the committed entry may have moved on.
            entry = tx.get_entry(entry_id)
            previous = entry.status
            check_transition(previous, target)
            entry.status = target
            entry.updated_at = time.time()
            tx.update_entry(entry)
            if target is EntryStatus.CANCELLED:
                restored = self._restore_stock(tx.queue, entry.quantity_allocated)

        snapshot = tx.queue.clone()
        events: list[Event] = [EntryStatusChanged(snapshot, entry.clone(), previous)]
        if restored:
            events.append(QueueUpdated(snapshot, "restocked"))
        log.info(
            "entry_transitioned",
            queue_id=queue_id,
            entry_id=entry_id,
            previous=previous.value,
            status=target.value,
        )
        self._emit(events)
        return entry.clone()

    def cancel(self, entry_id: str) -> QueueEntry:
        return self.transition(entry_id, EntryStatus.CANCELLED)

    def assign_handler(self, entry_id: str, handler: str | None) -> QueueEntry:
        """Set (or clear) the cashier serving an entry. Does not lock the queue."""
        entry = self.store.set_handler(entry_id, handler, updated_at=time.time())
        log.info("entry_assigned", entry_id=entry_id, handler=handler)
        return entry

    def claim_next(self, queue_id: str, handler: str) -> QueueEntry | None:
        """Atomically take the lowest queued entry for `handler` and start it."""
        with self._transaction(queue_id) as tx:
            entry = next((e for e in tx.open_entries() if e.status is EntryStatus.QUEUED), None)
            if entry is None:
                tx.rollback()
                return None
            previous = entry.status
            check_transition(previous, EntryStatus.IN_PROGRESS)
            entry.status = EntryStatus.IN_PROGRESS
            entry.assigned_handler = handler
            entry.updated_at = time.time()
            tx.update_entry(entry)

        log.info(
            "entry_claimed",
            queue_id=queue_id,
            entry_id=entry.entry_id,
            sequence_number=entry.sequence_number,
            handler=handler,
        )
        self._emit([EntryStatusChanged(tx.queue.clone(), entry.clone(), previous)])
        return entry.clone()

    # -------------------- lifecycle --------------------

    def pause(self, queue_id: str) -> Queue:
        def mutate(queue: Queue) -> bool:
            if queue.status is QueueStatus.PAUSED:
                return False
            if queue.status is QueueStatus.CLOSED:
                raise QueueNotActive(queue_id, queue.status.value)
            queue.status = QueueStatus.PAUSED
            return True

        return self._mutate_queue(queue_id, "paused", mutate)

    def resume(self, queue_id: str) -> Queue:
        def mutate(queue: Queue) -> bool:
            if queue.status is QueueStatus.ACTIVE:
                return False
            if queue.status is QueueStatus.CLOSED:
                # Closed queues come back through restocking or reopen().
                raise QueueNotActive(queue_id, queue.status.value)
            if queue.is_stocked and not queue.stock_remaining:
                queue.close(ClosedReason.DEPLETED)
            else:
                queue.status = QueueStatus.ACTIVE
            return True

        return self._mutate_queue(queue_id, "resumed", mutate)

    def close(self, queue_id: str) -> Queue:
        def mutate(queue: Queue) -> bool:
            if queue.status is QueueStatus.CLOSED and queue.closed_reason is ClosedReason.MANUAL:
                return False
            queue.close(ClosedReason.MANUAL)
            return True

        return self._mutate_queue(queue_id, "closed", mutate)

    def reopen(self, queue_id: str) -> Queue:
        def mutate(queue: Queue) -> bool:
            if queue.status is not QueueStatus.CLOSED:
                return False
            if queue.is_stocked and not queue.stock_remaining:
                raise InsufficientStock(
                    queue_id, 0, 0, message=f"queue {queue_id!r} has no stock to reopen with"
                )
            queue.open()
            return True

        return self._mutate_queue(queue_id, "reopened", mutate)

    def reset(self, queue_id: str) -> Queue:
        """Restart numbering at 0 and refill stock.

        Existing entries are kept; new numbers belong to a fresh cycle, so
        they never collide with numbers issued before the reset.
        """

        def mutate(queue: Queue) -> bool:
            queue.sequence_counter = 0
            queue.cycle += 1
            if queue.is_stocked:
                queue.stock_remaining = queue.stock_capacity
                if queue.is_depleted and queue.stock_remaining:
                    queue.open()
                elif queue.status is QueueStatus.ACTIVE and not queue.stock_remaining:
                    queue.close(ClosedReason.DEPLETED)
            return True

        return self._mutate_queue(queue_id, "reset", mutate)

    def skip(self, queue_id: str) -> Queue:
        """Burn the next number without creating an entry."""

        def mutate(queue: Queue) -> bool:
            if queue.status is not QueueStatus.ACTIVE:
                raise QueueNotActive(queue_id, queue.status.value)
            queue.sequence_counter += 1
            return True

        return self._mutate_queue(queue_id, "skipped", mutate)

    def recall(self, queue_id: str) -> Queue:
        """Re-announce the current number. No state changes."""
        queue = self.store.get_queue(queue_id)
        if queue.status is not QueueStatus.ACTIVE:
            raise QueueNotActive(queue_id, queue.status.value)
        log.info("queue_recalled", queue_id=queue_id, sequence_counter=queue.sequence_counter)
        self._emit([QueueUpdated(queue, "recalled")])
        return queue

    def adjust_stock(self, queue_id: str, new_amount: int) -> Queue:
        """Set the remaining stock of a stocked queue.

        Capacity grows when `new_amount` exceeds it. A positive amount reopens
        a closed queue; zero closes an active or paused one as depleted.
        """

        def mutate(queue: Queue) -> bool:
            if not queue.is_stocked:
                raise NotStocked(queue_id)
            if not _is_count(new_amount) or new_amount < 0:
                raise InvalidQuantity(f"stock amount must be >= 0, got {new_amount!r}")
            queue.stock_remaining = new_amount
            queue.stock_capacity = max(queue.stock_capacity or 0, new_amount)
            if new_amount > 0 and queue.status is QueueStatus.CLOSED:
                queue.open()
            elif new_amount == 0 and queue.status is not QueueStatus.CLOSED:
                queue.close(ClosedReason.DEPLETED)
            return True

        return self._mutate_queue(queue_id, "stock_adjusted", mutate)

    def undo_last_entry(self, queue_id: str, *, expected_counter: int | None = None) -> QueueEntry:
        """Delete the newest stock-holding entry and give its quantity back.

        `expected_counter` is the `sequence_counter` the caller saw when it
        decided to undo. If admissions happened since, the undo is refused with
        Contention instead of removing an entry the caller never saw.

        Returns the removed entry.
        """
        with self._transaction(queue_id) as tx:
            queue = tx.queue
            if not queue.is_stocked:
                raise NotStocked(queue_id)
            if expected_counter is not None and queue.sequence_counter != expected_counter:
                raise Contention(
                    f"queue {queue_id!r} moved to {queue.sequence_counter} "
                    f"(expected {expected_counter}); refusing to undo"
                )
            candidates = [
                e
                for e in tx.entries()
                if e.quantity_allocated > 0 and e.status is not EntryStatus.CANCELLED
            ]
            if not candidates:
                raise NoEntriesToUndo(f"queue {queue_id!r} has no entries to undo")
            last = candidates[-1]

            self._restore_stock(queue, last.quantity_allocated)
            # Only give the number back if nothing was issued after it.
            if last.cycle == queue.cycle and last.sequence_number == queue.sequence_counter:
                queue.sequence_counter = max(0, queue.sequence_counter - 1)
            tx.delete_entry(last.entry_id)

        snapshot = tx.queue.clone()
        log.info(
            "entry_undone",
            queue_id=queue_id,
            entry_id=last.entry_id,
            sequence_number=last.sequence_number,
            quantity=last.quantity_allocated,
        )
        self._emit([QueueUpdated(snapshot, "undone")])
        return last.clone()
