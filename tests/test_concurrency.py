import threading

import pytest

from ticket_queue.config import EngineConfig
from ticket_queue.domain import EntryStatus, QueueStatus
from ticket_queue.engine import QueueEngine
from ticket_queue.errors import Contention, InsufficientStock, LockTimeout


def _run_concurrently(n, fn):
    """Start n threads on `fn(i)` at the same moment; collect results or errors."""
    barrier = threading.Barrier(n)
    results = [None] * n

    def worker(i):
        barrier.wait()
        try:
            results[i] = fn(i)
        except Exception as e:  # collected for assertions
            results[i] = e

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    return results


def test_concurrent_admissions_never_oversell():
    n = 20
    engine = QueueEngine(config=EngineConfig(lock_timeout=5.0))
    q = engine.create_queue("Flash sale", "stocked", stock_capacity=n - 1)

    results = _run_concurrently(n, lambda i: engine.admit(q.queue_id, 1))

    failures = [r for r in results if isinstance(r, Exception)]
    successes = [r for r in results if not isinstance(r, Exception)]
    assert len(successes) == n - 1
    assert len(failures) == 1
    assert isinstance(failures[0], InsufficientStock)

    after = engine.get_queue(q.queue_id)
    assert after.stock_remaining == 0
    assert after.status is QueueStatus.CLOSED
    assert sorted(e.sequence_number for e in successes) == list(range(1, n))


def test_concurrent_plain_admissions_get_unique_numbers():
    engine = QueueEngine(config=EngineConfig(lock_timeout=5.0))
    q = engine.create_queue("Counter A")

    def admit_many(_):
        return [engine.admit(q.queue_id).sequence_number for _ in range(25)]

    results = _run_concurrently(8, admit_many)

    numbers = [n for batch in results for n in batch]
    assert sorted(numbers) == list(range(1, 201))
    # Each thread saw its own numbers strictly increasing.
    for batch in results:
        assert batch == sorted(batch)


def test_concurrent_cancel_and_admit_conserve_stock():
    engine = QueueEngine(config=EngineConfig(lock_timeout=5.0))
    q = engine.create_queue("Tickets", "stocked", stock_capacity=30)
    held = [engine.admit(q.queue_id, 1) for _ in range(10)]

    def work(i):
        if i < 10:
            return engine.cancel(held[i].entry_id)
        return engine.admit(q.queue_id, 1)

    results = _run_concurrently(20, work)

    assert not [r for r in results if isinstance(r, Exception)]
    after = engine.get_queue(q.queue_id)
    open_qty = sum(
        e.quantity_allocated
        for e in engine.list_entries(q.queue_id)
        if e.status is not EntryStatus.CANCELLED
    )
    assert after.stock_remaining + open_qty == after.stock_capacity
    assert after.stock_remaining == 20


def test_lock_timeout_surfaces_as_contention():
    engine = QueueEngine(config=EngineConfig(lock_timeout=0.05, contention_retries=1))
    q = engine.create_queue("Counter A")

    tx = engine.store.begin(q.queue_id, timeout=1.0)
    try:
        with pytest.raises(LockTimeout) as exc:
            engine.admit(q.queue_id)
        assert isinstance(exc.value, Contention)
        assert exc.value.code == "contention"
    finally:
        tx.rollback()

    assert engine.admit(q.queue_id).sequence_number == 1


def test_other_queues_are_not_blocked():
    engine = QueueEngine(config=EngineConfig(lock_timeout=0.05, contention_retries=0))
    busy = engine.create_queue("Busy")
    free = engine.create_queue("Free")

    tx = engine.store.begin(busy.queue_id, timeout=1.0)
    try:
        assert engine.admit(free.queue_id).sequence_number == 1
    finally:
        tx.rollback()


def test_failing_sink_does_not_roll_back():
    class BrokenSink:
        def publish(self, event):
            raise RuntimeError("broker down")

    engine = QueueEngine(sink=BrokenSink())
    q = engine.create_queue("Croissants", "stocked", stock_capacity=3)

    entry = engine.admit(q.queue_id, 3)

    assert entry.sequence_number == 1
    after = engine.get_queue(q.queue_id)
    assert after.stock_remaining == 0
    assert after.status is QueueStatus.CLOSED


def test_failing_sink_never_reaches_the_caller():
    class BrokenSink:
        def publish(self, event):
            raise RuntimeError("broker down")

    engine = QueueEngine(sink=BrokenSink())
    q = engine.create_queue("Counter A")
    entry = engine.admit(q.queue_id)

    moved = engine.transition(entry.entry_id, "in_progress")
    paused = engine.pause(q.queue_id)

    assert moved.status is EntryStatus.IN_PROGRESS
    assert paused.status is QueueStatus.PAUSED
    assert engine.get_entry(entry.entry_id).status is EntryStatus.IN_PROGRESS
