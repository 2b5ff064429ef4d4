import pytest

from ticket_queue.domain import EntryStatus, Queue, QueueEntry, QueueKind
from ticket_queue.errors import EntryFinalized, LockTimeout, QueueNotFound
from ticket_queue.store import InMemoryStore


def _store_with_queue():
    store = InMemoryStore()
    store.add_queue(Queue(queue_id="q1", name="Counter A", kind=QueueKind.PLAIN))
    return store


def _entry(entry_id, number, **kw):
    return QueueEntry(entry_id=entry_id, queue_id="q1", sequence_number=number, **kw)


def test_commit_publishes_changes_and_bumps_version():
    store = _store_with_queue()

    with store.begin("q1", timeout=1.0) as tx:
        tx.queue.sequence_counter = 1
        tx.add_entry(_entry("e1", 1))

    assert store.get_queue("q1").sequence_counter == 1
    assert store.get_queue("q1").version == 1
    assert [e.entry_id for e in store.entries_of("q1")] == ["e1"]


def test_exception_rolls_back_and_releases_lock():
    store = _store_with_queue()

    with pytest.raises(RuntimeError):
        with store.begin("q1", timeout=1.0) as tx:
            tx.queue.sequence_counter = 5
            tx.add_entry(_entry("e1", 1))
            raise RuntimeError("boom")

    assert store.get_queue("q1").sequence_counter == 0
    assert store.entries_of("q1") == []
    # Lock is free again.
    store.begin("q1", timeout=0.1).rollback()


def test_duplicate_sequence_numbers_are_rejected_at_commit():
    store = _store_with_queue()

    with pytest.raises(ValueError):
        with store.begin("q1", timeout=1.0) as tx:
            tx.add_entry(_entry("e1", 1))
            tx.add_entry(_entry("e2", 1))

    assert store.entries_of("q1") == []


def test_begin_waits_with_timeout():
    store = _store_with_queue()
    held = store.begin("q1", timeout=1.0)
    try:
        with pytest.raises(LockTimeout):
            store.begin("q1", timeout=0.05)
    finally:
        held.rollback()


def test_begin_on_unknown_queue():
    store = InMemoryStore()
    with pytest.raises(QueueNotFound):
        store.begin("missing", timeout=0.1)


def test_reads_return_copies():
    store = _store_with_queue()
    q = store.get_queue("q1")
    q.sequence_counter = 99

    assert store.get_queue("q1").sequence_counter == 0


def test_handler_set_outside_transaction_survives_commit():
    store = _store_with_queue()
    with store.begin("q1", timeout=1.0) as tx:
        tx.add_entry(_entry("e1", 1))

    tx = store.begin("q1", timeout=1.0)
    entry = tx.get_entry("e1")
    entry.status = EntryStatus.IN_PROGRESS
    tx.update_entry(entry)
    store.set_handler("e1", "C9", updated_at=0.0)
    tx.commit()

    stored = store.get_entry("e1")
    assert stored.status is EntryStatus.IN_PROGRESS
    assert stored.assigned_handler == "C9"


def test_set_handler_refuses_terminal_entry():
    store = _store_with_queue()
    with store.begin("q1", timeout=1.0) as tx:
        tx.add_entry(_entry("e1", 1, status=EntryStatus.COMPLETED))

    with pytest.raises(EntryFinalized):
        store.set_handler("e1", "C1", updated_at=0.0)


def test_dropped_queue_disappears():
    store = _store_with_queue()
    with store.begin("q1", timeout=1.0) as tx:
        tx.add_entry(_entry("e1", 1))
    with store.begin("q1", timeout=1.0) as tx:
        tx.drop_queue()

    with pytest.raises(QueueNotFound):
        store.get_queue("q1")
    with pytest.raises(QueueNotFound):
        store.begin("q1", timeout=0.1)


def test_number_already_committed_is_rejected():
    store = _store_with_queue()
    with store.begin("q1", timeout=1.0) as tx:
        tx.add_entry(_entry("e1", 1))

    with pytest.raises(ValueError):
        with store.begin("q1", timeout=1.0) as tx:
            tx.add_entry(_entry("e2", 1))

    assert [e.entry_id for e in store.entries_of("q1")] == ["e1"]


def test_same_number_in_a_later_cycle_is_allowed():
    store = _store_with_queue()
    with store.begin("q1", timeout=1.0) as tx:
        tx.add_entry(_entry("e1", 1))
    with store.begin("q1", timeout=1.0) as tx:
        tx.add_entry(_entry("e2", 1, cycle=1))

    assert [(e.cycle, e.sequence_number) for e in store.entries_of("q1")] == [(0, 1), (1, 1)]


def test_deleted_entry_frees_its_number():
    store = _store_with_queue()
    with store.begin("q1", timeout=1.0) as tx:
        tx.add_entry(_entry("e1", 1))
    with store.begin("q1", timeout=1.0) as tx:
        tx.delete_entry("e1")
        tx.add_entry(_entry("e2", 1))

    assert [e.entry_id for e in store.entries_of("q1")] == ["e2"]


def test_transaction_loads_only_what_it_touches():
    store = _store_with_queue()
    with store.begin("q1", timeout=1.0) as tx:
        for n in range(1, 6):
            tx.add_entry(_entry(f"e{n}", n, status=EntryStatus.COMPLETED if n < 5 else EntryStatus.QUEUED))

    tx = store.begin("q1", timeout=1.0)
    try:
        assert [e.entry_id for e in tx.open_entries()] == ["e5"]
        assert tx.get_entry("e2").status is EntryStatus.COMPLETED
        assert set(tx._entries) == {"e2", "e5"}
    finally:
        tx.rollback()

    assert [e.entry_id for e in store.open_entries_of("q1")] == ["e5"]
