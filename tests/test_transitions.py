import pytest

from ticket_queue.domain import EntryStatus
from ticket_queue.errors import BadRequest, IllegalTransition
from ticket_queue.transitions import (
    ALLOWED_TRANSITIONS,
    check_transition,
    is_terminal,
    is_valid_transition,
    parse_status,
)


def test_table_covers_every_status():
    assert set(ALLOWED_TRANSITIONS) == set(EntryStatus)


def test_terminal_statuses_have_no_edges():
    for status in EntryStatus:
        if is_terminal(status):
            assert ALLOWED_TRANSITIONS[status] == frozenset()


def test_every_open_status_can_be_cancelled():
    for status in EntryStatus:
        if not is_terminal(status):
            assert is_valid_transition(status, EntryStatus.CANCELLED)


def test_three_stages_before_serving():
    assert is_valid_transition(EntryStatus.QUEUED, EntryStatus.IN_PROGRESS)
    assert is_valid_transition(EntryStatus.IN_PROGRESS, EntryStatus.READY)
    assert is_valid_transition(EntryStatus.READY, EntryStatus.SERVING)
    assert is_valid_transition(EntryStatus.IN_PROGRESS, EntryStatus.SERVING)
    assert not is_valid_transition(EntryStatus.QUEUED, EntryStatus.SERVING)
    assert not is_valid_transition(EntryStatus.QUEUED, EntryStatus.QUEUED)


def test_check_transition_names_both_ends():
    with pytest.raises(IllegalTransition) as exc:
        check_transition(EntryStatus.SERVING, EntryStatus.READY)
    assert (exc.value.source, exc.value.target) == ("serving", "ready")


def test_parse_status():
    assert parse_status(" Serving ") is EntryStatus.SERVING
    assert parse_status(EntryStatus.READY) is EntryStatus.READY
    with pytest.raises(BadRequest):
        parse_status("preparing")
