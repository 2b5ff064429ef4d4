from __future__ import annotations

# Entry status state machine.
#
# This table is the only place that decides which status changes are legal.
# Every caller (engine, MQTT service, cashier agent) goes through
# `check_transition`.

from .domain import EntryStatus
from .errors import BadRequest, IllegalTransition

TERMINAL_STATUSES: frozenset[EntryStatus] = frozenset(
    {
        EntryStatus.COMPLETED,
        EntryStatus.CANCELLED,
    }
)

# Key: current status. Value: statuses reachable in one step.
#
# - in_progress -> serving is the direct fast path (skips ready).
# - Any non-terminal status may be cancelled.
# - Terminal statuses have no outgoing edges.
ALLOWED_TRANSITIONS: dict[EntryStatus, frozenset[EntryStatus]] = {
    EntryStatus.QUEUED: frozenset(
        {
            EntryStatus.IN_PROGRESS,
            EntryStatus.CANCELLED,
        }
    ),
    EntryStatus.IN_PROGRESS: frozenset(
        {
            EntryStatus.READY,
            EntryStatus.SERVING,
            EntryStatus.CANCELLED,
        }
    ),
    EntryStatus.READY: frozenset(
        {
            EntryStatus.SERVING,
            EntryStatus.CANCELLED,
        }
    ),
    EntryStatus.SERVING: frozenset(
        {
            EntryStatus.COMPLETED,
            EntryStatus.CANCELLED,
        }
    ),
    EntryStatus.COMPLETED: frozenset(),
    EntryStatus.CANCELLED: frozenset(),
}


def parse_status(value: EntryStatus | str) -> EntryStatus:
    """Coerce a wire value into an EntryStatus."""
    if isinstance(value, EntryStatus):
        return value
    try:
        return EntryStatus(str(value).strip().lower())
    except ValueError:
        raise BadRequest(f"unknown entry status {value!r}") from None


def is_terminal(status: EntryStatus) -> bool:
    return status in TERMINAL_STATUSES


def is_valid_transition(source: EntryStatus, target: EntryStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(source, frozenset())


def check_transition(source: EntryStatus, target: EntryStatus) -> None:
    """Raise IllegalTransition unless source -> target is an edge of the table."""
    if not is_valid_transition(source, target):
        raise IllegalTransition(source.value, target.value)
