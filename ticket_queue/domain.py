from __future__ import annotations

# Core entities: the Queue aggregate and its entries.
#
# Both are plain mutable dataclasses. The store hands out copies (`clone()`),
# so callers never hold a reference into committed state.

import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any


class QueueKind(str, Enum):
    PLAIN = "plain"
    STOCKED = "stocked"


class QueueStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    CLOSED = "closed"


class ClosedReason(str, Enum):
    """Why a queue is closed. Only depletion closures reopen on restock."""

    DEPLETED = "depleted"
    MANUAL = "manual"


class EntryStatus(str, Enum):
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    READY = "ready"
    SERVING = "serving"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass
class Queue:
    """One admission line, optionally backed by a finite stock pool."""

    queue_id: str
    name: str
    kind: QueueKind
    status: QueueStatus = QueueStatus.ACTIVE
    sequence_counter: int = 0
    # Numbering generation; `reset` starts a new one.
    cycle: int = 0
    stock_capacity: int | None = None
    stock_remaining: int | None = None
    closed_reason: ClosedReason | None = None
    # Bumped on every committed write.
    version: int = 0

    @property
    def is_stocked(self) -> bool:
        return self.kind is QueueKind.STOCKED

    @property
    def is_depleted(self) -> bool:
        return self.status is QueueStatus.CLOSED and self.closed_reason is ClosedReason.DEPLETED

    def close(self, reason: ClosedReason) -> None:
        self.status = QueueStatus.CLOSED
        self.closed_reason = reason

    def open(self) -> None:
        self.status = QueueStatus.ACTIVE
        self.closed_reason = None

    def clone(self) -> Queue:
        return replace(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "queue_id": self.queue_id,
            "name": self.name,
            "kind": self.kind.value,
            "status": self.status.value,
            "sequence_counter": self.sequence_counter,
            "cycle": self.cycle,
            "stock_capacity": self.stock_capacity,
            "stock_remaining": self.stock_remaining,
            "closed_reason": None if self.closed_reason is None else self.closed_reason.value,
            "version": self.version,
        }


@dataclass
class QueueEntry:
    """One customer's admission record within a queue."""

    entry_id: str
    queue_id: str
    sequence_number: int
    cycle: int = 0
    status: EntryStatus = EntryStatus.QUEUED
    quantity_allocated: int = 0
    assigned_handler: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    @property
    def is_terminal(self) -> bool:
        return self.status in (EntryStatus.COMPLETED, EntryStatus.CANCELLED)

    @property
    def position(self) -> tuple[int, int]:
        """Sort key: earlier numbering cycles first, then by number."""
        return (self.cycle, self.sequence_number)

    def clone(self) -> QueueEntry:
        return replace(self, metadata=dict(self.metadata))

    def to_dict(self) -> dict[str, Any]:
        return {
            "entry_id": self.entry_id,
            "queue_id": self.queue_id,
            "sequence_number": self.sequence_number,
            "cycle": self.cycle,
            "status": self.status.value,
            "quantity_allocated": self.quantity_allocated,
            "assigned_handler": self.assigned_handler,
            "metadata": dict(self.metadata),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
