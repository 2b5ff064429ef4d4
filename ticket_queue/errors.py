"""Domain errors and the shared error envelope.

Every failure the engine reports is a `QueueError` subclass with a stable
`code`. Transport layers never parse messages; they send `code` so clients can
tell "out of stock" apart from "queue closed".
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class ErrorResponse:
    code: str
    message: str

    def to_message(self, *, corr_id: str | None = None) -> dict[str, Any]:
        msg: dict[str, Any] = {"type": "error", "code": self.code, "message": self.message}
        if corr_id is not None:
            msg["corr_id"] = corr_id
        return msg


class QueueError(Exception):
    """Base class for all engine errors."""

    code = "queue_error"

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(self.code, str(self))


class BadRequest(QueueError):
    code = "bad_request"


class NotFound(QueueError):
    code = "not_found"


class QueueNotFound(NotFound):
    def __init__(self, queue_id: str) -> None:
        super().__init__(f"queue {queue_id!r} does not exist")
        self.queue_id = queue_id


class EntryNotFound(NotFound):
    def __init__(self, entry_id: str) -> None:
        super().__init__(f"entry {entry_id!r} does not exist")
        self.entry_id = entry_id


class QueueNotActive(QueueError):
    code = "queue_not_active"

    def __init__(self, queue_id: str, status: str) -> None:
        super().__init__(f"queue {queue_id!r} is {status}")
        self.queue_id = queue_id
        self.status = status


class InvalidQuantity(QueueError):
    code = "invalid_quantity"


class InsufficientStock(QueueError):
    code = "insufficient_stock"

    def __init__(
        self, queue_id: str, requested: int, remaining: int, message: str | None = None
    ) -> None:
        super().__init__(
            message or f"queue {queue_id!r} has {remaining} left, {requested} requested"
        )
        self.queue_id = queue_id
        self.requested = requested
        self.remaining = remaining


class IllegalTransition(QueueError):
    code = "illegal_transition"

    def __init__(self, source: str, target: str) -> None:
        super().__init__(f"cannot move entry from {source} to {target}")
        self.source = source
        self.target = target


class NotStocked(QueueError):
    code = "not_stocked"

    def __init__(self, queue_id: str) -> None:
        super().__init__(f"queue {queue_id!r} does not track stock")
        self.queue_id = queue_id


class NoEntriesToUndo(QueueError):
    code = "no_entries_to_undo"


class QueueInUse(QueueError):
    code = "queue_in_use"


class EntryFinalized(QueueError):
    code = "entry_finalized"


class Contention(QueueError):
    code = "contention"


class LockTimeout(Contention):
    def __init__(self, queue_id: str, timeout: float) -> None:
        super().__init__(f"could not lock queue {queue_id!r} within {timeout:0.2f}s")
        self.queue_id = queue_id
        self.timeout = timeout
