"""Numbered service queues with finite stock (MQTT-based service).

The core is `QueueEngine`: it issues sequence numbers, allocates stock,
enforces the entry status lifecycle and stays consistent under concurrent
requests. Around it:
- an MQTT service exposing every engine operation as request/response
- MQTT event broadcast for display kiosks and notification workers
- a cashier agent and a Poisson admission generator

See README for how to run.
"""

from .config import EngineConfig
from .domain import ClosedReason, EntryStatus, Queue, QueueEntry, QueueKind, QueueStatus
from .engine import QueueEngine

__all__ = [
    "ClosedReason",
    "EngineConfig",
    "EntryStatus",
    "Queue",
    "QueueEngine",
    "QueueEntry",
    "QueueKind",
    "QueueStatus",
]
