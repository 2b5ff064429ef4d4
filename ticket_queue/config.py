"""Engine configuration.

Environment Variables:
- TICKET_QUEUE_LOCK_TIMEOUT: seconds to wait for a queue lock (default: 2.0)
- TICKET_QUEUE_CONTENTION_RETRIES: extra lock attempts before giving up (default: 3)
"""

from __future__ import annotations

import os
from dataclasses import dataclass

LOCK_TIMEOUT_ENV = "TICKET_QUEUE_LOCK_TIMEOUT"
CONTENTION_RETRIES_ENV = "TICKET_QUEUE_CONTENTION_RETRIES"


def _get_int_env(key: str, default: int) -> int:
    value = os.environ.get(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_float_env(key: str, default: float) -> float:
    value = os.environ.get(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


@dataclass(frozen=True)
class EngineConfig:
    """Tuning knobs for queue locking.

    Attributes:
        lock_timeout: seconds a single attempt waits for a queue lock.
        contention_retries: how many more attempts are made after a timeout
            before `LockTimeout` reaches the caller.
    """

    lock_timeout: float = 2.0
    contention_retries: int = 3

    def __post_init__(self) -> None:
        if self.lock_timeout <= 0:
            raise ValueError("lock_timeout must be > 0")
        if self.contention_retries < 0:
            raise ValueError("contention_retries must be >= 0")

    @classmethod
    def from_env(cls) -> EngineConfig:
        """Read overrides from the environment; unparsable or out-of-range values use the default."""
        lock_timeout = _get_float_env(LOCK_TIMEOUT_ENV, cls.lock_timeout)
        if not lock_timeout > 0:
            lock_timeout = cls.lock_timeout
        contention_retries = _get_int_env(CONTENTION_RETRIES_ENV, cls.contention_retries)
        if contention_retries < 0:
            contention_retries = cls.contention_retries
        return cls(lock_timeout=lock_timeout, contention_retries=contention_retries)
