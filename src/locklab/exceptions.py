"""
Exception hierarchy and error kinds for locklab.

Only infrastructure failures are raised. Lock contention and insufficient
stock are ordinary outcomes: they travel inside an ``AttemptResult`` and are
tagged with an ``ErrorKind`` so reports can tell "the lock was busy" apart
from "the store went away".

Catch ``LockLabError`` to handle every failure raised by the library, or a
subclass such as ``WorkerSpawnError`` for fine-grained control.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """
    Classification attached to a failed attempt.

    The first two kinds are expected under load. The remaining ones mean the
    infrastructure broke while the scenario was running.
    """

    LOCK_CONTENTION = "lock_contention"
    INSUFFICIENT_STOCK = "insufficient_stock"
    STORE_UNAVAILABLE = "store_unavailable"
    WORKER_TIMEOUT = "worker_timeout"
    WORKER_CRASHED = "worker_crashed"

    @property
    def is_infrastructure(self) -> bool:
        return self not in (ErrorKind.LOCK_CONTENTION, ErrorKind.INSUFFICIENT_STOCK)


class LockLabError(Exception):
    """
    Base exception for all locklab errors.

    Example
    -------
    >>> try:
    ...     run_oversell(store, OversellConfig(strategy="safe"))
    ... except LockLabError:
    ...     handle_failure()
    """

    #: Error code for programmatic handling.
    code: str = "locklab_error"

    def __init__(self, message: str | None = None) -> None:
        if message is None:
            message = "An unspecified locklab error occurred."
        super().__init__(message)


class StoreUnavailable(LockLabError):
    """
    Raised when the shared store cannot be reached.

    Fatal to the worker that hit it, never to the whole scenario: the worker
    records the failure in its result and still tries to release its lock.
    """

    code: str = "store_unavailable"


class WorkerSpawnError(LockLabError):
    """
    Raised when the harness cannot start one of its workers.

    A scenario run never continues with fewer workers than requested; the
    workers already started are stopped before this propagates.
    """

    code: str = "worker_spawn_failed"
