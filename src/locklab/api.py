from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Iterator, Literal, Protocol

import redis

from .backends.naive import NaiveLock
from .backends.noop import NoOpLock
from .backends.safe import SafeLock
from .logging import get_logger
from .models import Ownership

logger = get_logger(__name__)

Strategy = Literal["none", "naive", "safe"]

STRATEGIES: tuple[Strategy, ...] = ("none", "naive", "safe")


class LockBackend(Protocol):
    """
    Capability shared by every lock strategy.

    ``acquire`` never blocks and never raises on contention: a busy lock is
    simply ``False``. Waiting is the caller's business (see
    ``acquire_within``).
    """
    name: str
    ownership: Ownership

    def acquire(self, resource: str, ttl_ms: int = 5000) -> bool: ...
    def release(self, resource: str) -> bool: ...
    def is_held(self, resource: str) -> bool: ...


def create_lock(strategy: Strategy, client: redis.Redis) -> LockBackend:
    """
    Build the lock strategy selected by configuration.

    Raises
    ------
    ValueError
        If ``strategy`` is not one of ``none``, ``naive`` or ``safe``.
    """
    if strategy == "none":
        return NoOpLock()
    if strategy == "naive":
        return NaiveLock(client)
    if strategy == "safe":
        return SafeLock(client)
    raise ValueError(
        f"locklab: unknown lock strategy {strategy!r}. Available: {list(STRATEGIES)}"
    )


def acquire_within(
    lock: LockBackend,
    resource: str,
    ttl_ms: int,
    timeout_ms: float = 0,
    poll_interval_ms: float = 50,
) -> bool:
    """
    Try to acquire ``resource`` until ``timeout_ms`` runs out.

    Parameters
    ----------
    timeout_ms : float
        - 0: a single attempt, fail fast on contention.
        - positive: retry every ``poll_interval_ms`` until the deadline.

    Returns
    -------
    bool
        True if the lock was acquired before the deadline.

    Notes
    -----
    Apart from the first one, attempts are only made strictly before the
    deadline. The call returns at the deadline, not after one more try.
    """
    deadline = time.monotonic() + timeout_ms / 1000
    interval = poll_interval_ms / 1000

    while True:
        if lock.acquire(resource, ttl_ms):
            return True

        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return False
        if remaining <= interval:
            time.sleep(remaining)
            return False

        # Fixed sleep keeps the loop from hammering the store.
        time.sleep(interval)


def release_quietly(lock: LockBackend, resource: str) -> bool:
    """
    Release ``resource`` without letting a store failure escape.

    Used on exit paths where an error is already being reported. When the
    store cannot be reached the lock's TTL bounds the damage.
    """
    try:
        return lock.release(resource)
    except redis.RedisError as e:
        logger.warning("lock.release_failed", resource=resource, strategy=lock.name, error=str(e))
        return False


@contextmanager
def locked(
    lock: LockBackend,
    resource: str,
    ttl_ms: int = 5000,
    timeout_ms: float = 0,
    poll_interval_ms: float = 50,
) -> Iterator[bool]:
    """
    Hold ``resource`` for the duration of the block, if it can be acquired.

    Unlike a plain lock, contention is not an exception: the block always
    runs and receives whether the lock was acquired.

    Example
    -------
    >>> with locked(lock, "product_1", ttl_ms=2000) as acquired:
    ...     if acquired:
    ...         ledger.decrement_atomic("product_1")

    Notes
    -----
    When the lock was acquired it is released in a finally block, even if
    the protected code raises.
    """
    acquired = acquire_within(lock, resource, ttl_ms, timeout_ms, poll_interval_ms)

    if not acquired:
        yield False
        return

    try:
        yield True
    finally:
        release_quietly(lock, resource)
