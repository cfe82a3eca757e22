from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Literal

from tenacity import (
    Retrying,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
    wait_fixed,
    wait_random_exponential,
)
from tenacity.wait import wait_base

from .api import LockBackend

Mode = Literal["fixed", "exponential", "exponential_jitter"]

POLICIES: tuple[Mode, ...] = ("fixed", "exponential", "exponential_jitter")


@dataclass(frozen=True)
class BackoffPolicy:
    """
    How long to wait before retry number ``n`` (1-based).

    - "fixed": always ``base_ms``
    - "exponential": ``min(base_ms * 2**(n-1), cap_ms)``
    - "exponential_jitter": uniform in ``[0, exponential delay]``; breaks up
      workers that failed together so they do not collide again together
    """
    mode: Mode = "fixed"
    base_ms: float = 100.0
    cap_ms: float = 5000.0

    def wait(self) -> wait_base:
        """The tenacity wait strategy for this policy (in seconds)."""
        base = self.base_ms / 1000
        cap = self.cap_ms / 1000

        if self.mode == "fixed":
            return wait_fixed(base)
        if self.mode == "exponential":
            return wait_exponential(multiplier=base, max=cap)
        if self.mode == "exponential_jitter":
            return wait_random_exponential(multiplier=base, max=cap)
        raise ValueError(f"locklab: unknown backoff mode {self.mode!r}")


@dataclass(frozen=True)
class RetryAttempt:
    acquired: bool
    retries: int


def acquire_with_retry(
    lock: LockBackend,
    resource: str,
    ttl_ms: int,
    policy: BackoffPolicy,
    max_retries: int,
    sleep: Callable[[float], None] = time.sleep,
) -> RetryAttempt:
    """
    One immediate attempt, then up to ``max_retries`` more spaced by ``policy``.

    Returns how many retries were spent, whether or not the lock was finally
    acquired. Running out of retries is an outcome, not an error.
    """
    retrying = Retrying(
        stop=stop_after_attempt(max_retries + 1),
        wait=policy.wait(),
        retry=retry_if_result(lambda acquired: not acquired),
        retry_error_callback=lambda state: state.outcome.result(),
        sleep=sleep,
    )

    acquired = retrying(lock.acquire, resource, ttl_ms)
    return RetryAttempt(acquired=acquired, retries=retrying.statistics["attempt_number"] - 1)
