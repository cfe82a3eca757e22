"""
Deadlock scenario: two workers, two resources.

Without mitigation worker 1 locks A then B while worker 2 locks B then A.
Each ends up holding one resource and polling for the other until its wait
runs out, then gives up and releases what it holds.

With mitigation both workers sort the resources first. Whoever comes second
fails on the first resource straight away instead of holding anything, so a
circular wait cannot form.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from functools import partial

from ..api import acquire_within, release_quietly
from ..backends.safe import SafeLock
from ..exceptions import ErrorKind
from ..harness import Mode, run_workers
from ..logging import get_logger
from ..models import DeadlockOutcome, DeadlockReport, WorkerFailure
from ..store import StoreFactory
from .base import STORE_ERRORS, connection, prepare

logger = get_logger(__name__)

RESOURCE_A = "product_A"
RESOURCE_B = "product_B"


@dataclass(frozen=True)
class DeadlockConfig:
    mitigate: bool = False
    lock_ttl_ms: int = 3000
    # Held locks outlive the wait by this much, so expiry cannot break the
    # circular wait before both workers have timed out.
    hold_margin_ms: int = 2000
    hold_before_second_ms: float = 100
    poll_interval_ms: float = 50
    work_ms: float = 50
    resources: tuple[str, str] = (RESOURCE_A, RESOURCE_B)

    @property
    def wait_timeout_ms(self) -> float:
        """How long a worker waits for its second resource: one poll past the TTL."""
        return self.lock_ttl_ms + self.poll_interval_ms

    @property
    def hold_ttl_ms(self) -> int:
        return self.lock_ttl_ms + self.hold_margin_ms

    def order_for(self, index: int) -> tuple[str, str]:
        first, second = self.resources if index == 0 else tuple(reversed(self.resources))
        if self.mitigate:
            first, second = sorted((first, second))
        return first, second


def lock_pair_worker(
    store: StoreFactory, config: DeadlockConfig, started_at: float, index: int
) -> DeadlockOutcome:
    """
    Lock two resources in this worker's order.

    ``started_at`` is the scenario's wall-clock start. Both workers give up
    at the same instant, ``started_at + wait_timeout_ms``, so neither can
    pick up the resource the other drops on its way out.
    """
    process = f"Process-{index + 1}"
    first, second = config.order_for(index)
    hold_ttl = config.hold_ttl_ms
    give_up_at = started_at + config.wait_timeout_ms / 1000

    start = time.monotonic()

    def elapsed_ms() -> float:
        return (time.monotonic() - start) * 1000

    try:
        with connection(store) as client:
            lock = SafeLock(client)

            if not lock.acquire(first, hold_ttl):
                logger.info("deadlock.first_failed", process=process, resource=first)
                return DeadlockOutcome(process, first, second, duration_ms=elapsed_ms())

            logger.info("deadlock.locked", process=process, resource=first)

            # Give the other worker time to take its own first resource.
            time.sleep(config.hold_before_second_ms / 1000)

            acquired = acquire_within(
                lock,
                second,
                hold_ttl,
                timeout_ms=max(0.0, (give_up_at - time.time()) * 1000),
                poll_interval_ms=config.poll_interval_ms,
            )

            if not acquired:
                logger.warning("deadlock.timeout", process=process, held=first, waiting_for=second)
                release_quietly(lock, first)
                return DeadlockOutcome(
                    process, first, second,
                    first_locked=True, deadlocked=True, duration_ms=elapsed_ms(),
                )

            logger.info("deadlock.locked", process=process, resource=second)
            time.sleep(config.work_ms / 1000)
            release_quietly(lock, second)
            release_quietly(lock, first)
            return DeadlockOutcome(
                process, first, second,
                first_locked=True, second_locked=True, completed=True, duration_ms=elapsed_ms(),
            )
    except STORE_ERRORS as e:
        logger.warning("deadlock.store_unavailable", process=process, error=str(e))
        return DeadlockOutcome(
            process, first, second,
            duration_ms=elapsed_ms(), error=str(e), error_kind=ErrorKind.STORE_UNAVAILABLE,
        )


def run_deadlock(
    store: StoreFactory,
    config: DeadlockConfig | None = None,
    *,
    mode: Mode = "process",
    timeout: float | None = 60.0,
    start_method: str | None = None,
) -> DeadlockReport:
    config = config or DeadlockConfig()

    with connection(store) as client:
        prepare(client, {})

    logger.info("deadlock.start", mitigate=config.mitigate, lock_ttl_ms=config.lock_ttl_ms)

    run = run_workers(
        2,
        partial(lock_pair_worker, store, config, time.time()),
        mode=mode,
        timeout=timeout,
        start_method=start_method,
    )

    outcomes = []
    for index, result in enumerate(run.results):
        if isinstance(result, WorkerFailure):
            first, second = config.order_for(index)
            result = DeadlockOutcome(
                f"Process-{index + 1}", first, second,
                error=result.message, error_kind=result.kind,
            )
        outcomes.append(result)

    report = DeadlockReport(
        mitigated=config.mitigate,
        lock_ttl_ms=config.lock_ttl_ms,
        outcomes=tuple(outcomes),
        hold_ttl_ms=config.hold_ttl_ms,
    )
    logger.info(
        "deadlock.done",
        mitigate=config.mitigate,
        deadlock_detected=report.deadlock_detected,
        completed=report.completed,
    )
    return report
