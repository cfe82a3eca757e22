"""
Retry comparison: fixed vs exponential vs exponential with jitter.

Every policy runs against the same stock, worker count and TTL. Workers
that lose the safe lock back off and try again until they get it or run out
of retries. Fixed delays keep losers in lockstep (a thundering herd that
collides again every round); jitter spreads them out.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from functools import partial

from ..api import release_quietly
from ..backends.safe import SafeLock
from ..exceptions import ErrorKind
from ..harness import Mode, run_workers
from ..ledger import StockLedger
from ..logging import get_logger
from ..models import PolicyReport, RetryComparison, RetryOutcome, WorkerFailure
from ..retry import POLICIES, BackoffPolicy, acquire_with_retry
from ..store import StoreFactory
from .base import STORE_ERRORS, connection, opening_time, prepare, wait_until, worker_id

logger = get_logger(__name__)

PRODUCT_ID = "product_retry_test"


@dataclass(frozen=True)
class RetryConfig:
    concurrency: int = 20
    stock: int = 10
    max_retries: int = 15
    lock_ttl_ms: int = 2000
    base_ms: float = 100
    cap_ms: float = 5000
    processing_delay_ms: float = 1.0
    # Workers hold back until this long after the driver starts them, so
    # every policy sees the same simultaneous first collision.
    start_delay_ms: float = 250
    policies: tuple[str, ...] = POLICIES
    product_id: str = PRODUCT_ID

    def policy(self, mode: str) -> BackoffPolicy:
        return BackoffPolicy(mode=mode, base_ms=self.base_ms, cap_ms=self.cap_ms)


def retrying_worker(
    store: StoreFactory, config: RetryConfig, policy: BackoffPolicy, opens_at: float, index: int
) -> RetryOutcome:
    """Acquire with retries, then take one unit. Durations count from ``opens_at``."""
    retries = 0
    success = False

    def since_open_ms() -> float:
        return (time.time() - opens_at) * 1000

    try:
        with connection(store) as client:
            lock = SafeLock(client)
            wait_until(opens_at)
            attempt = acquire_with_retry(
                lock, config.product_id, config.lock_ttl_ms, policy, config.max_retries
            )
            retries = attempt.retries

            if attempt.acquired:
                try:
                    success = StockLedger(client).decrement_non_atomic(
                        config.product_id, 1, config.processing_delay_ms
                    )
                finally:
                    release_quietly(lock, config.product_id)
    except STORE_ERRORS as e:
        logger.warning("retry.store_unavailable", process_id=worker_id(index), error=str(e))
        return RetryOutcome(
            worker_id(index), False, retries, since_open_ms(),
            error=str(e), error_kind=ErrorKind.STORE_UNAVAILABLE,
        )

    return RetryOutcome(worker_id(index), success, retries, since_open_ms())


def run_policy(
    store: StoreFactory,
    config: RetryConfig,
    policy: BackoffPolicy,
    *,
    mode: Mode = "process",
    timeout: float | None = 60.0,
    start_method: str | None = None,
) -> PolicyReport:
    with connection(store) as client:
        prepare(client, {config.product_id: config.stock})

        run = run_workers(
            config.concurrency,
            partial(
                retrying_worker, store, config, policy, opening_time(config.start_delay_ms)
            ),
            mode=mode,
            timeout=timeout,
            start_method=start_method,
        )
        final_stock = StockLedger(client).get_stock(config.product_id)

    outcomes = tuple(
        RetryOutcome(worker_id(r.index), False, 0, 0.0, error=r.message, error_kind=r.kind)
        if isinstance(r, WorkerFailure) else r
        for r in run.results
    )
    report = PolicyReport(
        policy=policy.mode,
        initial_stock=config.stock,
        final_stock=final_stock,
        total_duration_ms=run.elapsed_ms,
        outcomes=outcomes,
    )
    logger.info(
        "retry.policy_done",
        policy=policy.mode,
        successes=report.successes,
        mean_retries=round(report.mean_retries, 2),
        fairness_stddev_ms=round(report.fairness_stddev_ms, 1),
        total_duration_ms=round(report.total_duration_ms, 1),
    )
    return report


def run_retry_comparison(
    store: StoreFactory,
    config: RetryConfig | None = None,
    *,
    mode: Mode = "process",
    timeout: float | None = 60.0,
    start_method: str | None = None,
) -> RetryComparison:
    config = config or RetryConfig()
    logger.info(
        "retry.start",
        concurrency=config.concurrency,
        stock=config.stock,
        max_retries=config.max_retries,
        lock_ttl_ms=config.lock_ttl_ms,
    )

    reports = tuple(
        run_policy(
            store,
            config,
            config.policy(name),
            mode=mode,
            timeout=timeout,
            start_method=start_method,
        )
        for name in config.policies
    )
    return RetryComparison(reports=reports)
