"""
TTL scenarios: what the lock's time-to-live buys, and what it costs.

Crash recovery
    A worker takes the safe lock and dies without releasing it. A second
    worker is locked out until the TTL runs out, then proceeds normally.

TTL shorter than the work
    The holder's lock expires while it is still working. A second worker
    gets the lock, reads the same stock and decrements it; the holder then
    writes its own stale decrement. Both report success. Nothing here tries
    to stop that (there are no fencing tokens): the dual decrement is the
    result this scenario reports.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from functools import partial

from ..api import acquire_within, release_quietly
from ..backends.safe import SafeLock
from ..exceptions import ErrorKind
from ..harness import Mode, run_workers
from ..ledger import StockLedger
from ..logging import get_logger
from ..models import CrashRecoveryReport, TtlExpiryReport, TtlWorkerOutcome, WorkerFailure
from ..store import StoreFactory
from .base import STORE_ERRORS, connection, prepare

logger = get_logger(__name__)

PRODUCT_ID = "product_crash_test"


@dataclass(frozen=True)
class CrashConfig:
    lock_ttl_ms: int = 2000
    stock: int = 5
    poll_interval_ms: float = 50
    # How far past the TTL the survivor keeps trying.
    recovery_margin_ms: float = 2000
    product_id: str = PRODUCT_ID


@dataclass(frozen=True)
class _SurvivorOutcome:
    immediate_acquired: bool
    recovered: bool
    wait_ms: float
    stock_before: int
    error: str | None = None
    error_kind: ErrorKind | None = None


def crashing_worker(
    store: StoreFactory, config: CrashConfig, index: int
) -> bool | WorkerFailure:
    """Take the lock and exit without releasing it."""
    try:
        with connection(store) as client:
            acquired = SafeLock(client).acquire(config.product_id, config.lock_ttl_ms)
    except STORE_ERRORS as e:
        return WorkerFailure(index, ErrorKind.STORE_UNAVAILABLE, str(e))
    logger.info("crash.holder_died", acquired=acquired, resource=config.product_id)
    return acquired


def surviving_worker(store: StoreFactory, config: CrashConfig, index: int) -> _SurvivorOutcome:
    try:
        with connection(store) as client:
            lock = SafeLock(client)
            ledger = StockLedger(client)

            immediate = lock.acquire(config.product_id, config.lock_ttl_ms)
            start = time.monotonic()
            recovered = immediate or acquire_within(
                lock,
                config.product_id,
                config.lock_ttl_ms,
                timeout_ms=config.lock_ttl_ms + config.recovery_margin_ms,
                poll_interval_ms=config.poll_interval_ms,
            )
            wait_ms = (time.monotonic() - start) * 1000

            stock_before = -1
            if recovered:
                try:
                    stock_before = ledger.get_stock(config.product_id)
                    ledger.decrement_atomic(config.product_id)
                finally:
                    release_quietly(lock, config.product_id)

            return _SurvivorOutcome(immediate, recovered, wait_ms, stock_before)
    except STORE_ERRORS as e:
        logger.warning("crash.store_unavailable", error=str(e))
        return _SurvivorOutcome(
            False, False, 0.0, -1, error=str(e), error_kind=ErrorKind.STORE_UNAVAILABLE
        )


def run_crash_recovery(
    store: StoreFactory,
    config: CrashConfig | None = None,
    *,
    mode: Mode = "process",
    timeout: float | None = 60.0,
    start_method: str | None = None,
) -> CrashRecoveryReport:
    config = config or CrashConfig()

    with connection(store) as client:
        prepare(client, {config.product_id: config.stock})
        logger.info("crash.start", lock_ttl_ms=config.lock_ttl_ms)

        holder = run_workers(
            1, partial(crashing_worker, store, config),
            mode=mode, timeout=timeout, start_method=start_method,
        ).results[0]
        survivor = run_workers(
            1, partial(surviving_worker, store, config),
            mode=mode, timeout=timeout, start_method=start_method,
        ).results[0]

        final_stock = StockLedger(client).get_stock(config.product_id)

    error, error_kind = None, None
    if isinstance(holder, WorkerFailure):
        error, error_kind, holder = holder.message, holder.kind, False
    if isinstance(survivor, WorkerFailure):
        survivor = _SurvivorOutcome(
            False, False, 0.0, -1, error=survivor.message, error_kind=survivor.kind
        )

    report = CrashRecoveryReport(
        lock_ttl_ms=config.lock_ttl_ms,
        holder_acquired=holder,
        immediate_retry_acquired=survivor.immediate_acquired,
        recovered=survivor.recovered,
        recovery_wait_ms=survivor.wait_ms,
        stock_before=survivor.stock_before,
        final_stock=final_stock,
        error=survivor.error or error,
        error_kind=survivor.error_kind or error_kind,
    )
    logger.info(
        "crash.done",
        recovered=report.recovered,
        recovery_wait_ms=round(report.recovery_wait_ms, 1),
        final_stock=final_stock,
    )
    return report


@dataclass(frozen=True)
class TtlExpiryConfig:
    lock_ttl_ms: int = 1000
    work_duration_ms: int = 3000
    stock: int = 1
    # Lets the holder take the lock first.
    contender_delay_ms: float = 200
    poll_interval_ms: float = 100
    product_id: str = PRODUCT_ID


def _ttl_holder(store: StoreFactory, config: TtlExpiryConfig) -> TtlWorkerOutcome:
    with connection(store) as client:
        lock = SafeLock(client)
        ledger = StockLedger(client)

        if not lock.acquire(config.product_id, config.lock_ttl_ms):
            return TtlWorkerOutcome("Process-A")
        acquired_at = time.time()

        try:
            stock_read = ledger.get_stock(config.product_id)
            logger.info(
                "ttl.holder_working",
                lock_ttl_ms=config.lock_ttl_ms,
                work_duration_ms=config.work_duration_ms,
            )
            # Read now, write after the long operation.
            decremented = ledger.decrement_non_atomic(
                config.product_id, 1, simulated_delay_ms=config.work_duration_ms
            )
            finished_at = time.time()
        finally:
            # False once the lock expired under us.
            released = release_quietly(lock, config.product_id)

        return TtlWorkerOutcome(
            "Process-A",
            acquired=True,
            stock_read=stock_read,
            decremented=decremented,
            released=released,
            acquired_at=acquired_at,
            finished_at=finished_at,
        )


def _ttl_contender(store: StoreFactory, config: TtlExpiryConfig) -> TtlWorkerOutcome:
    time.sleep(config.contender_delay_ms / 1000)

    with connection(store) as client:
        lock = SafeLock(client)
        ledger = StockLedger(client)

        acquired = acquire_within(
            lock,
            config.product_id,
            config.lock_ttl_ms,
            timeout_ms=config.lock_ttl_ms + config.work_duration_ms + 2000,
            poll_interval_ms=config.poll_interval_ms,
        )
        if not acquired:
            return TtlWorkerOutcome("Process-B")
        acquired_at = time.time()
        logger.info("ttl.contender_entered")

        try:
            stock_read = ledger.get_stock(config.product_id)
            decremented = ledger.decrement_non_atomic(config.product_id, 1)
            finished_at = time.time()
        finally:
            released = release_quietly(lock, config.product_id)

        return TtlWorkerOutcome(
            "Process-B",
            acquired=True,
            stock_read=stock_read,
            decremented=decremented,
            released=released,
            acquired_at=acquired_at,
            finished_at=finished_at,
        )


def ttl_worker(store: StoreFactory, config: TtlExpiryConfig, index: int) -> TtlWorkerOutcome:
    name = "Process-A" if index == 0 else "Process-B"
    try:
        if index == 0:
            return _ttl_holder(store, config)
        return _ttl_contender(store, config)
    except STORE_ERRORS as e:
        logger.warning("ttl.store_unavailable", process=name, error=str(e))
        return TtlWorkerOutcome(name, error=str(e), error_kind=ErrorKind.STORE_UNAVAILABLE)


def run_ttl_expiry(
    store: StoreFactory,
    config: TtlExpiryConfig | None = None,
    *,
    mode: Mode = "process",
    timeout: float | None = 60.0,
    start_method: str | None = None,
) -> TtlExpiryReport:
    config = config or TtlExpiryConfig()

    with connection(store) as client:
        prepare(client, {config.product_id: config.stock})
        logger.info(
            "ttl.start",
            lock_ttl_ms=config.lock_ttl_ms,
            work_duration_ms=config.work_duration_ms,
        )

        run = run_workers(
            2, partial(ttl_worker, store, config),
            mode=mode, timeout=timeout, start_method=start_method,
        )
        final_stock = StockLedger(client).get_stock(config.product_id)

    holder, contender = (
        TtlWorkerOutcome(name, error=r.message, error_kind=r.kind)
        if isinstance(r, WorkerFailure) else r
        for name, r in zip(("Process-A", "Process-B"), run.results)
    )

    report = TtlExpiryReport(
        lock_ttl_ms=config.lock_ttl_ms,
        work_duration_ms=config.work_duration_ms,
        initial_stock=config.stock,
        final_stock=final_stock,
        holder=holder,
        contender=contender,
    )
    log = logger.warning if report.dual_decrement else logger.info
    log(
        "ttl.done",
        dual_decrement=report.dual_decrement,
        contender_entered_during_work=report.contender_entered_during_work,
        final_stock=final_stock,
    )
    return report
