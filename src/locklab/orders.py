from __future__ import annotations

import time
import uuid

import redis

from .api import LockBackend, locked
from .exceptions import ErrorKind
from .ledger import StockLedger
from .logging import get_logger
from .models import AttemptResult

logger = get_logger(__name__)


class OrderCoordinator:
    """
    Runs one purchase: lock, check and decrement stock, release.

    ::

        START -> LOCK_ACQUIRE --fail--> DONE(lock_acquired=False)
                      |
                      v
              STOCK_CHECK_AND_DECREMENT --insufficient--> DONE(success=False)
                      |
                      v
                DONE(success=True)

    The lock is released on every exit path once acquired, including when
    the store fails mid-purchase. Which lock is used decides whether the
    non-atomic decrement is actually protected.
    """

    def __init__(
        self,
        ledger: StockLedger,
        lock: LockBackend,
        processing_delay_ms: float = 1.0,
        ttl_ms: int = 5000,
        lock_wait_ms: float = 0,
        poll_interval_ms: float = 50,
    ) -> None:
        self.ledger = ledger
        self.lock = lock
        self.processing_delay_ms = processing_delay_ms
        self.ttl_ms = ttl_ms
        self.lock_wait_ms = lock_wait_ms
        self.poll_interval_ms = poll_interval_ms

    def purchase(
        self, product_id: str, quantity: int = 1, process_id: str | None = None
    ) -> AttemptResult:
        start = time.perf_counter()
        process_id = process_id or f"proc_{uuid.uuid4().hex[:12]}"
        lock_acquired = False
        stock_before = -1
        stock_after = -1

        def done(success: bool, error: str | None = None, kind: ErrorKind | None = None):
            return AttemptResult(
                process_id=process_id,
                success=success,
                lock_acquired=lock_acquired,
                stock_before=stock_before,
                stock_after=stock_after,
                duration_ms=round((time.perf_counter() - start) * 1000, 3),
                error=error,
                error_kind=kind,
            )

        try:
            with locked(
                self.lock,
                product_id,
                ttl_ms=self.ttl_ms,
                timeout_ms=self.lock_wait_ms,
                poll_interval_ms=self.poll_interval_ms,
            ) as acquired:
                lock_acquired = acquired
                if not acquired:
                    return done(False, "Failed to acquire lock", ErrorKind.LOCK_CONTENTION)

                stock_before = self.ledger.get_stock(product_id)

                decremented = self.ledger.decrement_non_atomic(
                    product_id, quantity, self.processing_delay_ms
                )
                stock_after = self.ledger.get_stock(product_id)

                if not decremented:
                    return done(False, "Insufficient stock", ErrorKind.INSUFFICIENT_STOCK)

                return done(True)
        except (redis.ConnectionError, redis.TimeoutError) as e:
            logger.warning(
                "order.store_unavailable",
                process_id=process_id,
                product_id=product_id,
                lock_acquired=lock_acquired,
                error=str(e),
            )
            return done(False, f"Store unavailable: {e}", ErrorKind.STORE_UNAVAILABLE)
