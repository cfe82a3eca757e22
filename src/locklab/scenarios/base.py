from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Iterator, Mapping

import redis

from ..exceptions import ErrorKind, StoreUnavailable
from ..ledger import StockLedger
from ..models import AttemptResult, WorkerFailure
from ..store import StoreFactory, flush

# Losing the store, at connect time or mid-run. Workers report these as
# ``store_unavailable`` instead of crashing.
STORE_ERRORS = (StoreUnavailable, redis.ConnectionError, redis.TimeoutError)


def worker_id(index: int) -> str:
    return f"proc_{index}"


@contextmanager
def connection(store: StoreFactory) -> Iterator[redis.Redis]:
    """A worker-private client, closed when the worker is done with it."""
    client = store.connect()
    try:
        yield client
    finally:
        client.close()


def prepare(client: redis.Redis, stock: Mapping[str, int]) -> None:
    """
    Start a run from a known state: no lock keys, no counters but ``stock``.

    Every driver calls this before spawning workers; nothing carries over
    from a previous run.
    """
    flush(client)
    ledger = StockLedger(client)
    for product_id, quantity in stock.items():
        ledger.reset_stock(product_id, quantity)


def opening_time(start_delay_ms: float) -> float:
    """Wall-clock instant at which every worker of a run makes its first attempt."""
    return time.time() + start_delay_ms / 1000


def wait_until(opens_at: float) -> None:
    """
    Hold a worker back until the run opens.

    Workers start one after the other, processes taking milliseconds each.
    Gating them on a shared instant makes them collide as a crowd would; a
    worker that starts late goes straight on.
    """
    delay = opens_at - time.time()
    if delay > 0:
        time.sleep(delay)


def failed_attempt(failure: WorkerFailure) -> AttemptResult:
    return AttemptResult(
        process_id=worker_id(failure.index),
        success=False,
        lock_acquired=False,
        stock_before=-1,
        stock_after=-1,
        duration_ms=0.0,
        error=failure.message,
        error_kind=failure.kind,
    )


def unavailable_attempt(index: int, error: Exception) -> AttemptResult:
    return AttemptResult(
        process_id=worker_id(index),
        success=False,
        lock_acquired=False,
        stock_before=-1,
        stock_after=-1,
        duration_ms=0.0,
        error=str(error),
        error_kind=ErrorKind.STORE_UNAVAILABLE,
    )
