"""
Oversell scenario: many workers race for a few units of stock.

Each worker makes one purchase of one unit through the order coordinator,
with the lock strategy under test. The verdict is whether more orders
succeeded than there was stock, or whether stock went negative.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import partial

from ..api import Strategy, create_lock
from ..harness import Mode, run_workers
from ..ledger import StockLedger
from ..logging import get_logger
from ..models import AttemptResult, ReportBuilder, ScenarioReport, WorkerFailure
from ..orders import OrderCoordinator
from ..store import StoreFactory
from .base import (
    STORE_ERRORS,
    connection,
    failed_attempt,
    opening_time,
    prepare,
    unavailable_attempt,
    wait_until,
    worker_id,
)

logger = get_logger(__name__)

PRODUCT_ID = "product_oversell_test"


@dataclass(frozen=True)
class OversellConfig:
    strategy: Strategy = "none"
    stock: int = 1
    concurrency: int = 50
    processing_delay_ms: float = 5.0
    lock_ttl_ms: int = 5000
    # 0 fails fast on contention; positive values make workers wait their turn.
    lock_wait_ms: float = 0
    poll_interval_ms: float = 50
    # Workers hold back until this long after the driver starts them, then
    # all attempt at once.
    start_delay_ms: float = 250
    product_id: str = PRODUCT_ID

    @property
    def scenario(self) -> str:
        return f"Oversell Test ({self.concurrency} processes, stock={self.stock})"


def purchase_worker(
    store: StoreFactory, config: OversellConfig, opens_at: float, index: int
) -> AttemptResult:
    try:
        with connection(store) as client:
            coordinator = OrderCoordinator(
                StockLedger(client),
                create_lock(config.strategy, client),
                processing_delay_ms=config.processing_delay_ms,
                ttl_ms=config.lock_ttl_ms,
                lock_wait_ms=config.lock_wait_ms,
                poll_interval_ms=config.poll_interval_ms,
            )
            wait_until(opens_at)
            return coordinator.purchase(config.product_id, 1, worker_id(index))
    except STORE_ERRORS as e:
        return unavailable_attempt(index, e)


def run_oversell(
    store: StoreFactory,
    config: OversellConfig | None = None,
    *,
    mode: Mode = "process",
    timeout: float | None = 60.0,
    start_method: str | None = None,
) -> ScenarioReport:
    config = config or OversellConfig()

    with connection(store) as client:
        prepare(client, {config.product_id: config.stock})
        strategy_name = create_lock(config.strategy, client).name

        logger.info(
            "oversell.start",
            strategy=config.strategy,
            stock=config.stock,
            concurrency=config.concurrency,
            processing_delay_ms=config.processing_delay_ms,
        )

        builder = ReportBuilder(config.scenario, strategy_name, config.stock)
        run = run_workers(
            config.concurrency,
            partial(purchase_worker, store, config, opening_time(config.start_delay_ms)),
            mode=mode,
            timeout=timeout,
            start_method=start_method,
        )

        for result in run.results:
            attempt = failed_attempt(result) if isinstance(result, WorkerFailure) else result
            logger.debug("oversell.attempt", **attempt.to_dict())
            builder.add(attempt)

        final_stock = StockLedger(client).get_stock(config.product_id)

    report = builder.finalize(final_stock, run.elapsed_ms)

    log = logger.warning if report.oversold else logger.info
    log(
        "oversell.done",
        strategy=config.strategy,
        successes=report.successes,
        lock_failures=report.lock_failures,
        infrastructure_failures=report.infrastructure_failures,
        final_stock=report.final_stock,
        oversold=report.oversold,
    )
    return report
