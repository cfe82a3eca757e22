"""
Scenario drivers end to end, on the in-memory store with thread workers.

Outcomes under contention are not deterministic in general. The cases below
are sized so that the interesting interleaving is forced by timing: the
processing delay or the TTL is much longer than it takes to start all the
workers.
"""

import statistics

import redis

from locklab.exceptions import ErrorKind
from locklab.ledger import StockLedger
from locklab.scenarios import (
    CrashConfig,
    DeadlockConfig,
    OversellConfig,
    RetryConfig,
    TtlExpiryConfig,
    run_crash_recovery,
    run_deadlock,
    run_oversell,
    run_retry_comparison,
    run_ttl_expiry,
)
from locklab.scenarios.oversell import PRODUCT_ID


# Oversell

def test_no_lock_oversells(store):
    config = OversellConfig(strategy="none", stock=1, concurrency=10, processing_delay_ms=100)

    report = run_oversell(store, config, mode="thread")

    assert report.total == 10
    assert report.successes > 1
    assert report.oversold is True
    assert report.strategy.startswith("NoLock")


def test_no_lock_oversells_with_the_default_processing_window(store):
    # Workers are held back to a shared opening, so even 5 ms between read
    # and write is enough for them all to read the same stock.
    config = OversellConfig(strategy="none", stock=1, concurrency=10)

    report = run_oversell(store, config, mode="thread")

    assert config.processing_delay_ms == 5.0
    assert report.successes > 1
    assert report.oversold is True


def test_safe_lock_sells_exactly_the_stock(store):
    config = OversellConfig(strategy="safe", stock=1, concurrency=10, processing_delay_ms=100)

    report = run_oversell(store, config, mode="thread")

    assert report.successes == 1
    assert report.lock_failures == 9
    assert report.final_stock == 0
    assert report.oversold is False
    assert all(a.stock_before in (-1, 1) for a in report.attempts)


def test_safe_lock_serves_everyone_when_stock_suffices(store):
    config = OversellConfig(
        strategy="safe",
        stock=5,
        concurrency=3,
        processing_delay_ms=5,
        lock_wait_ms=5000,
        poll_interval_ms=10,
    )

    report = run_oversell(store, config, mode="thread")

    assert report.successes == 3
    assert report.final_stock == 2
    assert report.oversold is False


def test_safe_lock_with_waiting_sells_exactly_the_stock_to_a_larger_crowd(store):
    config = OversellConfig(
        strategy="safe",
        stock=3,
        concurrency=8,
        processing_delay_ms=5,
        lock_wait_ms=5000,
        poll_interval_ms=10,
    )

    report = run_oversell(store, config, mode="thread")

    assert report.successes == 3
    assert report.stock_failures == 5
    assert report.lock_failures == 0
    assert report.final_stock == 0
    assert all(a.stock_before >= 0 for a in report.attempts)
    assert all(a.stock_after >= 0 for a in report.attempts)


def test_safe_lock_failing_fast_turns_the_crowd_away(store):
    # Without waiting, only whoever gets the lock first buys anything.
    config = OversellConfig(strategy="safe", stock=3, concurrency=8, processing_delay_ms=100)

    report = run_oversell(store, config, mode="thread")

    assert report.successes == 1
    assert report.lock_failures == 7
    assert report.final_stock == 2
    assert report.oversold is False


def test_naive_lock_run_produces_a_complete_report(store):
    config = OversellConfig(strategy="naive", stock=2, concurrency=5, processing_delay_ms=5)

    report = run_oversell(store, config, mode="thread")

    assert report.total == 5
    assert report.strategy.startswith("Naive")
    assert report.successes + report.lock_failures + report.stock_failures == 5


def test_each_run_starts_from_a_reset_store(store):
    client = store.connect()
    StockLedger(client).set_stock(PRODUCT_ID, 99)
    client.set("lock:" + PRODUCT_ID, "stale-token")

    config = OversellConfig(strategy="safe", stock=1, concurrency=1, processing_delay_ms=0)
    report = run_oversell(store, config, mode="thread")

    assert report.successes == 1
    assert report.final_stock == 0


def test_unreachable_store_is_reported_per_worker(store, monkeypatch):
    from locklab.exceptions import StoreUnavailable
    from locklab.scenarios import oversell

    real_connect = store.connect
    calls = []

    def connect():
        calls.append(1)
        # The driver's own connection works; the workers' do not.
        if len(calls) > 1:
            raise StoreUnavailable("Cannot connect to Redis")
        return real_connect()

    monkeypatch.setattr(store, "connect", connect)

    report = oversell.run_oversell(
        store, OversellConfig(strategy="safe", concurrency=3), mode="thread"
    )

    assert report.infrastructure_failures == 3
    assert {a.error_kind for a in report.attempts} == {ErrorKind.STORE_UNAVAILABLE}


# Deadlock

def test_opposite_ordering_deadlocks_until_timeout(store):
    config = DeadlockConfig(mitigate=False, lock_ttl_ms=400, poll_interval_ms=20)

    report = run_deadlock(store, config, mode="thread")

    assert report.sustained_deadlock is True
    assert report.completed == 0
    for outcome in report.outcomes:
        assert outcome.first_locked is True
        assert outcome.second_locked is False
        assert config.lock_ttl_ms <= outcome.duration_ms <= config.wait_timeout_ms + 200


def test_opposite_ordering_uses_both_orders(store):
    config = DeadlockConfig(lock_ttl_ms=200, poll_interval_ms=20)

    report = run_deadlock(store, config, mode="thread")

    assert [(o.first, o.second) for o in report.outcomes] == [
        ("product_A", "product_B"),
        ("product_B", "product_A"),
    ]


def test_sorted_ordering_fails_fast_instead_of_deadlocking(store):
    config = DeadlockConfig(mitigate=True, lock_ttl_ms=3000, poll_interval_ms=20)

    report = run_deadlock(store, config, mode="thread")

    assert report.deadlock_detected is False
    assert report.completed == 1
    assert all(o.first == "product_A" for o in report.outcomes)

    loser = next(o for o in report.outcomes if not o.completed)
    assert loser.first_locked is False
    assert loser.duration_ms < 50
    assert all(o.duration_ms < config.lock_ttl_ms for o in report.outcomes)


# Crash / TTL

def test_crashed_holder_blocks_until_ttl(store):
    config = CrashConfig(lock_ttl_ms=300, stock=5, poll_interval_ms=20)

    report = run_crash_recovery(store, config, mode="thread")

    assert report.holder_acquired is True
    assert report.immediate_retry_blocked is True
    assert report.recovered is True
    assert report.recovered_after_ttl is True
    assert 150 <= report.recovery_wait_ms <= config.lock_ttl_ms + 200
    assert report.stock_before == 5
    assert report.final_stock == 4


def test_ttl_shorter_than_work_lets_both_decrement(store):
    config = TtlExpiryConfig(
        lock_ttl_ms=300, work_duration_ms=900, contender_delay_ms=50, poll_interval_ms=20
    )

    report = run_ttl_expiry(store, config, mode="thread")

    assert report.holder.acquired is True
    assert report.contender.acquired is True
    assert report.contender_entered_during_work is True
    assert report.contender.finished_at < report.holder.finished_at
    assert report.dual_decrement is True
    assert report.oversold is True
    # The holder's lock had expired and been taken over: its release is refused.
    assert report.holder.released is False
    assert report.contender.released is True


# Retry

def test_retry_comparison_runs_every_policy(store):
    config = RetryConfig(
        concurrency=6,
        stock=3,
        max_retries=10,
        lock_ttl_ms=2000,
        base_ms=10,
        cap_ms=200,
        processing_delay_ms=5,
    )

    comparison = run_retry_comparison(store, config, mode="thread")
    reports = comparison.by_policy()

    assert set(reports) == {"fixed", "exponential", "exponential_jitter"}
    for report in reports.values():
        assert len(report.outcomes) == 6
        assert report.successes == 3
        assert report.final_stock == 0
        assert report.fairness_stddev_ms >= 0
    assert set(comparison.to_dict()) == set(reports)


def test_jitter_spreads_completions_no_wider_than_fixed_delay(store):
    # The critical section is long enough that a fixed-delay crowd, waking
    # together, lets exactly one worker in per round.
    config = RetryConfig(
        concurrency=8,
        stock=8,
        max_retries=10,
        base_ms=80,
        cap_ms=1000,
        processing_delay_ms=20,
        start_delay_ms=30,
        policies=("fixed", "exponential_jitter"),
    )

    spreads: dict[str, list[float]] = {"fixed": [], "exponential_jitter": []}
    for _ in range(6):
        comparison = run_retry_comparison(store, config, mode="thread")
        for policy, report in comparison.by_policy().items():
            spreads[policy].append(report.fairness_stddev_ms)

    assert statistics.fmean(spreads["exponential_jitter"]) <= statistics.fmean(spreads["fixed"])


# Losing the store mid-run

def _connection_reset(*args, **kwargs):
    raise redis.ConnectionError("connection reset")


def test_retry_workers_that_lose_the_store_are_infrastructure_failures(store, monkeypatch):
    monkeypatch.setattr(StockLedger, "decrement_non_atomic", _connection_reset)
    config = RetryConfig(concurrency=3, stock=3, base_ms=5, start_delay_ms=0, policies=("fixed",))

    report = run_retry_comparison(store, config, mode="thread").by_policy()["fixed"]

    assert report.successes == 0
    assert report.infrastructure_failures == 3
    assert {o.error_kind for o in report.outcomes} == {ErrorKind.STORE_UNAVAILABLE}
    assert report.to_dict()["infrastructure_failures"] == 3


def test_deadlock_workers_that_lose_the_store_are_infrastructure_failures(store, monkeypatch):
    from locklab.scenarios import deadlock

    monkeypatch.setattr(deadlock, "acquire_within", _connection_reset)

    report = run_deadlock(store, DeadlockConfig(lock_ttl_ms=200), mode="thread")

    assert report.deadlock_detected is False
    assert report.infrastructure_failures == 2
    assert all(o.error_kind is ErrorKind.STORE_UNAVAILABLE for o in report.outcomes)
    assert report.to_dict()["outcomes"][0]["error_kind"] == "store_unavailable"


def test_crash_survivor_that_loses_the_store_is_reported(store, monkeypatch):
    monkeypatch.setattr(StockLedger, "decrement_atomic", _connection_reset)

    config = CrashConfig(lock_ttl_ms=200, poll_interval_ms=20)

    report = run_crash_recovery(store, config, mode="thread")

    assert report.recovered is False
    assert report.error_kind is ErrorKind.STORE_UNAVAILABLE
    assert report.to_dict()["error_kind"] == "store_unavailable"


def test_ttl_workers_that_lose_the_store_are_reported(store, monkeypatch):
    monkeypatch.setattr(StockLedger, "decrement_non_atomic", _connection_reset)
    config = TtlExpiryConfig(
        lock_ttl_ms=200, work_duration_ms=400, contender_delay_ms=20, poll_interval_ms=20
    )

    report = run_ttl_expiry(store, config, mode="thread")

    assert report.dual_decrement is False
    assert report.holder.error_kind is ErrorKind.STORE_UNAVAILABLE
    assert report.contender.error_kind is ErrorKind.STORE_UNAVAILABLE
