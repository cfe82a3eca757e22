from __future__ import annotations

from typing import Any

from ..api import STRATEGIES
from ..logging import configure_logging
from ..settings import Settings, get_settings
from .crash import CrashConfig, TtlExpiryConfig, run_crash_recovery, run_ttl_expiry
from .deadlock import DeadlockConfig, run_deadlock
from .oversell import OversellConfig, run_oversell
from .retry import RetryConfig, run_retry_comparison


def run_all(settings: Settings | None = None) -> dict[str, Any]:
    """
    Run every scenario once with default parameters.

    Logging, store, worker mode, harness timeout and polling interval come
    from ``settings``. Returns finalized reports keyed by scenario name.
    """
    settings = settings or get_settings()
    configure_logging(settings)
    store = settings.store()
    options = dict(
        mode=settings.worker_mode,
        timeout=settings.harness_timeout,
        start_method=settings.start_method,
    )
    poll = settings.poll_interval_ms

    reports: dict[str, Any] = {}
    for strategy in STRATEGIES:
        reports[f"oversell_{strategy}"] = run_oversell(
            store, OversellConfig(strategy=strategy, poll_interval_ms=poll), **options
        )
    reports["deadlock"] = run_deadlock(store, DeadlockConfig(poll_interval_ms=poll), **options)
    reports["deadlock_mitigated"] = run_deadlock(
        store, DeadlockConfig(mitigate=True, poll_interval_ms=poll), **options
    )
    reports["crash_recovery"] = run_crash_recovery(
        store, CrashConfig(poll_interval_ms=poll), **options
    )
    reports["ttl_expiry"] = run_ttl_expiry(store, TtlExpiryConfig(), **options)
    reports["retry"] = run_retry_comparison(store, RetryConfig(), **options)
    return reports


__all__ = [
    "CrashConfig",
    "DeadlockConfig",
    "OversellConfig",
    "RetryConfig",
    "TtlExpiryConfig",
    "run_all",
    "run_crash_recovery",
    "run_deadlock",
    "run_oversell",
    "run_retry_comparison",
    "run_ttl_expiry",
]
