"""
Immutable results and reports.

Workers produce ``AttemptResult`` (or a scenario specific outcome) and never
touch a report. Drivers collect results after the harness join barrier and
freeze them into a report; callers only ever see finalized reports.
"""

from __future__ import annotations

import statistics
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

from .exceptions import ErrorKind


def _as_dict(obj: Any) -> dict[str, Any]:
    data = asdict(obj)
    if data.get("error_kind") is not None:
        data["error_kind"] = data["error_kind"].value
    return data


def _is_infrastructure(kind: ErrorKind | None) -> bool:
    return kind is not None and kind.is_infrastructure


class Ownership(str, Enum):
    """
    What a lock's ``is_held`` answer is based on.

    - NONE: nothing is ever held (baseline strategy)
    - LOCAL: a flag kept by the instance, never checked against the store
    - VERIFIED: the store's value compared with this instance's token
    """

    NONE = "none"
    LOCAL = "local"
    VERIFIED = "verified"


@dataclass(frozen=True)
class AttemptResult:
    """One purchase attempt, as reported by the worker that made it."""

    process_id: str
    success: bool
    lock_acquired: bool
    stock_before: int
    stock_after: int
    duration_ms: float
    error: str | None = None
    error_kind: ErrorKind | None = None

    @property
    def infrastructure_failure(self) -> bool:
        return _is_infrastructure(self.error_kind)

    def to_dict(self) -> dict[str, Any]:
        return _as_dict(self)


@dataclass(frozen=True)
class WorkerFailure:
    """Left in a harness slot when a worker produced no result of its own."""

    index: int
    kind: ErrorKind
    message: str


@dataclass(frozen=True)
class ScenarioReport:
    """Aggregate over every attempt of one oversell run."""

    scenario: str
    strategy: str
    initial_stock: int
    final_stock: int
    elapsed_ms: float
    attempts: tuple[AttemptResult, ...] = ()

    @property
    def total(self) -> int:
        return len(self.attempts)

    @property
    def successes(self) -> int:
        return sum(1 for a in self.attempts if a.success)

    @property
    def failures(self) -> int:
        return self.total - self.successes

    @property
    def lock_failures(self) -> int:
        return sum(1 for a in self.attempts if a.error_kind == ErrorKind.LOCK_CONTENTION)

    @property
    def stock_failures(self) -> int:
        return sum(1 for a in self.attempts if a.error_kind == ErrorKind.INSUFFICIENT_STOCK)

    @property
    def infrastructure_failures(self) -> int:
        return sum(1 for a in self.attempts if a.infrastructure_failure)

    @property
    def expected_stock(self) -> int:
        return max(0, self.initial_stock - self.successes)

    @property
    def contention_rate(self) -> float:
        return self.lock_failures / max(1, self.total)

    @property
    def negative_stock(self) -> bool:
        return self.final_stock < 0

    @property
    def oversold(self) -> bool:
        """True when stock went negative or more orders succeeded than stock existed."""
        return self.negative_stock or self.successes > self.initial_stock

    def to_dict(self) -> dict[str, Any]:
        return {
            "scenario": self.scenario,
            "strategy": self.strategy,
            "initial_stock": self.initial_stock,
            "final_stock": self.final_stock,
            "expected_stock": self.expected_stock,
            "elapsed_ms": self.elapsed_ms,
            "total_attempts": self.total,
            "successes": self.successes,
            "failures": self.failures,
            "lock_failures": self.lock_failures,
            "stock_failures": self.stock_failures,
            "infrastructure_failures": self.infrastructure_failures,
            "contention_rate": self.contention_rate,
            "negative_stock": self.negative_stock,
            "oversold": self.oversold,
            "entries": [a.to_dict() for a in self.attempts],
        }


class ReportBuilder:
    """
    Collects attempt results for one run and freezes them into a report.

    Owned by the scenario driver. Results are appended one by one as they
    are read from the harness slots; nothing is visible to callers until
    ``finalize``.
    """

    def __init__(self, scenario: str, strategy: str, initial_stock: int) -> None:
        self.scenario = scenario
        self.strategy = strategy
        self.initial_stock = initial_stock
        self._attempts: list[AttemptResult] = []

    def add(self, result: AttemptResult) -> None:
        self._attempts.append(result)

    def finalize(self, final_stock: int, elapsed_ms: float) -> ScenarioReport:
        return ScenarioReport(
            scenario=self.scenario,
            strategy=self.strategy,
            initial_stock=self.initial_stock,
            final_stock=final_stock,
            elapsed_ms=elapsed_ms,
            attempts=tuple(self._attempts),
        )


@dataclass(frozen=True)
class DeadlockOutcome:
    process: str
    first: str
    second: str
    first_locked: bool = False
    second_locked: bool = False
    deadlocked: bool = False
    completed: bool = False
    duration_ms: float = 0.0
    error: str | None = None
    error_kind: ErrorKind | None = None


@dataclass(frozen=True)
class DeadlockReport:
    mitigated: bool
    lock_ttl_ms: int
    outcomes: tuple[DeadlockOutcome, ...]
    # TTL the locks were actually held with; outlives the wait for the second resource.
    hold_ttl_ms: int = 0

    @property
    def deadlock_detected(self) -> bool:
        return any(o.deadlocked for o in self.outcomes)

    @property
    def infrastructure_failures(self) -> int:
        return sum(1 for o in self.outcomes if _is_infrastructure(o.error_kind))

    @property
    def sustained_deadlock(self) -> bool:
        """Every worker timed out waiting for the other."""
        return bool(self.outcomes) and all(o.deadlocked for o in self.outcomes)

    @property
    def completed(self) -> int:
        return sum(1 for o in self.outcomes if o.completed)

    def to_dict(self) -> dict[str, Any]:
        return {
            "mitigated": self.mitigated,
            "lock_ttl_ms": self.lock_ttl_ms,
            "hold_ttl_ms": self.hold_ttl_ms,
            "deadlock_detected": self.deadlock_detected,
            "sustained_deadlock": self.sustained_deadlock,
            "completed": self.completed,
            "infrastructure_failures": self.infrastructure_failures,
            "outcomes": [_as_dict(o) for o in self.outcomes],
        }


@dataclass(frozen=True)
class CrashRecoveryReport:
    lock_ttl_ms: int
    holder_acquired: bool
    immediate_retry_acquired: bool
    recovered: bool
    recovery_wait_ms: float
    stock_before: int
    final_stock: int
    error: str | None = None
    error_kind: ErrorKind | None = None

    @property
    def immediate_retry_blocked(self) -> bool:
        return not self.immediate_retry_acquired

    @property
    def recovered_after_ttl(self) -> bool:
        """
        The contender got in, and not before the crashed holder's TTL ran out.

        The contender starts after the holder is gone, so it waits somewhat
        less than a full TTL. Half of it is the floor: an acquisition sooner
        than that was not waiting on expiry.
        """
        return (
            self.recovered
            and self.immediate_retry_blocked
            and self.recovery_wait_ms >= self.lock_ttl_ms * 0.5
        )

    def to_dict(self) -> dict[str, Any]:
        data = _as_dict(self)
        data["immediate_retry_blocked"] = self.immediate_retry_blocked
        data["recovered_after_ttl"] = self.recovered_after_ttl
        return data


@dataclass(frozen=True)
class TtlWorkerOutcome:
    process: str
    acquired: bool = False
    stock_read: int = -1
    decremented: bool = False
    released: bool = False
    acquired_at: float | None = None
    finished_at: float | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None


@dataclass(frozen=True)
class TtlExpiryReport:
    lock_ttl_ms: int
    work_duration_ms: int
    initial_stock: int
    final_stock: int
    holder: TtlWorkerOutcome
    contender: TtlWorkerOutcome

    @property
    def dual_decrement(self) -> bool:
        """Both workers decremented while each believed it held the lock."""
        return self.holder.decremented and self.contender.decremented

    @property
    def contender_entered_during_work(self) -> bool:
        return (
            self.contender.acquired_at is not None
            and self.holder.finished_at is not None
            and self.contender.acquired_at < self.holder.finished_at
        )

    @property
    def oversold(self) -> bool:
        successes = int(self.holder.decremented) + int(self.contender.decremented)
        return self.final_stock < 0 or successes > self.initial_stock

    def to_dict(self) -> dict[str, Any]:
        return {
            "lock_ttl_ms": self.lock_ttl_ms,
            "work_duration_ms": self.work_duration_ms,
            "ttl_shorter_than_work": self.lock_ttl_ms < self.work_duration_ms,
            "initial_stock": self.initial_stock,
            "final_stock": self.final_stock,
            "dual_decrement": self.dual_decrement,
            "contender_entered_during_work": self.contender_entered_during_work,
            "oversold": self.oversold,
            "holder": _as_dict(self.holder),
            "contender": _as_dict(self.contender),
        }


@dataclass(frozen=True)
class RetryOutcome:
    """
    One retrying worker.

    ``duration_ms`` is measured from the instant the run opened, shared by
    every worker, so durations are completion times on a common clock.
    """

    process_id: str
    success: bool
    retries: int
    duration_ms: float
    error: str | None = None
    error_kind: ErrorKind | None = None


@dataclass(frozen=True)
class PolicyReport:
    policy: str
    initial_stock: int
    final_stock: int
    total_duration_ms: float
    outcomes: tuple[RetryOutcome, ...] = field(default_factory=tuple)

    @property
    def successes(self) -> int:
        return sum(1 for o in self.outcomes if o.success)

    @property
    def failures(self) -> int:
        return len(self.outcomes) - self.successes

    @property
    def infrastructure_failures(self) -> int:
        """Workers that lost the store, as opposed to running out of retries or stock."""
        return sum(1 for o in self.outcomes if _is_infrastructure(o.error_kind))

    @property
    def total_retries(self) -> int:
        return sum(o.retries for o in self.outcomes)

    @property
    def mean_retries(self) -> float:
        return self.total_retries / max(1, len(self.outcomes))

    @property
    def mean_duration_ms(self) -> float:
        if not self.outcomes:
            return 0.0
        return statistics.fmean(o.duration_ms for o in self.outcomes)

    @property
    def fairness_stddev_ms(self) -> float:
        """Population standard deviation of completion times; lower is fairer."""
        if not self.outcomes:
            return 0.0
        return statistics.pstdev(o.duration_ms for o in self.outcomes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "policy": self.policy,
            "initial_stock": self.initial_stock,
            "final_stock": self.final_stock,
            "total_duration_ms": self.total_duration_ms,
            "successes": self.successes,
            "failures": self.failures,
            "infrastructure_failures": self.infrastructure_failures,
            "total_retries": self.total_retries,
            "mean_retries": self.mean_retries,
            "mean_duration_ms": self.mean_duration_ms,
            "fairness_stddev_ms": self.fairness_stddev_ms,
            "outcomes": [_as_dict(o) for o in self.outcomes],
        }


@dataclass(frozen=True)
class RetryComparison:
    reports: tuple[PolicyReport, ...]

    def by_policy(self) -> dict[str, PolicyReport]:
        return {r.policy: r for r in self.reports}

    def to_dict(self) -> dict[str, Any]:
        return {r.policy: r.to_dict() for r in self.reports}
