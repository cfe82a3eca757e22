import time

import pytest
import redis

from locklab.api import acquire_within, create_lock, locked, release_quietly
from locklab.backends.naive import NaiveLock
from locklab.backends.noop import NoOpLock
from locklab.backends.safe import SafeLock
from locklab.models import Ownership

# Context manager tests

class DummyBackend:
    name = "dummy"
    ownership = Ownership.LOCAL

    def __init__(self):
        self.acquired = []
        self.released = []

    def acquire(self, resource: str, ttl_ms: int = 5000) -> bool:
        self.acquired.append((resource, ttl_ms))
        return True

    def release(self, resource: str) -> bool:
        self.released.append(resource)
        return True

    def is_held(self, resource: str) -> bool:
        return False


def test_locked_acquires_and_releases():
    be = DummyBackend()

    with locked(be, "test-key", ttl_ms=1000) as acquired:
        assert acquired is True

    assert be.acquired == [("test-key", 1000)]
    assert be.released == ["test-key"]


class NeverBackend(DummyBackend):
    def acquire(self, resource: str, ttl_ms: int = 5000) -> bool:
        self.acquired.append((resource, ttl_ms))
        return False

    def release(self, resource: str) -> bool:
        raise AssertionError("release should not be called")


def test_locked_reports_contention_without_raising():
    be = NeverBackend()

    with locked(be, "test-key") as acquired:
        assert acquired is False

    assert len(be.acquired) == 1


def test_locked_releases_when_body_raises():
    be = DummyBackend()

    with pytest.raises(ValueError):
        with locked(be, "test-key"):
            raise ValueError("boom")

    assert be.released == ["test-key"]


# Polling

def test_acquire_within_polls_until_deadline():
    be = NeverBackend()

    t0 = time.monotonic()
    assert acquire_within(be, "k", 1000, timeout_ms=100, poll_interval_ms=20) is False
    elapsed = time.monotonic() - t0

    assert elapsed >= 0.09
    assert 2 <= len(be.acquired) <= 6


class EventuallyBackend(DummyBackend):
    def __init__(self, succeed_on: int):
        super().__init__()
        self.succeed_on = succeed_on

    def acquire(self, resource: str, ttl_ms: int = 5000) -> bool:
        self.acquired.append((resource, ttl_ms))
        return len(self.acquired) >= self.succeed_on


def test_acquire_within_returns_once_acquired():
    be = EventuallyBackend(succeed_on=3)

    assert acquire_within(be, "k", 1000, timeout_ms=1000, poll_interval_ms=5) is True
    assert len(be.acquired) == 3


def test_acquire_within_zero_timeout_tries_once():
    be = NeverBackend()

    assert acquire_within(be, "k", 1000, timeout_ms=0) is False
    assert len(be.acquired) == 1


# Strategy selection

def test_create_lock_selects_strategy(client):
    assert isinstance(create_lock("none", client), NoOpLock)
    assert isinstance(create_lock("naive", client), NaiveLock)
    assert isinstance(create_lock("safe", client), SafeLock)


def test_create_lock_rejects_unknown_strategy(client):
    with pytest.raises(ValueError, match="unknown lock strategy"):
        create_lock("redlock", client)


class UnreachableBackend(DummyBackend):
    def release(self, resource: str) -> bool:
        raise redis.ConnectionError("connection refused")


def test_release_quietly_survives_store_outage():
    assert release_quietly(UnreachableBackend(), "k") is False
