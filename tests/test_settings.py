import logging
import pickle

import pytest
import structlog

from locklab.exceptions import StoreUnavailable
from locklab.logging import configure_logging, get_logger
from locklab.settings import LogFormat, Settings
from locklab.store import RedisStore


def test_defaults():
    settings = Settings(_env_file=None)

    assert settings.redis_url == "redis://localhost:6379/1"
    assert settings.worker_mode == "process"
    assert settings.log_format is LogFormat.CONSOLE


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("LOCKLAB_REDIS_URL", "redis://redis:6379/3")
    monkeypatch.setenv("LOCKLAB_WORKER_MODE", "thread")
    monkeypatch.setenv("LOCKLAB_HARNESS_TIMEOUT", "5")

    settings = Settings(_env_file=None)

    assert settings.redis_url == "redis://redis:6379/3"
    assert settings.worker_mode == "thread"
    assert settings.harness_timeout == 5.0


def test_invalid_worker_mode_is_rejected(monkeypatch):
    monkeypatch.setenv("LOCKLAB_WORKER_MODE", "greenlet")

    with pytest.raises(ValueError):
        Settings(_env_file=None)


def test_store_factory_is_picklable():
    store = Settings(_env_file=None, redis_url="redis://redis:6379/1").store()

    assert isinstance(store, RedisStore)
    assert pickle.loads(pickle.dumps(store)) == store


def test_unreachable_store_raises_store_unavailable():
    store = RedisStore(url="redis://127.0.0.1:1/0", socket_timeout=0.5)

    with pytest.raises(StoreUnavailable) as exc:
        store.connect()

    assert exc.value.code == "store_unavailable"


def test_configure_logging_json(caplog):
    caplog.set_level(logging.INFO)
    configure_logging(Settings(_env_file=None, log_format="json"))
    try:
        get_logger("locklab.test").info("lock.acquired", resource="r")
    finally:
        structlog.reset_defaults()

    messages = [r.getMessage() for r in caplog.records if r.name == "locklab.test"]
    assert any('"event": "lock.acquired"' in m and '"resource": "r"' in m for m in messages)
