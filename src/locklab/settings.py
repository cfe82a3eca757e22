"""Configuration using pydantic-settings.

Everything is read from ``LOCKLAB_*`` environment variables or a ``.env``
file. Scenario parameters that change from run to run live in the per-run
config dataclasses of ``locklab.scenarios``, not here.
"""

from __future__ import annotations

from enum import Enum
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .store import RedisStore


class LogFormat(str, Enum):
    """Log renderers."""

    CONSOLE = "console"
    JSON = "json"


class Settings(BaseSettings):
    """Lab settings.

    Example: ``LOCKLAB_REDIS_URL=redis://redis:6379/1``.
    """

    model_config = SettingsConfigDict(
        env_prefix="LOCKLAB_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Shared store. Database 1 keeps the lab away from anything else.
    redis_url: str = Field("redis://localhost:6379/1", description="Shared store URL")
    socket_timeout: float = Field(5.0, gt=0, description="Store socket timeout in seconds")

    # Logging
    log_level: str = Field("INFO", description="Root log level")
    log_format: LogFormat = Field(LogFormat.CONSOLE, description="Log renderer")

    # Harness
    worker_mode: Literal["process", "thread"] = Field(
        "process", description="Unit of parallel execution for workers"
    )
    start_method: str | None = Field(
        None, description="multiprocessing start method, platform default when unset"
    )
    harness_timeout: float = Field(
        60.0, gt=0, description="Seconds to wait for all workers before giving up on stragglers"
    )
    poll_interval_ms: int = Field(50, gt=0, description="Sleep between lock acquire retries")

    def store(self) -> RedisStore:
        """Build the picklable store factory handed to worker processes."""
        return RedisStore(url=self.redis_url, socket_timeout=self.socket_timeout)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
