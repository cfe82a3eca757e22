from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import redis

from .exceptions import StoreUnavailable


class StoreFactory(Protocol):
    """
    Opens connections to the shared store.

    Every worker calls ``connect()`` itself, so no client is ever shared
    across a worker boundary. Factories used in process mode must be
    picklable.
    """
    def connect(self) -> redis.Redis: ...


@dataclass(frozen=True)
class RedisStore:
    """
    Factory for redis-py clients pointing at one Redis instance.

    Only the URL and timeout travel to worker processes; each process builds
    its own connection pool after it starts.
    """

    url: str
    socket_timeout: float = 5.0

    def connect(self) -> redis.Redis:
        """
        Open a client and check that the store answers.

        Raises
        ------
        StoreUnavailable
            If the initial PING fails.
        """
        client = redis.Redis.from_url(
            self.url,
            decode_responses=True,
            socket_timeout=self.socket_timeout,
            socket_connect_timeout=self.socket_timeout,
        )
        try:
            client.ping()
        except (redis.ConnectionError, redis.TimeoutError) as e:
            client.close()
            raise StoreUnavailable(f"Cannot connect to Redis at {self.url}: {e}") from e
        return client


def flush(client: redis.Redis) -> None:
    """Remove every key of the lab database."""
    client.flushdb()
