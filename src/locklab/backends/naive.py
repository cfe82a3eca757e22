import redis

from ..keys import lock_key
from ..models import Ownership


class NaiveLock:
    """
    Redis lock built from SETNX followed by a separate PEXPIRE.

    This is the lock most people write first. It is kept deliberately broken
    so the scenarios can show why it is not enough.

    Known defects
    -------------
    - Acquire is two commands. A caller that dies after SETNX and before
      PEXPIRE leaves a key with no expiry: the resource is locked forever.
    - Release deletes unconditionally. Any caller, including one that never
      acquired, can free somebody else's lock, letting two workers believe
      they are both inside the critical section.
    - ``is_held`` reports a local flag. It is what this instance *believes*,
      not what the store says; the lock may have expired or been deleted by
      another worker long ago.
    """

    name = "Naive Redis Lock (SETNX + EXPIRE - Unsafe)"
    ownership = Ownership.LOCAL

    def __init__(self, client: redis.Redis) -> None:
        self._client = client
        self._held: dict[str, bool] = {}

    def acquire(self, resource: str, ttl_ms: int = 5000) -> bool:
        key = lock_key(resource)

        if not self._client.setnx(key, "1"):
            return False

        # Not atomic with SETNX: dying here leaves a lock without TTL.
        self._client.pexpire(key, ttl_ms)
        self._held[resource] = True
        return True

    def release(self, resource: str) -> bool:
        # No ownership check.
        self._client.delete(lock_key(resource))
        self._held.pop(resource, None)
        return True

    def is_held(self, resource: str) -> bool:
        return self._held.get(resource, False)
