from ..models import Ownership


class NoOpLock:
    """
    Lock that provides no mutual exclusion at all.

    Baseline for the oversell scenario: every caller "acquires" at once and
    races on the shared counter. Expected under contention: lost updates and
    more successful orders than stock.

    The store is never contacted, so this lock cannot fail.
    """

    name = "NoLock (Baseline - No Coordination)"
    ownership = Ownership.NONE

    def acquire(self, resource: str, ttl_ms: int = 5000) -> bool:
        return True

    def release(self, resource: str) -> bool:
        return True

    def is_held(self, resource: str) -> bool:
        # Nothing is ever actually held.
        return False
