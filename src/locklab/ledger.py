from __future__ import annotations

import time

import redis

from .keys import STOCK_PREFIX, stock_key

# Check-and-decrement in one server-side step.
DECREMENT_SCRIPT = """
local current = tonumber(redis.call("GET", KEYS[1]) or "0")
if current >= tonumber(ARGV[1]) then
    redis.call("DECRBY", KEYS[1], ARGV[1])
    return 1
else
    return 0
end
"""


class StockLedger:
    """
    Stock counters kept in the shared store.

    Two decrement paths exist on purpose. ``decrement_atomic`` is what a
    real system would use. ``decrement_non_atomic`` is a read-modify-write
    that only stays correct if a lock keeps callers apart; the order
    coordinator uses it so that an unsafe lock actually shows up as
    overselling.
    """

    def __init__(self, client: redis.Redis) -> None:
        self._client = client
        self._decrement = client.register_script(DECREMENT_SCRIPT)

    def set_stock(self, product_id: str, quantity: int) -> None:
        self._client.set(stock_key(product_id), quantity)

    # Setting an absolute value is idempotent, so a reset is just a set.
    reset_stock = set_stock

    def get_stock(self, product_id: str) -> int:
        """Current stock; a missing counter reads as 0."""
        value = self._client.get(stock_key(product_id))
        return int(value) if value is not None else 0

    def decrement_atomic(self, product_id: str, quantity: int = 1) -> bool:
        return self._decrement(keys=[stock_key(product_id)], args=[quantity]) == 1

    def decrement_non_atomic(
        self, product_id: str, quantity: int = 1, simulated_delay_ms: float = 0
    ) -> bool:
        """
        GET, check, wait, SET: the classic lost-update pattern.

        The check is made on the value read, and the write stores
        ``read - quantity`` without reading again::

            A: GET -> 1
            B: GET -> 1        both see 1
            A: SET 0
            B: SET 0           lost update, two sales from one unit

        Parameters
        ----------
        simulated_delay_ms : float
            Work between the read and the write. Widens the race window.

        Returns
        -------
        bool
            True if stock was at least ``quantity`` at read time.
        """
        current = self.get_stock(product_id)

        if current < quantity:
            return False

        if simulated_delay_ms > 0:
            time.sleep(simulated_delay_ms / 1000)

        self._client.set(stock_key(product_id), current - quantity)
        return True

    def increment_stock(self, product_id: str, quantity: int = 1) -> None:
        """Put units back, e.g. when an order is rolled back."""
        self._client.incrby(stock_key(product_id), quantity)

    def reset(self) -> None:
        """Remove every stock counter."""
        keys = list(self._client.scan_iter(match=f"{STOCK_PREFIX}*"))
        if keys:
            self._client.delete(*keys)
