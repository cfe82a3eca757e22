import secrets

LOCK_PREFIX = "lock:"
STOCK_PREFIX = "inventory:"


def lock_key(resource: str) -> str:
    """Store key holding the lock record for ``resource``."""
    return f"{LOCK_PREFIX}{resource}"


def stock_key(product_id: str) -> str:
    """Store key holding the stock counter for ``product_id``."""
    return f"{STOCK_PREFIX}{product_id}"


def new_token() -> str:
    """
    Generate a fresh ownership token for one acquisition attempt.

    Why a random token
    ------------------
    The token is the only proof of ownership the store can check at release
    time. It must be unguessable and unique across processes and machines,
    so it comes from the OS CSPRNG rather than from a counter or a pid.

    Returns
    -------
    str
        32 hex characters, i.e. 128 bits of entropy.
    """
    return secrets.token_hex(16)
