from .api import create_lock, locked
from .exceptions import ErrorKind, LockLabError, StoreUnavailable, WorkerSpawnError
from .harness import run_workers
from .ledger import StockLedger
from .orders import OrderCoordinator
from .store import RedisStore

__all__ = [
    "create_lock",
    "locked",
    "run_workers",
    "ErrorKind",
    "LockLabError",
    "OrderCoordinator",
    "RedisStore",
    "StockLedger",
    "StoreUnavailable",
    "WorkerSpawnError",
]
