"""
Transaction coordination: one connection, ordered commands, nested
savepoints and optional retry on serialization failures.
"""

from .coordinator import (
    TransactionCoordinator,
    TransactionState,
    run_transaction,
)
from .interfaces import (
    IsolationLevel,
    TransactionError,
    TransactionOptions,
    TransactionRolledBack,
)
from .savepoint import Scope

__all__ = [
    "TransactionCoordinator",
    "TransactionState",
    "run_transaction",
    "IsolationLevel",
    "TransactionError",
    "TransactionOptions",
    "TransactionRolledBack",
    "Scope",
]
