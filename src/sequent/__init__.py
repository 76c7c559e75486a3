from importlib.metadata import version

from .base.interface import BaseConnection, Result
from .group import CompletionGroup
from .helpers import db_bulk_insert, db_insert, db_transaction, db_upsert
from .sql.postgres.executor import PostgresConnection
from .sql.postgres.interface import PostgresPool
from .sql.quoter import Quoter
from .transaction import (
    IsolationLevel,
    TransactionCoordinator,
    TransactionOptions,
    run_transaction,
)

__version__ = version("sequent")

__all__ = (
    "BaseConnection",
    "Result",
    "CompletionGroup",
    "db_bulk_insert",
    "db_insert",
    "db_transaction",
    "db_upsert",
    "PostgresConnection",
    "PostgresPool",
    "Quoter",
    "IsolationLevel",
    "TransactionCoordinator",
    "TransactionOptions",
    "run_transaction",
)
