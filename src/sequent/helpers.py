"""
One-shot operations for callers that do not need a transaction body.

Each helper accepts either a connection or a ``PostgresPool``. With a pool, a
connection is held only for the duration of the call.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from functools import partial
from typing import Any, AsyncIterator, Mapping, Optional, Sequence, Union

from sequent.base.interface import BaseConnection, Result
from sequent.sql.builder import KeyFields, insert_sql, upsert_sql
from sequent.sql.postgres.interface import PostgresPool
from sequent.sql.quoter import Quoter
from sequent.transaction.coordinator import (
    Body,
    retry_unique_violation,
    run_transaction,
)

Database = Union[BaseConnection, PostgresPool]


@asynccontextmanager
async def _hold(db: Database) -> AsyncIterator[BaseConnection]:
    if isinstance(db, PostgresPool):
        async with db.connection() as connection:
            yield connection
    else:
        yield db


async def db_insert(
    db: Database, table: str, fields: Mapping[str, Any]
) -> Result:
    """Insert a single row outside of any transaction"""
    sql, params = insert_sql(table, fields)
    async with _hold(db) as connection:
        return await connection.execute(sql, params)


async def db_upsert(
    db: Database, table: str, key_fields: KeyFields, fields: Mapping[str, Any]
) -> Result:
    """Update or insert a single row outside of any transaction.

    The statement is retried once if a concurrent insert of the same key
    causes a unique violation.
    """
    sql, params = upsert_sql(table, key_fields, fields)
    async with _hold(db) as connection:
        resend = partial(connection.execute, sql, params)
        return await retry_unique_violation(resend(), resend)


async def db_bulk_insert(
    db: Database,
    table: str,
    columns: Sequence[str],
    rows: Sequence[Sequence[Any]],
    quoter: Optional[Quoter] = None,
) -> int:
    """Insert many rows in a transaction of their own

    Rows that would violate a unique index on ``table`` are skipped.

    Returns:
        int: The number of rows actually inserted
    """
    async with _hold(db) as connection:
        return await run_transaction(
            connection,
            lambda txn: txn.bulk_insert(table, columns, rows),
            quoter=quoter,
        )


async def db_transaction(db: Database, body: Body, **options: Any) -> Any:
    """Run ``body`` in a transaction; see `run_transaction` for options"""
    if isinstance(db, PostgresPool):
        return await db.transaction(body, **options)
    return await run_transaction(db, body, **options)
