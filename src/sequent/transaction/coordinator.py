from __future__ import annotations

import asyncio
import logging
from contextvars import ContextVar
from enum import Enum
from functools import partial
from inspect import isawaitable
from typing import (
    Any,
    Awaitable,
    Callable,
    List,
    Mapping,
    Optional,
    Sequence,
    Union,
)
from uuid import uuid4

from sequent.base.interface import BaseConnection, Result
from sequent.exception import (
    ClosedError,
    GroupClosedError,
    is_serialization_failure,
    is_unique_violation,
)
from sequent.sql.builder import KeyFields, insert_sql, query_sql, upsert_sql
from sequent.sql.bulk import bulk_insert_sql, unique_groups, unique_index_sql
from sequent.sql.quoter import Quoter

from .interfaces import (
    IsolationLevel,
    TransactionOptions,
    TransactionRolledBack,
)
from .savepoint import Scope

logger = logging.getLogger(__name__)

Body = Callable[[Any], Any]

current_scope: ContextVar[Optional[Scope]] = ContextVar(
    "current_scope", default=None
)


def new_savepoint_id() -> str:
    return str(uuid4())


async def retry_unique_violation(
    attempt: Awaitable[Result], resend: Callable[[], Awaitable[Result]]
) -> Result:
    """Await ``attempt``; on a unique violation, try exactly once more"""
    try:
        return await attempt
    except Exception as exc:
        if not is_unique_violation(exc):
            raise
        logger.info("Unique violation during upsert, retrying once: %s", exc)
    return await resend()


class TransactionState(Enum):
    """Transaction state machine states"""

    OPENING = "opening"  # BEGIN sent, body not started
    ACTIVE = "active"  # Body running
    FINISHING = "finishing"  # COMMIT or ROLLBACK sent
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class TransactionCoordinator:
    """
    Runs a transaction body against one exclusively held connection.

    Every command is sent as soon as it is issued and tracked by the
    completion group of the scope it was issued in. The transaction outcome
    resolves once the root scope has been committed (or rolled back) and
    everything it tracks has finished.

    Commands are only guaranteed to reach the database in program order when
    each one is awaited before the next is issued.
    """

    def __init__(
        self,
        connection: BaseConnection,
        body: Body,
        options: Optional[TransactionOptions] = None,
        quoter: Optional[Quoter] = None,
    ):
        self.transaction_id = f"txn_{uuid4().hex[:8]}"
        self.autorollback_on_error = True
        self._connection = connection
        self._body = body
        self._options = options or TransactionOptions()
        self._quoter = (
            quoter or getattr(connection, "quoter", None) or Quoter()
        )
        self._loop = asyncio.get_running_loop()
        self._state = TransactionState.OPENING
        self._root = Scope(self._loop)
        self._scopes: List[Scope] = [self._root]
        self._root.group.add_done_callback(self._on_finished)

        logger.debug(
            "Transaction %s opening: %s",
            self.transaction_id,
            self._options.begin_sql,
        )
        begun = self._submit(self._root, self._options.begin_sql)
        self._spawn(self._root, self._run(self._root, begun, body, self))

    # Commands

    def exec(
        self, sql: str, params: Optional[Sequence[Any]] = None
    ) -> asyncio.Future:
        """Execute a command in the current scope

        Args:
            sql (str): SQL text using ``$1``, ``$2``... placeholders
            params (Sequence[Any], optional): Positional parameters.
                Defaults to `None`.

        Raises:
            ClosedError: If the current scope has finished

        Returns:
            asyncio.Future: Resolves with the command's `Result`
        """
        return self._submit(self._current(), sql, params)

    def insert(self, table: str, fields: Mapping[str, Any]) -> asyncio.Future:
        return self.exec(*insert_sql(table, fields))

    def query(self, statement: Any) -> asyncio.Future:
        """Execute a SQLAlchemy Core statement"""
        return self.exec(*query_sql(statement))

    def upsert(
        self, table: str, key_fields: KeyFields, fields: Mapping[str, Any]
    ) -> asyncio.Future:
        """Update the row matching ``key_fields``, or insert it.

        A unique violation on the first attempt (a concurrent insert of the
        same key) is retried once with the identical statement.
        """
        sql, params = upsert_sql(table, key_fields, fields)
        scope = self._open_scope()
        first = self._send(sql, params)
        return self._track(
            scope,
            retry_unique_violation(first, partial(self._send, sql, params)),
        )

    def bulk_insert(
        self,
        table: str,
        columns: Sequence[str],
        rows: Sequence[Sequence[Any]],
    ) -> asyncio.Future:
        """Insert many rows at once, skipping unique-index duplicates

        Returns:
            asyncio.Future: Resolves with the number of rows inserted, which
                may be fewer than ``len(rows)``
        """
        scope = self._open_scope()
        return self._track(
            scope, self._bulk_insert(scope, table, list(columns), list(rows))
        )

    async def _bulk_insert(
        self,
        scope: Scope,
        table: str,
        columns: List[str],
        rows: List[Sequence[Any]],
    ) -> int:
        if not rows:
            return 0
        indexes = await self._submit(scope, *unique_index_sql(table))
        sql = bulk_insert_sql(
            table, columns, rows, unique_groups(indexes.rows), self._quoter
        )
        result = await self._submit(scope, sql)
        return result.rowcount

    # Scope control

    def commit(self) -> asyncio.Future:
        """Commit the transaction.

        Does nothing once the transaction has finished. A failed COMMIT is
        not followed by a ROLLBACK: the server has already ended the
        transaction one way or the other.
        """
        if self._root.finished:
            return self._resolved(None)

        logger.debug("Committing transaction %s", self.transaction_id)
        future = self._submit(self._root, "COMMIT", rollback_on_error=False)
        self._finish()
        future.add_done_callback(self._on_commit)
        return future

    def rollback(
        self, cause: Optional[BaseException] = None
    ) -> asyncio.Future:
        """Roll back the current scope.

        Inside a savepoint this rolls back to the savepoint only, and the
        savepoint's future fails with ``cause``. Otherwise the whole
        transaction is rolled back and its outcome fails with ``cause``.
        Does nothing once the current scope has finished, including a
        savepoint that was already rolled back after a failed command.
        """
        scope = self._current()
        if scope.finished:
            return self._resolved(None)
        if cause is None:
            cause = TransactionRolledBack(
                f"Transaction {self.transaction_id} rolled back"
            )
        return self._rollback_scope(scope, cause)

    def savepoint(self, body: Body) -> asyncio.Future:
        """Run ``body`` inside a new savepoint

        ``body`` is called with the savepoint's outcome future once the
        SAVEPOINT command has succeeded. It must not await that future.

        Args:
            body (Callable): Coroutine function (or plain function) run
                inside the savepoint

        Raises:
            ClosedError: If the current scope has finished

        Returns:
            asyncio.Future: Resolves with the body's return value, or fails
                with the reason the savepoint was rolled back
        """
        parent = self._open_scope()
        scope = Scope(self._loop, new_savepoint_id(), parent)
        parent.group.add(scope.settled)
        self._scopes.append(scope)
        scope.group.add_done_callback(partial(self._on_scope_done, scope))

        logger.debug(
            "Creating savepoint %s in transaction %s",
            scope.savepoint_id,
            self.transaction_id,
        )
        started = self._submit(scope, scope.savepoint_sql)
        self._spawn(scope, self._run(scope, started, body, scope.outcome))
        return scope.outcome

    # Internals

    def _current(self) -> Scope:
        """The scope whose body is running, else the innermost open scope"""
        scope = current_scope.get()
        if scope is not None and scope.root is self._root:
            return scope
        return self._scopes[-1]

    def _open_scope(self, scope: Optional[Scope] = None) -> Scope:
        scope = scope or self._current()
        if scope.finished:
            raise ClosedError(
                "Cannot execute a query in a transaction that has been closed"
            )
        if scope.group.closed:
            raise GroupClosedError(
                f"Cannot execute a query in {scope} after its body returned"
            )
        return scope

    def _send(
        self, sql: str, params: Optional[Sequence[Any]] = None
    ) -> asyncio.Future:
        values = list(params or ())
        logger.debug("%s: %s %r", self.transaction_id, sql, values)
        return asyncio.ensure_future(self._connection.execute(sql, values))

    def _submit(
        self,
        scope: Scope,
        sql: str,
        params: Optional[Sequence[Any]] = None,
        rollback_on_error: bool = True,
    ) -> asyncio.Future:
        self._open_scope(scope)
        return self._track(scope, self._send(sql, params), rollback_on_error)

    def _track(
        self,
        scope: Scope,
        awaitable: Awaitable,
        rollback_on_error: bool = True,
    ) -> asyncio.Future:
        future = scope.group.add(asyncio.ensure_future(awaitable))
        if rollback_on_error:
            future.add_done_callback(partial(self._on_command_done, scope))
        return future

    def _spawn(self, scope: Scope, coro: Awaitable) -> None:
        scope.group.add(asyncio.ensure_future(coro))

    def _resolved(self, value: Any) -> asyncio.Future:
        future = self._loop.create_future()
        future.set_result(value)
        return future

    async def _run(
        self, scope: Scope, started: asyncio.Future, body: Body, argument: Any
    ) -> None:
        current_scope.set(scope)
        try:
            await started
            if self._state is TransactionState.OPENING:
                self._state = TransactionState.ACTIVE
            result = body(argument)
            if isawaitable(result):
                result = await result
        except asyncio.CancelledError as exc:
            self._abort(scope, exc)
            raise
        except Exception as exc:
            self._abort(scope, exc)
        else:
            scope.result = result
            if scope.is_root:
                self.commit()
        finally:
            if not scope.is_root and not scope.group.closed:
                scope.group.close()

    def _abort(self, scope: Scope, exc: BaseException) -> None:
        if not scope.finished:
            self._rollback_scope(scope, exc)
        elif exc is not scope.group.failure:
            scope.group.fail(exc)
            logger.warning(
                "Transaction %s: %s raised after it finished",
                self.transaction_id,
                scope,
                exc_info=exc,
            )

    def _finish(self) -> None:
        self._state = TransactionState.FINISHING
        for scope in self._scopes:
            scope.finished = True

    def _unwind(self, scope: Scope, cause: BaseException) -> None:
        index = self._scopes.index(scope)
        for inner in reversed(self._scopes[index + 1 :]):
            inner.finished = inner.rolled_back = True
            inner.group.fail(cause)
            inner.settle(cause)
        del self._scopes[index + 1 :]

    def _rollback_scope(
        self, scope: Scope, cause: BaseException
    ) -> asyncio.Future:
        if scope.finished:
            return self._resolved(None)

        self._unwind(scope, cause)

        if scope.is_root:
            logger.info(
                "Rolling back transaction %s: %r", self.transaction_id, cause
            )
            future = self._submit(scope, "ROLLBACK", rollback_on_error=False)
            self._finish()
            scope.rolled_back = True
            future.add_done_callback(self._on_rollback)
            scope.group.fail(cause)
            scope.group.close()
            return future

        logger.info(
            "Rolling back to savepoint %s in transaction %s: %r",
            scope.savepoint_id,
            self.transaction_id,
            cause,
        )
        self._scopes.remove(scope)
        scope.finished = scope.rolled_back = True
        future = self._send(scope.rollback_sql)
        future.add_done_callback(
            partial(self._on_savepoint_rollback, scope, cause)
        )
        scope.group.fail(cause)
        if not scope.group.closed:
            scope.group.close()
        return future

    # Callbacks

    @staticmethod
    def _exception(future: asyncio.Future) -> Optional[BaseException]:
        if future.cancelled():
            return asyncio.CancelledError()
        return future.exception()

    def _on_command_done(self, scope: Scope, future: asyncio.Future) -> None:
        exc = self._exception(future)
        if exc is not None and self.autorollback_on_error:
            self._rollback_scope(scope, exc)

    def _on_commit(self, future: asyncio.Future) -> None:
        exc = self._exception(future)
        if exc is None:
            self._state = TransactionState.COMMITTED
            logger.info(
                "Transaction %s committed successfully", self.transaction_id
            )
        else:
            self._state = TransactionState.ROLLED_BACK
            logger.error(
                "Commit failed for %s: %s", self.transaction_id, exc
            )
        self._root.group.close()

    def _on_rollback(self, future: asyncio.Future) -> None:
        exc = self._exception(future)
        self._state = TransactionState.ROLLED_BACK
        if exc is None:
            logger.info(
                "Transaction %s rolled back successfully", self.transaction_id
            )
        else:
            logger.error(
                "Rollback failed for %s: %s", self.transaction_id, exc
            )

    def _on_savepoint_rollback(
        self, scope: Scope, cause: BaseException, future: asyncio.Future
    ) -> None:
        exc = self._exception(future)
        if exc is not None:
            logger.error(
                "Failed to rollback to savepoint %s: %s",
                scope.savepoint_id,
                exc,
            )
            self._rollback_scope(scope.parent, exc)
        scope.settle(cause)

    def _on_scope_done(self, scope: Scope, future: asyncio.Future) -> None:
        exc = self._exception(future)
        if scope.rolled_back:
            return
        if exc is not None and not scope.finished:
            self._rollback_scope(scope, exc)
            return
        if scope in self._scopes:
            self._scopes.remove(scope)
        scope.finished = True
        logger.debug(
            "Savepoint %s in transaction %s completed",
            scope.savepoint_id,
            self.transaction_id,
        )
        scope.settle(exc)

    def _on_finished(self, future: asyncio.Future) -> None:
        exc = self._exception(future)
        outcome = self._root.outcome
        if exc is None:
            outcome.set_result(self._root.result)
        elif self._options.retry and is_serialization_failure(exc):
            logger.info(
                "Transaction %s hit a serialization failure, retrying",
                self.transaction_id,
            )
            retry = TransactionCoordinator(
                self._connection, self._body, self._options, self._quoter
            )
            retry.outcome.add_done_callback(self._relay)
        else:
            outcome.set_exception(exc)

    def _relay(self, future: asyncio.Future) -> None:
        outcome = self._root.outcome
        if future.cancelled():
            outcome.cancel()
        elif future.exception() is not None:
            outcome.set_exception(future.exception())
        else:
            outcome.set_result(future.result())

    # Introspection

    @property
    def outcome(self) -> asyncio.Future:
        """Future resolving once the transaction has committed"""
        return self._root.outcome

    @property
    def state(self) -> TransactionState:
        return self._state

    @property
    def is_active(self) -> bool:
        """Check if transaction is active"""
        return self._state is TransactionState.ACTIVE

    @property
    def is_committed(self) -> bool:
        """Check if transaction is committed"""
        return self._state is TransactionState.COMMITTED

    @property
    def is_rolled_back(self) -> bool:
        """Check if transaction is rolled back"""
        return self._state is TransactionState.ROLLED_BACK

    @property
    def in_savepoint(self) -> bool:
        return len(self._scopes) > 1

    @property
    def isolation_level(self) -> Optional[str]:
        """Get the isolation level as a string"""
        isolation = self._options.isolation
        return isolation.value if isolation else None

    def __str__(self) -> str:
        return (
            f"<TransactionCoordinator {self.transaction_id} "
            f"({self._state.value})>"
        )


def run_transaction(
    connection: BaseConnection,
    body: Body,
    *,
    isolation: Union[IsolationLevel, str, None] = None,
    retry: bool = False,
    deferrable: bool = False,
    quoter: Optional[Quoter] = None,
) -> asyncio.Future:
    """Run ``body`` inside a database transaction

    The connection must not be used by anything else until the returned
    future resolves.

    Example:

    ```python
    async def body(txn):
        await txn.insert("users", {"name": "Adam"})
        await txn.commit()

    await run_transaction(connection, body, isolation="serializable")
    ```

    Args:
        connection (BaseConnection): Connection to run every command on
        body (Callable): Called with the `TransactionCoordinator` once BEGIN
            has succeeded. Returning without committing commits.
        isolation (Union[IsolationLevel, str], optional): Isolation level.
            Defaults to the server default.
        retry (bool, optional): Re-run the whole body on a serialization
            failure. Defaults to `False`.
        deferrable (bool, optional): Open the transaction as DEFERRABLE.
            Defaults to `False`.
        quoter (Quoter, optional): Literal quoting used by bulk inserts.
            Defaults to the connection's quoter, if it has one.

    Raises:
        ConfigurationError: If ``isolation`` is not a known level

    Returns:
        asyncio.Future: Resolves with the body's return value after COMMIT,
            or fails with the first unrecovered error
    """
    options = TransactionOptions(
        isolation=isolation, retry=retry, deferrable=deferrable
    )
    return TransactionCoordinator(connection, body, options, quoter).outcome
