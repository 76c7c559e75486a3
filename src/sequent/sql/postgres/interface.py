from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional
from urllib.parse import urlparse

from psycopg_pool import AsyncConnectionPool

from sequent.exception import ConfigurationError
from sequent.sql.quoter import Quoter
from sequent.transaction.coordinator import Body, TransactionCoordinator
from sequent.transaction.interfaces import TransactionOptions

from .executor import PostgresConnection

logger = logging.getLogger(__name__)


class PostgresPool:
    """Interface for connecting to a Postgres database"""

    scheme = "postgres"

    def __init__(
        self,
        dsn: str,
        min_size: int = 1,
        max_size: Optional[int] = None,
    ) -> None:
        """Pool initialization.

        Connections are opened in autocommit mode so that every transaction
        is delimited by its own BEGIN and COMMIT/ROLLBACK.

        Args:
            dsn (str): DB data source name
            min_size (int, optional): Minimum number of connections in pool.
                Defaults to 1
            max_size (int, optional): Maximum number of connections in pool.
                Defaults to None
        """
        if not dsn or not isinstance(dsn, str):
            raise ConfigurationError("dsn: must be a non-empty string")
        if max_size is not None and max_size < min_size:
            raise ConfigurationError(
                "max_size: must not be smaller than min_size"
            )

        self._full_dsn = dsn
        self._min_size = min_size
        self._max_size = max_size
        self._pool = AsyncConnectionPool(
            dsn,
            min_size=min_size,
            max_size=max_size,
            kwargs={"autocommit": True},
            open=False,
        )

    def __str__(self) -> str:
        return f"<{self.__class__.__name__} {self.dsn}>"

    @property
    def dsn(self) -> str:
        parts = urlparse(self._full_dsn)
        if not parts.password:
            return self._full_dsn
        return self._full_dsn.replace(f":{parts.password}@", ":...@", 1)

    @property
    def min_size(self):
        return self._min_size

    @property
    def max_size(self):
        return self._max_size

    async def open(self):
        """Open connections to the pool"""
        await self._pool.open()

    async def close(self):
        """Close connections to the pool"""
        await self._pool.close()

    @asynccontextmanager
    async def connection(
        self, timeout: Optional[float] = None
    ) -> AsyncIterator[PostgresConnection]:
        """Hold one connection for exclusive use

        Args:
            timeout (float, optional): Time before an error is raised on
                failure to connect. Defaults to `None`.

        Yields:
            PostgresConnection: A database connection
        """
        async with self._pool.connection(timeout=timeout) as conn:
            yield PostgresConnection(conn)

    async def transaction(
        self,
        body: Body,
        quoter: Optional[Quoter] = None,
        timeout: Optional[float] = None,
        **options: Any,
    ) -> Any:
        """Run ``body`` in a transaction on a connection held from the pool.

        The connection goes back to the pool only after the transaction has
        committed or failed. Keyword options are those of `run_transaction`.
        """
        config = TransactionOptions(**options)
        async with self.connection(timeout=timeout) as connection:
            logger.debug("Holding %s for a transaction", connection)
            coordinator = TransactionCoordinator(
                connection, body, config, quoter
            )
            return await coordinator.outcome
