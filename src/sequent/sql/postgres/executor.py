from __future__ import annotations

from typing import Any, Optional, Sequence

from psycopg import AsyncConnection
from psycopg.rows import dict_row

from sequent.base.interface import BaseConnection, Result
from sequent.convert import convert_sql_params
from sequent.exception import ConfigurationError
from sequent.sql.quoter import Quoter


class PostgresConnection(BaseConnection):
    """Runs commands on a psycopg connection in autocommit mode.

    Autocommit is required: transactions are opened with an explicit BEGIN,
    which psycopg would otherwise nest inside its own implicit transaction.
    """

    def __init__(self, connection: AsyncConnection):
        if not connection.autocommit:
            raise ConfigurationError(
                "PostgresConnection requires a connection in autocommit mode"
            )
        self._connection = connection
        self.quoter = Quoter(connection)

    @property
    def connection(self) -> AsyncConnection:
        return self._connection

    async def execute(
        self, sql: str, params: Optional[Sequence[Any]] = None
    ) -> Result:
        if params:
            query, values = convert_sql_params(sql, params)
            cursor = await self._connection.execute(query, values)
        else:
            cursor = await self._connection.execute(sql)

        if cursor.description is None:
            return Result(rowcount=cursor.rowcount)
        cursor.row_factory = dict_row
        rows = await cursor.fetchall()
        return Result(rows=rows, rowcount=cursor.rowcount)

    def __str__(self) -> str:
        return f"<{self.__class__.__name__} {self._connection}>"
