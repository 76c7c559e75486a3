import asyncio
from dataclasses import dataclass
from typing import Any, List, Optional, Pattern, Tuple, Union
from unittest.mock import AsyncMock, MagicMock

import pytest

from sequent.base.interface import BaseConnection, Result
from sequent.exception import DatabaseError
from sequent.sql.postgres import interface
from sequent.transaction import coordinator


@dataclass
class Script:
    match: Union[str, Pattern]
    result: Optional[Result] = None
    error: Optional[BaseException] = None
    delay: float = 0

    def matches(self, sql: str) -> bool:
        if isinstance(self.match, str):
            return self.match == sql
        return self.match.search(sql) is not None


class FakeConnection(BaseConnection):
    """Records every command in the order it reaches the "database".

    Commands succeed with an empty `Result` unless a script says otherwise.
    Each script answers a single command, first match wins.
    """

    def __init__(self):
        self.wire: List[Tuple[str, List[Any]]] = []
        self.events: List[Tuple[str, str]] = []
        self._scripts: List[Script] = []

    def respond(self, match, result=None, delay=0):
        self._scripts.append(Script(match, result=result, delay=delay))

    def fail(self, match, error=None, delay=0):
        if error is None:
            error = DatabaseError("OMFG")
        self._scripts.append(Script(match, error=error, delay=delay))

    async def execute(self, sql, params=None):
        self.wire.append((sql, list(params or [])))
        self.events.append(("send", sql))
        script = self._take(sql)
        try:
            if script is not None and script.delay:
                await asyncio.sleep(script.delay)
            if script is not None and script.error is not None:
                raise script.error
            if script is not None and script.result is not None:
                return script.result
            return Result()
        finally:
            self.events.append(("done", sql))

    def _take(self, sql):
        for script in self._scripts:
            if script.matches(sql):
                self._scripts.remove(script)
                return script
        return None

    @property
    def statements(self) -> List[str]:
        return [sql for sql, _ in self.wire]


@pytest.fixture
def connection():
    return FakeConnection()


@pytest.fixture
def savepoint_ids(monkeypatch):
    ids = []

    def next_id():
        return ids.pop(0)

    monkeypatch.setattr(coordinator, "new_savepoint_id", next_id)
    return ids


@pytest.fixture
def psycopg_cursor():
    cursor = MagicMock()
    cursor.description = [("id",)]
    cursor.rowcount = 1
    cursor.fetchall = AsyncMock(return_value=[{"id": 1}])
    return cursor


@pytest.fixture
def psycopg_connection(psycopg_cursor):
    conn = MagicMock()
    conn.autocommit = True
    conn.execute = AsyncMock(return_value=psycopg_cursor)
    return conn


class PoolConnectionContext:
    def __init__(self, conn):
        self.conn = conn

    async def __aenter__(self):
        return self.conn

    async def __aexit__(self, *args):
        pass


@pytest.fixture
def mock_postgres_pool(monkeypatch, psycopg_connection):
    pool = AsyncMock()
    pool.connection = MagicMock(
        return_value=PoolConnectionContext(psycopg_connection)
    )
    mock = MagicMock(return_value=pool)
    monkeypatch.setattr(interface, "AsyncConnectionPool", mock)
    return mock
