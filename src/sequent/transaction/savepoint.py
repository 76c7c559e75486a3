"""
Scopes of a transaction: the root transaction and nested savepoints.
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional

from sequent.group import CompletionGroup
from sequent.sql.builder import quote_identifier


class Scope:
    """
    A unit of work inside a transaction with its own completion group.

    The root scope has no savepoint id. A savepoint scope also carries an
    ``outcome`` future handed to the caller, and a ``settled`` future that
    its parent's group waits on. ``settled`` never fails, so a savepoint
    failure only reaches the parent through ``outcome``.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        savepoint_id: Optional[str] = None,
        parent: Optional[Scope] = None,
    ):
        self.savepoint_id = savepoint_id
        self.parent = parent
        self.group = CompletionGroup(loop)
        self.outcome: asyncio.Future = loop.create_future()
        self.settled: asyncio.Future = loop.create_future()
        self.finished = False
        self.rolled_back = False
        self.result: Any = None

    @property
    def is_root(self) -> bool:
        return self.savepoint_id is None

    @property
    def root(self) -> Scope:
        scope = self
        while scope.parent is not None:
            scope = scope.parent
        return scope

    @property
    def savepoint_sql(self) -> str:
        return f"SAVEPOINT {quote_identifier(self.savepoint_id)}"

    @property
    def rollback_sql(self) -> str:
        if self.is_root:
            return "ROLLBACK"
        return f"ROLLBACK TO {quote_identifier(self.savepoint_id)}"

    def settle(self, exc: Optional[BaseException] = None) -> None:
        if not self.outcome.done():
            if exc is not None:
                self.outcome.set_exception(exc)
            else:
                self.outcome.set_result(self.result)
        if not self.settled.done():
            self.settled.set_result(None)

    def __str__(self) -> str:
        if self.rolled_back:
            status = "rolled back"
        elif self.finished:
            status = "finished"
        else:
            status = "active"
        name = "root" if self.is_root else self.savepoint_id
        return f"<Scope {name} ({status})>"
