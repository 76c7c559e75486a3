from __future__ import annotations

from typing import Any, Optional

from psycopg.abc import AdaptContext
from psycopg.sql import Literal

from sequent.sql.builder import quote_identifier


class Quoter:
    """Render SQL literals and identifiers.

    Literals go through psycopg's adapters. When bound to a live connection
    (``context``), string escaping follows that connection's settings.
    """

    def __init__(self, context: Optional[AdaptContext] = None) -> None:
        self.context = context

    def literal(self, value: Any) -> str:
        return Literal(value).as_string(self.context)

    def identifier(self, name: str) -> str:
        return quote_identifier(name)

    def __repr__(self) -> str:
        bound = "bound" if self.context is not None else "unbound"
        return f"<{self.__class__.__name__} {bound}>"
