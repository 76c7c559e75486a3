from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence


@dataclass
class Result:
    """The outcome of one command: returned rows and affected row count"""

    rows: List[Dict[str, Any]] = field(default_factory=list)
    rowcount: int = 0

    def first(self) -> Optional[Dict[str, Any]]:
        return self.rows[0] if self.rows else None

    def __len__(self) -> int:
        return len(self.rows)


class BaseConnection(ABC):
    """A connection that runs commands in exactly the order submitted.

    Commands use ``$1``, ``$2``... positional placeholders. Failures should
    expose a ``sqlstate`` so that unique violations and serialization
    failures can be told apart from everything else.
    """

    @abstractmethod
    async def execute(
        self, sql: str, params: Optional[Sequence[Any]] = None
    ) -> Result: ...
