from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from sequent.exception import ConfigurationError, SequentError


class IsolationLevel(Enum):
    """SQL transaction isolation levels"""

    READ_UNCOMMITTED = "READ UNCOMMITTED"
    READ_COMMITTED = "READ COMMITTED"
    REPEATABLE_READ = "REPEATABLE READ"
    SERIALIZABLE = "SERIALIZABLE"

    @classmethod
    def parse(
        cls, value: Union[IsolationLevel, str, None]
    ) -> Optional[IsolationLevel]:
        if value is None or isinstance(value, cls):
            return value
        if isinstance(value, str):
            normalized = " ".join(value.replace("_", " ").upper().split())
            for level in cls:
                if level.value == normalized:
                    return level
        raise ConfigurationError(
            f"Unknown value for isolation option: {value!r}"
        )


class TransactionError(SequentError):
    """Base exception for transaction errors"""

    pass


class TransactionRolledBack(TransactionError):
    """Raised when a transaction is rolled back without a specific cause"""

    pass


@dataclass(frozen=True)
class TransactionOptions:
    isolation: Optional[IsolationLevel] = None
    retry: bool = False
    deferrable: bool = False

    def __post_init__(self):
        object.__setattr__(
            self, "isolation", IsolationLevel.parse(self.isolation)
        )

    @property
    def begin_sql(self) -> str:
        sql = "BEGIN"
        if self.isolation is not None:
            sql += f" TRANSACTION ISOLATION LEVEL {self.isolation.value}"
        if self.deferrable:
            sql += " DEFERRABLE"
        return sql
