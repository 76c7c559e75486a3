from typing import Optional

UNIQUE_VIOLATION = "23505"
SERIALIZATION_FAILURE = "40001"


class SequentError(Exception):
    """Base exception for sequent"""

    pass


class UsageError(SequentError):
    """Raised synchronously when the API is used incorrectly"""

    pass


class ClosedError(UsageError):
    """Raised when a command is issued in a finished scope"""

    pass


class GroupClosedError(ClosedError):
    """Raised when a closed completion group is used"""

    pass


class ArgumentError(UsageError, ValueError):
    """Raised when arguments cannot be turned into SQL"""

    pass


class ConfigurationError(ArgumentError):
    """Raised when a transaction or pool option is invalid"""

    pass


class DatabaseError(SequentError):
    """A command failure reported by the database.

    Connections backed by psycopg raise ``psycopg.errors`` instead; both carry
    a ``sqlstate`` so they classify the same way.
    """

    sqlstate: Optional[str] = None

    def __init__(self, message: str = "", sqlstate: Optional[str] = None):
        super().__init__(message)
        if sqlstate is not None:
            self.sqlstate = sqlstate


class UniqueViolation(DatabaseError):
    """Raised when a command violates a unique constraint"""

    sqlstate = UNIQUE_VIOLATION


class SerializationFailure(DatabaseError):
    """Raised when a transaction conflicts with a concurrent one"""

    sqlstate = SERIALIZATION_FAILURE


def is_unique_violation(exc: Optional[BaseException]) -> bool:
    return getattr(exc, "sqlstate", None) == UNIQUE_VIOLATION


def is_serialization_failure(exc: Optional[BaseException]) -> bool:
    return getattr(exc, "sqlstate", None) == SERIALIZATION_FAILURE
