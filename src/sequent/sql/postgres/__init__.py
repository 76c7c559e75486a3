from .executor import PostgresConnection
from .interface import PostgresPool

__all__ = ("PostgresConnection", "PostgresPool")
