from .interface import BaseConnection, Result

__all__ = ("BaseConnection", "Result")
