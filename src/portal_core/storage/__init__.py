"""Portal SQLite store: schema and repository helpers."""
from .exceptions import StoreError, StoreReadError, StoreWriteError
from .schema import connect, init_database

__all__ = [
    "StoreError",
    "StoreReadError",
    "StoreWriteError",
    "connect",
    "init_database",
]
