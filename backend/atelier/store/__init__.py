"""
Row stores: the authoritative storage the cache mirrors.
"""

from .base import (
    RowStore,
    RowStoreError,
    RowStoreWriteError,
    RowNotFoundError,
    SheetNotFoundError,
)
from .memory import InMemoryRowStore
from .sql import SqlRowStore

__all__ = [
    "RowStore",
    "RowStoreError",
    "RowStoreWriteError",
    "RowNotFoundError",
    "SheetNotFoundError",
    "InMemoryRowStore",
    "SqlRowStore",
]
