"""
RowStore: the durable, authoritative table storage behind the cache.

Full scans are slow, so every backend counts them; the cache layer is
expected to scan only when rebuilding a dataset.
"""

import logging
from abc import ABC, abstractmethod
from collections import Counter
from typing import Any, List, Mapping

from ..models.cache import RowSet

logger = logging.getLogger(__name__)


class RowStoreError(Exception):
    """Base class for row store failures."""
    pass


class SheetNotFoundError(RowStoreError):
    """Raised when a sheet has not been defined."""
    pass


class RowStoreWriteError(RowStoreError):
    """Raised when a write could not be made durable."""
    pass


class RowNotFoundError(RowStoreWriteError):
    """Raised when an update targets a row key that does not exist."""
    pass


class RowStore(ABC):
    """
    Interface of a row-oriented store.

    Rows are positional lists laid out by the sheet header. Writes take a
    column-name mapping and are laid out by the store, so callers never
    depend on column order.
    """

    def __init__(self):
        self.scan_counts: Counter = Counter()

    @property
    def scan_count(self) -> int:
        """Total number of full scans served."""
        return sum(self.scan_counts.values())

    def scan_all(self, sheet_name: str) -> RowSet:
        """
        Read a whole sheet.

        Raises:
            SheetNotFoundError: If the sheet is not defined
        """
        self.scan_counts[sheet_name] += 1
        row_set = self._scan_all(sheet_name)
        logger.debug(f"Scanned {sheet_name}: {len(row_set.rows)} rows")
        return row_set

    @abstractmethod
    def _scan_all(self, sheet_name: str) -> RowSet:
        ...

    @abstractmethod
    def define_sheet(self, sheet_name: str, header: List[str], key_column: str) -> None:
        """Create a sheet, or replace the header of an empty one."""

    @abstractmethod
    def header(self, sheet_name: str) -> List[str]:
        ...

    @abstractmethod
    def append_row(self, sheet_name: str, values: Mapping[str, Any]) -> List[Any]:
        """
        Append one row and return it as stored (header order).

        Raises:
            RowStoreWriteError: If the row cannot be written
        """

    @abstractmethod
    def update_row(self, sheet_name: str, row_id: Any, patch: Mapping[str, Any]) -> List[Any]:
        """
        Patch columns of the row keyed ``row_id`` and return the row as stored.

        Raises:
            RowNotFoundError: If no row has that key
            RowStoreWriteError: If the patch names unknown columns or the
                write fails
        """

    @staticmethod
    def _check_columns(sheet_name: str, header: List[str], values: Mapping[str, Any]) -> None:
        unknown = [name for name in values if name not in header]
        if unknown:
            raise RowStoreWriteError(f"Unknown columns for {sheet_name}: {unknown}")
