"""
Single-row cache updates without rescanning the row store.

All operations work on a snapshot of a dataset that is already cached,
normally the one the calling transaction read under the reservation
mutex. When the dataset is not cached the operation does nothing: the
next full read will pick the change up from the row store anyway.
"""

import logging
from enum import Enum
from typing import Any, Mapping, Optional

from .config import CacheConfigurationError, CacheEntryTooLargeError, CacheWriteError
from .versioned import VersionedCache
from ..models.cache import CachedDataset
from ..models.schema import RowSchema

logger = logging.getLogger(__name__)


class IncrementalCacheUpdater:
    """
    Append, replace and patch rows of cached datasets.

    A snapshot passed in is modified in place and its ``version`` updated,
    so a transaction can apply several changes to one snapshot. A row that
    is missing from the snapshot is never fabricated; the dataset is
    invalidated instead and reconciled by the next rebuild. A failed write
    also invalidates; if that fails too, CacheWriteError reaches the caller.
    """

    def __init__(self, versioned_cache: VersionedCache):
        self.cache = versioned_cache
        self.stale_patches = 0

    async def append_row(
        self,
        dataset_key: Any,
        new_row: Mapping[str, Any],
        snapshot: Optional[CachedDataset] = None
    ) -> Optional[int]:
        """
        Append ``new_row`` (column name to value) to the cached dataset.

        Returns:
            New version, or None when nothing was cached
        """
        dataset = await self._snapshot(dataset_key, snapshot)
        if dataset is None:
            return None

        dataset.rows.append(RowSchema.encode_values(new_row, dataset.header))
        return await self._save(dataset_key, dataset)

    async def update_status(
        self,
        dataset_key: Any,
        row_id: Any,
        new_status: Any,
        snapshot: Optional[CachedDataset] = None
    ) -> Optional[int]:
        """Change only the ``status`` column of one row."""
        return await self.update_column(dataset_key, row_id, "status", new_status, snapshot)

    async def replace_row(
        self,
        dataset_key: Any,
        row_id: Any,
        new_row: Mapping[str, Any],
        snapshot: Optional[CachedDataset] = None
    ) -> Optional[int]:
        """Replace the row keyed ``row_id`` with ``new_row``."""
        dataset = await self._snapshot(dataset_key, snapshot)
        if dataset is None:
            return None

        position = dataset.find_row_index(self.cache.spec(dataset_key).key_column, row_id)
        if position < 0:
            return await self._defer_to_rebuild(dataset_key, row_id)

        dataset.rows[position] = RowSchema.encode_values(new_row, dataset.header)
        return await self._save(dataset_key, dataset)

    async def update_column(
        self,
        dataset_key: Any,
        row_id: Any,
        column: str,
        value: Any,
        snapshot: Optional[CachedDataset] = None
    ) -> Optional[int]:
        """Set one column of the row keyed ``row_id``."""
        dataset = await self._snapshot(dataset_key, snapshot)
        if dataset is None:
            return None

        column_index = dataset.column_index(column)
        if column_index < 0:
            logger.warning(f"Column {column} not in cached {self.cache.spec(dataset_key).key.value}")
            return await self._defer_to_rebuild(dataset_key, row_id)

        position = dataset.find_row_index(self.cache.spec(dataset_key).key_column, row_id)
        if position < 0:
            return await self._defer_to_rebuild(dataset_key, row_id)

        row = list(dataset.rows[position])
        row += [None] * (len(dataset.header) - len(row))
        row[column_index] = value.value if isinstance(value, Enum) else value
        dataset.rows[position] = row
        return await self._save(dataset_key, dataset)

    async def _snapshot(self, dataset_key: Any, snapshot: Optional[CachedDataset]) -> Optional[CachedDataset]:
        if snapshot is not None:
            return snapshot

        dataset = await self.cache.get_cached_data(dataset_key, auto_rebuild=False)
        if dataset is None:
            logger.debug(f"{self.cache.spec(dataset_key).key.value} not cached, skipping incremental update")
        return dataset

    async def _save(self, dataset_key: Any, dataset: CachedDataset) -> Optional[int]:
        """
        Write the patched snapshot, invalidating the dataset if that fails.

        Raises:
            CacheWriteError: If neither the write nor the invalidation
                reached Valkey
        """
        name = self.cache.spec(dataset_key).key.value
        try:
            dataset.version = await self.cache.save(dataset_key, dataset)
        except (CacheWriteError, CacheConfigurationError, CacheEntryTooLargeError) as e:
            logger.error(f"Incremental update of {name} failed, invalidating: {e}")
            await self.cache.invalidate(dataset_key)
            return None

        logger.debug(f"Incrementally updated {name} to v{dataset.version}")
        return dataset.version

    async def _defer_to_rebuild(self, dataset_key: Any, row_id: Any) -> None:
        name = self.cache.spec(dataset_key).key.value
        self.stale_patches += 1
        logger.warning(f"Row {row_id} not found in cached {name}; leaving it to the next rebuild")
        await self.cache.invalidate(dataset_key)
        return None
