"""
Versioned dataset cache with rebuild on miss.

Each registered dataset lives under its own key and is rebuilt
independently from the row store when its entry is absent, incomplete or
written with another schema version. Concurrent misses for the same
dataset within one process share a single rebuild.

A dataset whose cache write failed is marked unsynced: reads in this process
skip whatever Valkey still holds for it and rebuild from the row store until
a write goes through again.
"""

import asyncio
import logging
import time
from collections import Counter
from typing import Any, Dict, List, Optional, Set

from .chunked_store import ChunkedCacheStore
from .config import CacheWriteError
from .datasets import DATASETS, DatasetSpec
from .utils import key_manager
from ..models.cache import CachedDataset, CacheInfo
from ..models.enums import DatasetKey
from ..store.base import RowStore

logger = logging.getLogger(__name__)


class VersionedCache:
    """
    Read path for cached datasets.

    Versions are opaque integers assigned by the chunked store on every
    put; callers compare them for equality only.
    """

    def __init__(
        self,
        store: ChunkedCacheStore,
        row_store: RowStore,
        datasets: Optional[Dict[Any, DatasetSpec]] = None
    ):
        self.store = store
        self.row_store = row_store
        self.datasets = datasets or DATASETS
        self.rebuild_counts: Counter = Counter()
        self._rebuilds: Dict[str, "asyncio.Task[CachedDataset]"] = {}
        self._unsynced: Set[str] = set()

    def spec(self, dataset_key: Any) -> DatasetSpec:
        try:
            return self.datasets[DatasetKey(dataset_key)]
        except (KeyError, ValueError):
            raise KeyError(f"Unknown dataset: {dataset_key}") from None

    def cache_key(self, dataset_key: Any) -> str:
        return key_manager.dataset_key(self.spec(dataset_key).key)

    async def get_cached_data(self, dataset_key: Any, auto_rebuild: bool = True) -> Optional[CachedDataset]:
        """
        Return the cached dataset, rebuilding it on a miss.

        Args:
            dataset_key: DatasetKey or its value
            auto_rebuild: False returns None on a miss instead of scanning
                the row store

        Raises:
            RowStoreError: If a needed rebuild cannot read the row store
            CacheConfigurationError: If the rebuilt dataset cannot be cached
        """
        spec = self.spec(dataset_key)
        dataset = await self._read(spec)
        if dataset is not None or not auto_rebuild:
            return dataset

        rebuilt = await self.rebuild(spec.key)
        if not rebuilt.cached:
            return rebuilt
        dataset = await self._read(spec)
        if dataset is None:
            logger.warning(f"{spec.key.value} missing right after rebuild, serving rebuilt copy")
            return rebuilt
        return dataset

    async def _read(self, spec: DatasetSpec) -> Optional[CachedDataset]:
        if spec.key.value in self._unsynced:
            logger.debug(f"{spec.key.value} is unsynced, bypassing cache")
            return None

        chunk_set = await self.store.get(self.cache_key(spec.key))
        if chunk_set is None:
            logger.debug(f"Cache miss for {spec.key.value}")
            return None

        if chunk_set.schema_version != spec.schema_version:
            logger.info(
                f"{spec.key.value} cached with schema v{chunk_set.schema_version}, "
                f"expected v{spec.schema_version}; treating as miss"
            )
            return None

        return CachedDataset(
            key=spec.key.value,
            version=chunk_set.version,
            schema_version=chunk_set.schema_version,
            header=chunk_set.header_schema,
            rows=chunk_set.rows,
        )

    async def rebuild(self, dataset_key: Any) -> CachedDataset:
        """
        Rebuild one dataset from the row store.

        A rebuild already running for the same dataset is joined instead of
        starting a second scan.
        """
        spec = self.spec(dataset_key)
        name = spec.key.value

        task = self._rebuilds.get(name)
        if task is None:
            task = asyncio.ensure_future(self._rebuild(spec))
            self._rebuilds[name] = task
            task.add_done_callback(lambda _done, n=name: self._rebuilds.pop(n, None))
        else:
            logger.debug(f"Joining in-flight rebuild of {name}")

        return await task

    async def _rebuild(self, spec: DatasetSpec) -> CachedDataset:
        started = time.time()
        name = spec.key.value
        row_set = spec.transform(self.row_store.scan_all(spec.sheet_name))
        self.rebuild_counts[name] += 1

        try:
            version = await self.store.put(
                self.cache_key(spec.key), row_set, schema_version=spec.schema_version
            )
        except CacheWriteError as e:
            self._unsynced.add(name)
            logger.warning(f"Rebuilt {name} but could not cache it, serving row store copy: {e}")
            return CachedDataset(
                key=name,
                version=0,
                schema_version=spec.schema_version,
                header=row_set.header,
                rows=row_set.rows,
                cached=False,
            )
        self._unsynced.discard(name)

        logger.info(
            f"Rebuilt {name} v{version}: {len(row_set.rows)} rows "
            f"in {(time.time() - started) * 1000:.1f}ms"
        )
        return CachedDataset(
            key=name,
            version=version,
            schema_version=spec.schema_version,
            header=row_set.header,
            rows=row_set.rows,
        )

    async def save(self, dataset_key: Any, dataset: CachedDataset) -> int:
        """
        Write a modified snapshot back and return its new version.

        Raises:
            CacheWriteError: If Valkey refused the write; the previous
                entry may still be there and must be invalidated
        """
        spec = self.spec(dataset_key)
        version = await self.store.put(
            self.cache_key(spec.key), dataset.to_row_set(), schema_version=spec.schema_version
        )
        self._unsynced.discard(spec.key.value)
        return version

    async def invalidate(self, dataset_key: Any) -> None:
        """
        Drop a dataset so the next read rebuilds it.

        Raises:
            CacheWriteError: If the entry could not be deleted. The dataset
                stays marked unsynced, so reads here still bypass it.
        """
        spec = self.spec(dataset_key)
        try:
            await self.store.delete(self.cache_key(spec.key))
        except CacheWriteError:
            self._unsynced.add(spec.key.value)
            logger.error(f"Could not invalidate {spec.key.value}, bypassing its cache entry")
            raise
        logger.info(f"Invalidated {spec.key.value}")

    def is_unsynced(self, dataset_key: Any) -> bool:
        return self.spec(dataset_key).key.value in self._unsynced

    async def clear_all(self) -> int:
        """
        Drop every cached dataset entry and chunk.

        Version counters are kept, so versions written afterwards still
        increase.
        """
        deleted = await self.store.cache.clear_pattern(key_manager.dataset_pattern())
        logger.info(f"Cleared {deleted} dataset cache entries")
        return deleted

    async def rebuild_all(self) -> Dict[str, Optional[int]]:
        """
        Rebuild every registered dataset.

        A failing dataset is logged and reported as None; the others are
        still rebuilt.
        """
        versions: Dict[str, Optional[int]] = {}
        for spec in self.datasets.values():
            try:
                rebuilt = await self.rebuild(spec.key)
                versions[spec.key.value] = rebuilt.version if rebuilt.cached else None
            except Exception as e:
                logger.error(f"Rebuild of {spec.key.value} failed: {e}")
                versions[spec.key.value] = None
        return versions

    async def get_cache_versions(self) -> Dict[str, Optional[int]]:
        """Version currently cached for each dataset, None where absent. Reads metadata only."""
        return {
            spec.key.value: await self.store.get_version(self.cache_key(spec.key))
            for spec in self.datasets.values()
        }

    async def get_cache_info(self, dataset_key: Any) -> CacheInfo:
        spec = self.spec(dataset_key)
        cache_key = self.cache_key(spec.key)
        meta = await self.store.get_meta(cache_key)
        if meta is None:
            return CacheInfo(key=spec.key.value, exists=False)

        return CacheInfo(
            key=spec.key.value,
            exists=True,
            version=meta.version,
            schema_version=meta.schema_version,
            total_count=meta.total_count,
            total_chunks=meta.total_chunks,
            chunked=meta.chunked,
            ttl_seconds=await self.store.cache.get_ttl(cache_key),
        )

    async def get_all_cache_info(self) -> List[CacheInfo]:
        return [await self.get_cache_info(spec.key) for spec in self.datasets.values()]

    def decode(self, dataset_key: Any, dataset: CachedDataset) -> List[Any]:
        """Typed records of a cached dataset; malformed rows are skipped."""
        return self.spec(dataset_key).schema.decode_all(dataset.header, dataset.rows)
