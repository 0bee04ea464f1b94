"""
Chunked dataset storage on top of a size-limited key/value medium.

A dataset whose serialized form fits under the chunk limit is stored as one
entry. Larger datasets are split by rows into numbered chunks written under
``<key>#chunk#<i>`` plus a metadata entry under ``<key>``. Every chunk carries
the version of the set it belongs to, and the metadata entry is written
last, so a reader either reassembles one complete version or gets a miss.
"""

import json
import logging
import math
import re
from typing import Any, List, Optional

from .config import CacheConfigurationError, CachePolicy, CacheWriteError
from .manager import CacheManager
from .utils import TTLCalculator, key_manager
from ..models.cache import ChunkMeta, ChunkPayload, ChunkSet, RowSet

logger = logging.getLogger(__name__)

# Share of the limit targeted by the size estimate before verification
ESTIMATE_HEADROOM = 0.8
MAX_SAMPLE_ROWS = 50

# Entries are serialized with "version" as their first field
VERSION_HEAD_BYTES = 64
_VERSION_HEAD = re.compile(r"^\{\"version\":(\d+),")


def _dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def _size(payload: str) -> int:
    return len(payload.encode("utf-8"))


class ChunkedCacheStore:
    """
    ``put`` / ``get`` / ``delete`` of whole datasets under one key.

    Args:
        cache_manager: Backing medium
        policy: Chunk limit, chunk cap and expiry; defaults to the manager's
    """

    def __init__(self, cache_manager: CacheManager, policy: Optional[CachePolicy] = None):
        self.cache = cache_manager
        self.policy = policy or cache_manager.policy
        self.ttl_calculator = TTLCalculator()

    async def put(
        self,
        key: str,
        dataset: RowSet,
        max_entry_size_kb: Optional[int] = None,
        schema_version: int = 1,
        ttl: Optional[int] = None
    ) -> int:
        """
        Store ``dataset`` under ``key`` and return its new version.

        Raises:
            CacheConfigurationError: If the dataset needs more than
                ``max_chunks`` chunks, or a single row exceeds the limit
            CacheWriteError: If a write did not reach Valkey; the previous
                entry may still be readable and must be invalidated
        """
        limit_bytes = (max_entry_size_kb or self.policy.chunk_size_limit_kb) * 1024
        if limit_bytes > self.cache.max_entry_size_bytes:
            raise CacheConfigurationError(
                f"Chunk limit {limit_bytes} bytes is above the entry ceiling "
                f"{self.cache.max_entry_size_bytes} bytes"
            )

        previous = await self.get_meta(key)
        version = await self.cache.incr(key_manager.version_key(key))
        if ttl is None:
            ttl = self.ttl_calculator.calculate_ttl_with_jitter(
                self.policy.cache_expiry_seconds, self.policy.ttl_jitter_percent
            )

        header = list(dataset.header)
        rows = dataset.rows
        meta = {
            "version": version,
            "chunked": False,
            "totalChunks": 1,
            "totalCount": len(rows),
            "headerSchema": header,
            "schemaVersion": schema_version,
            "rows": rows,
        }

        single = _dumps(meta)
        if _size(single) <= limit_bytes:
            await self.cache.put_raw(key, single, ttl)
            await self._delete_stale_chunks(key, previous, keep=0)
            logger.debug(f"Cached {key} v{version} as single entry ({len(rows)} rows)")
            return version

        groups = self._split_rows(key, rows, version, limit_bytes)
        if len(groups) > self.policy.max_chunks:
            raise CacheConfigurationError(
                f"{key} needs {len(groups)} chunks, limit is {self.policy.max_chunks}"
            )

        for index, group in enumerate(groups):
            await self.cache.put_raw(
                key_manager.chunk_key(key, index), self._chunk_payload(index, version, group), ttl
            )

        meta.update({"chunked": True, "totalChunks": len(groups)})
        del meta["rows"]
        await self.cache.put_raw(key, _dumps(meta), ttl)
        await self._delete_stale_chunks(key, previous, keep=len(groups))

        logger.info(f"Cached {key} v{version} in {len(groups)} chunks ({len(rows)} rows)")
        return version

    async def get(self, key: str) -> Optional[ChunkSet]:
        """
        Reassemble the entry under ``key``.

        Returns:
            ChunkSet, or None when the entry is absent, malformed, or any
            chunk is missing or belongs to another version
        """
        meta = await self.get_meta(key)
        if meta is None:
            return None

        if not meta.chunked:
            if len(meta.rows) != meta.total_count:
                logger.warning(f"Row count mismatch in {key}, treating as miss")
                return None
            chunks = [ChunkPayload(index=0, version=meta.version, rows=meta.rows)]
            return self._chunk_set(key, meta, chunks)

        if meta.total_chunks > self.policy.max_chunks:
            logger.warning(f"{key} claims {meta.total_chunks} chunks, treating as miss")
            return None

        chunk_keys = [key_manager.chunk_key(key, index) for index in range(meta.total_chunks)]
        raw_chunks = await self.cache.get_many_raw(chunk_keys)

        chunks: List[ChunkPayload] = []
        for index, raw in enumerate(raw_chunks):
            if raw is None:
                logger.info(f"Chunk {index} of {key} missing, treating as miss")
                return None
            try:
                chunk = ChunkPayload.model_validate(json.loads(raw))
            except (TypeError, ValueError) as e:
                logger.warning(f"Chunk {index} of {key} unreadable ({e}), treating as miss")
                return None
            if chunk.index != index or chunk.version != meta.version:
                logger.info(
                    f"Chunk {index} of {key} is v{chunk.version}, expected v{meta.version}; treating as miss"
                )
                return None
            chunks.append(chunk)

        if sum(len(chunk.rows) for chunk in chunks) != meta.total_count:
            logger.warning(f"Row count mismatch in {key}, treating as miss")
            return None

        return self._chunk_set(key, meta, chunks)

    async def get_meta(self, key: str) -> Optional[ChunkMeta]:
        """Read only the metadata entry; malformed metadata reads as None."""
        raw = await self.cache.get_raw(key)
        if raw is None:
            return None

        try:
            return ChunkMeta.model_validate(json.loads(raw))
        except (TypeError, ValueError) as e:
            logger.warning(f"Malformed cache metadata under {key}: {e}")
            return None

    async def delete(self, key: str) -> int:
        """Remove the entry and its chunks. The version counter is kept."""
        meta = await self.get_meta(key)
        if meta is None:
            chunk_count = self.policy.max_chunks
        else:
            chunk_count = meta.total_chunks if meta.chunked else 0

        keys = [key] + [key_manager.chunk_key(key, index) for index in range(chunk_count)]
        deleted = await self.cache.delete_many(keys)
        logger.debug(f"Deleted {deleted} entries for {key}")
        return deleted

    async def get_version(self, key: str) -> Optional[int]:
        """
        Version of the entry currently stored, None when absent.

        Only the head of the entry is fetched; rows are not decoded unless
        the head does not carry a readable version.
        """
        head = await self.cache.get_head(key, VERSION_HEAD_BYTES)
        if head is None:
            return None

        match = _VERSION_HEAD.match(head)
        if match:
            return int(match.group(1))

        meta = await self.get_meta(key)
        return meta.version if meta else None

    async def _delete_stale_chunks(self, key: str, previous: Optional[ChunkMeta], keep: int) -> None:
        if previous is None or not previous.chunked or previous.total_chunks <= keep:
            return
        stale = [key_manager.chunk_key(key, index) for index in range(keep, previous.total_chunks)]
        try:
            await self.cache.delete_many(stale)
        except CacheWriteError as e:
            # Leftover chunks carry an older version and never reassemble
            logger.warning(f"Could not delete {len(stale)} stale chunks of {key}: {e}")

    def _split_rows(self, key: str, rows: List[List[Any]], version: int, limit_bytes: int) -> List[List[List[Any]]]:
        """
        Group rows so each chunk payload serializes within ``limit_bytes``.

        Group size is estimated from a sample of rows, then every group is
        verified and halved until it fits. Row order is preserved.
        """
        sample_size = max(1, min(math.ceil(len(rows) * 0.1), MAX_SAMPLE_ROWS))
        sample = rows[:sample_size]
        average = sum(_size(_dumps(row)) + 1 for row in sample) / len(sample)
        per_chunk = max(1, int(limit_bytes * ESTIMATE_HEADROOM / average))

        pending = [rows[start:start + per_chunk] for start in range(0, len(rows), per_chunk)]
        pending.reverse()

        groups: List[List[List[Any]]] = []
        while pending:
            group = pending.pop()
            if _size(self._chunk_payload(len(groups), version, group)) <= limit_bytes:
                groups.append(group)
                continue
            if len(group) == 1:
                raise CacheConfigurationError(f"A single row of {key} exceeds {limit_bytes} bytes")
            middle = len(group) // 2
            pending.append(group[middle:])
            pending.append(group[:middle])

        return groups

    @staticmethod
    def _chunk_payload(index: int, version: int, rows: List[List[Any]]) -> str:
        return _dumps({"index": index, "version": version, "rows": rows})

    @staticmethod
    def _chunk_set(key: str, meta: ChunkMeta, chunks: List[ChunkPayload]) -> ChunkSet:
        return ChunkSet(
            base_key=key,
            version=meta.version,
            chunked=meta.chunked,
            total_chunks=meta.total_chunks,
            total_count=meta.total_count,
            header_schema=meta.header_schema,
            schema_version=meta.schema_version,
            chunks=chunks,
        )
