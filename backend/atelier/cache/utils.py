"""
Cache key naming conventions and TTL helpers.

Every key the package writes is built here so that dataset entries, their
chunks, version counters and locks share one namespace.
"""

import random
from enum import Enum
from typing import Any, Union

CHUNK_SEPARATOR = "#chunk#"


class CacheKeyPrefix(str, Enum):
    """Standard cache key prefixes."""

    DATASET = "atelier:dataset"
    DATASET_VERSION = "atelier:version"
    LOCK = "atelier:lock"
    HEALTH = "atelier:health"


class TTLPreset(int, Enum):
    """TTL presets in seconds."""

    LOCK = 60               # reservation mutex lease
    HEALTH_CHECK = 60
    DATASET = 86400         # 24 hours


class CacheKeyBuilder:
    """
    Builds colon separated cache keys.

    Example:
        build_key(CacheKeyPrefix.DATASET, "reservations")
        # Returns: "atelier:dataset:reservations"
    """

    @staticmethod
    def build_key(prefix: Union[CacheKeyPrefix, str], *parts: Any, **params: Any) -> str:
        prefix_str = prefix.value if isinstance(prefix, CacheKeyPrefix) else str(prefix)
        key_parts = [prefix_str]

        for part in parts:
            if part is not None:
                key_parts.append(str(part.value if isinstance(part, Enum) else part))

        for name, value in sorted(params.items()):
            if value is not None:
                key_parts.append(f"{name}={value}")

        return ":".join(key_parts)

    @staticmethod
    def build_pattern(prefix: Union[CacheKeyPrefix, str], *parts: str) -> str:
        """Build a key pattern for SCAN, e.g. ``atelier:dataset:*``."""
        prefix_str = prefix.value if isinstance(prefix, CacheKeyPrefix) else str(prefix)
        return ":".join([prefix_str, *parts])


class TTLCalculator:
    """TTL calculation with jitter to keep related keys from expiring together."""

    @staticmethod
    def calculate_ttl_with_jitter(
        base_ttl: Union[int, TTLPreset],
        jitter_percent: float = 0.1,
        min_ttl: int = 30
    ) -> int:
        """
        Calculate TTL with random jitter.

        Args:
            base_ttl: Base TTL in seconds
            jitter_percent: Jitter as fraction of base TTL (0.0 to 1.0)
            min_ttl: Lower bound for the result

        Returns:
            int: TTL with jitter applied

        Example:
            calculate_ttl_with_jitter(3600, 0.1)  # 3240-3960 seconds
        """
        base_seconds = int(base_ttl)
        jitter_range = int(base_seconds * jitter_percent)
        jitter = random.randint(-jitter_range, jitter_range)
        return max(base_seconds + jitter, min_ttl)


class CacheKeyManager:
    """Key generation for datasets, chunks, versions and locks."""

    def __init__(self):
        self.key_builder = CacheKeyBuilder()

    def dataset_key(self, dataset: Union[str, Enum]) -> str:
        """Key of a dataset's metadata (or single) entry."""
        return self.key_builder.build_key(CacheKeyPrefix.DATASET, dataset)

    def chunk_key(self, base_key: str, index: int) -> str:
        """Key of chunk ``index`` of a chunked entry: ``<base>#chunk#<index>``."""
        return f"{base_key}{CHUNK_SEPARATOR}{index}"

    def version_key(self, base_key: str) -> str:
        """Key of the monotonically increasing version counter for ``base_key``."""
        return self.key_builder.build_key(CacheKeyPrefix.DATASET_VERSION, base_key)

    def lock_key(self, resource_key: str) -> str:
        return self.key_builder.build_key(CacheKeyPrefix.LOCK, resource_key)

    def dataset_pattern(self) -> str:
        return self.key_builder.build_pattern(CacheKeyPrefix.DATASET, "*")


# Global key manager instance
key_manager = CacheKeyManager()
