"""
Caching layer for the booking core.

Valkey client and configuration, the key/value cache manager, chunked and
versioned dataset caching, and incremental single-row updates.
"""

from .config import (
    ValkeyConfig,
    CachePolicy,
    ValkeyConnectionError,
    CacheConfigurationError,
    CacheEntryTooLargeError,
    CacheWriteError,
)
from .client import ValkeyClient, get_client, close_global_client
from .utils import (
    CacheKeyPrefix,
    TTLPreset,
    CacheKeyBuilder,
    TTLCalculator,
    CacheKeyManager,
    key_manager
)
from .manager import CacheManager, CacheStats, CircuitBreaker, InProcessStore
from .chunked_store import ChunkedCacheStore
from .datasets import DATASETS, DatasetSpec, get_dataset_spec, bootstrap_sheets
from .versioned import VersionedCache
from .incremental import IncrementalCacheUpdater

__all__ = [
    # Configuration
    "ValkeyConfig",
    "CachePolicy",
    "ValkeyConnectionError",
    "CacheConfigurationError",
    "CacheEntryTooLargeError",
    "CacheWriteError",

    # Client
    "ValkeyClient",
    "get_client",
    "close_global_client",

    # Manager
    "CacheManager",
    "CacheStats",
    "CircuitBreaker",
    "InProcessStore",

    # Datasets
    "ChunkedCacheStore",
    "DATASETS",
    "DatasetSpec",
    "get_dataset_spec",
    "bootstrap_sheets",
    "VersionedCache",
    "IncrementalCacheUpdater",

    # Utilities
    "CacheKeyPrefix",
    "TTLPreset",
    "CacheKeyBuilder",
    "TTLCalculator",
    "CacheKeyManager",
    "key_manager",
]
