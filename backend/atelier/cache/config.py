"""
Settings for the cache layer.

``ValkeyConfig`` describes how to reach the Valkey server shared by the
dataset cache and the reservation lock; ``CachePolicy`` sizes dataset
entries so none exceeds the server's per-entry ceiling. Both read
``VALKEY_*`` / ``CACHE_*`` variables, with ``.env`` loaded first.
"""

import os
import logging
from typing import Optional, Dict, Any
from dataclasses import dataclass
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class ValkeyConfig:
    """Where the booking cache lives and how its connection pool behaves."""

    host: str = "localhost"
    port: int = 6379
    password: Optional[str] = None
    database: int = 0
    max_connections: int = 10
    socket_timeout: float = 5.0
    socket_connect_timeout: float = 5.0
    retry_on_timeout: bool = True
    health_check_interval: int = 30
    decode_responses: bool = True

    @classmethod
    def from_env(cls) -> "ValkeyConfig":
        defaults = cls()
        return cls(
            host=os.getenv("VALKEY_HOST", defaults.host),
            port=int(os.getenv("VALKEY_PORT", defaults.port)),
            password=os.getenv("VALKEY_PASSWORD") or None,
            database=int(os.getenv("VALKEY_DATABASE", defaults.database)),
            max_connections=int(os.getenv("VALKEY_MAX_CONNECTIONS", defaults.max_connections)),
            socket_timeout=float(os.getenv("VALKEY_SOCKET_TIMEOUT", defaults.socket_timeout)),
            socket_connect_timeout=float(
                os.getenv("VALKEY_SOCKET_CONNECT_TIMEOUT", defaults.socket_connect_timeout)
            ),
            retry_on_timeout=_env_flag("VALKEY_RETRY_ON_TIMEOUT", defaults.retry_on_timeout),
            health_check_interval=int(os.getenv("VALKEY_HEALTH_CHECK_INTERVAL", defaults.health_check_interval)),
            decode_responses=_env_flag("VALKEY_DECODE_RESPONSES", defaults.decode_responses),
        )

    def to_connection_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for a single ``valkey.Valkey`` connection."""
        kwargs: Dict[str, Any] = dict(
            host=self.host,
            port=self.port,
            db=self.database,
            socket_timeout=self.socket_timeout,
            socket_connect_timeout=self.socket_connect_timeout,
            retry_on_timeout=self.retry_on_timeout,
            decode_responses=self.decode_responses,
        )
        if self.password:
            kwargs["password"] = self.password
        return kwargs

    def to_connection_pool_kwargs(self) -> Dict[str, Any]:
        return {**self.to_connection_kwargs(), "max_connections": self.max_connections}

    def __str__(self) -> str:
        secret = "***" if self.password else "None"
        return (
            f"ValkeyConfig({self.host}:{self.port}/{self.database}, "
            f"password={secret}, pool={self.max_connections})"
        )


@dataclass
class CachePolicy:
    """
    Dataset cache sizing and expiry.

    ``max_entry_size_kb`` is the hard ceiling of the backing medium; datasets
    are split into chunks of at most ``chunk_size_limit_kb`` so every entry
    stays below it.
    """

    cache_expiry_seconds: int = 86400
    chunk_size_limit_kb: int = 90
    max_chunks: int = 20
    max_entry_size_kb: int = 100
    ttl_jitter_percent: float = 0.1

    def __post_init__(self) -> None:
        if self.chunk_size_limit_kb <= 0 or self.max_chunks <= 0:
            raise CacheConfigurationError(
                f"Invalid cache policy: chunk_size_limit_kb={self.chunk_size_limit_kb}, "
                f"max_chunks={self.max_chunks}"
            )
        if self.chunk_size_limit_kb > self.max_entry_size_kb:
            raise CacheConfigurationError(
                f"chunk_size_limit_kb ({self.chunk_size_limit_kb}) exceeds the entry "
                f"ceiling ({self.max_entry_size_kb})"
            )

    @classmethod
    def from_env(cls) -> "CachePolicy":
        """Create CachePolicy from CACHE_* environment variables."""
        return cls(
            cache_expiry_seconds=int(os.getenv("CACHE_EXPIRY_SECONDS", "86400")),
            chunk_size_limit_kb=int(os.getenv("CACHE_CHUNK_SIZE_LIMIT_KB", "90")),
            max_chunks=int(os.getenv("CACHE_MAX_CHUNKS", "20")),
            max_entry_size_kb=int(os.getenv("CACHE_MAX_ENTRY_SIZE_KB", "100")),
            ttl_jitter_percent=float(os.getenv("CACHE_TTL_JITTER_PERCENT", "0.1")),
        )

    @property
    def chunk_size_limit_bytes(self) -> int:
        return self.chunk_size_limit_kb * 1024

    @property
    def max_entry_size_bytes(self) -> int:
        return self.max_entry_size_kb * 1024


class ValkeyConnectionError(Exception):
    """Raised when the Valkey server cannot be reached."""
    pass


class CacheWriteError(Exception):
    """Raised when a write cannot reach Valkey while a client is configured."""

    def __init__(self, key: str, reason: str):
        self.key = key
        super().__init__(f"Cache write to {key} failed: {reason}")


class CacheConfigurationError(Exception):
    """Raised when a dataset cannot be cached within the configured limits."""
    pass


class CacheEntryTooLargeError(Exception):
    """Raised when a single entry exceeds the backing medium's size ceiling."""

    def __init__(self, key: str, size_bytes: int, limit_bytes: int):
        self.key = key
        self.size_bytes = size_bytes
        self.limit_bytes = limit_bytes
        super().__init__(
            f"Cache entry {key} is {size_bytes} bytes, limit is {limit_bytes} bytes"
        )
