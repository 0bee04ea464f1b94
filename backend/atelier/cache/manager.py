"""
Key/value cache manager with error handling and graceful degradation.

CacheManager is the backing medium under the dataset cache: raw string
entries with a TTL and a hard per-entry size ceiling, plus the atomic
primitives (INCR, SET NX EX, compare-and-delete) that versions and locks
are built on. It runs against Valkey or, with no client, entirely on its
in-process store.
"""

import fnmatch
import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from itertools import chain
from typing import Any, Callable, Dict, List, Optional, Sequence

from valkey.exceptions import ConnectionError, TimeoutError, ResponseError

from .client import ValkeyClient, get_client
from .config import CacheEntryTooLargeError, CachePolicy, CacheWriteError, ValkeyConfig, ValkeyConnectionError
from .utils import CacheKeyPrefix, TTLPreset, key_manager

logger = logging.getLogger(__name__)

# Deletes KEYS[1] only while it still holds ARGV[1].
COMPARE_AND_DELETE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""

VALKEY_ERRORS = (ConnectionError, TimeoutError, ResponseError, OSError)


@dataclass
class CacheStats:
    """Counters for cache reads, writes and Valkey failures."""

    hit_count: int = 0
    miss_count: int = 0
    set_count: int = 0
    delete_count: int = 0
    total_operations: int = 0

    error_count: int = 0
    connection_errors: int = 0
    timeout_errors: int = 0
    other_errors: int = 0

    # Reads answered as misses while Valkey failed or was bypassed
    degraded_operations: int = 0
    fallback_operations: int = 0

    started_at: datetime = field(default_factory=datetime.now)

    def record_read(self, value: Any) -> None:
        if value is None:
            self.miss_count += 1
        else:
            self.hit_count += 1

    def record_error(self, error: Exception) -> None:
        self.error_count += 1
        if isinstance(error, ConnectionError):
            self.connection_errors += 1
        elif isinstance(error, TimeoutError):
            self.timeout_errors += 1
        else:
            self.other_errors += 1

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop("started_at")
        reads = self.hit_count + self.miss_count
        data["hit_ratio"] = self.hit_count / reads if reads else 0.0
        data["error_ratio"] = self.error_count / self.total_operations if self.total_operations else 0.0
        data["uptime_seconds"] = (datetime.now() - self.started_at).total_seconds()
        return data


class CircuitBreaker:
    """Stops calling Valkey after ``threshold`` consecutive failures, for ``reset_after`` seconds."""

    def __init__(self, threshold: int = 5, reset_after: int = 60):
        self.threshold = threshold
        self.reset_after = reset_after
        self.failures = 0
        self.opened_at: Optional[float] = None

    @property
    def is_open(self) -> bool:
        return self.opened_at is not None

    def allows_request(self) -> bool:
        if self.opened_at is None:
            return True
        if time.monotonic() - self.opened_at >= self.reset_after:
            logger.info("Circuit half-open, retrying Valkey")
            return True
        return False

    def failure(self) -> None:
        self.failures += 1
        if self.failures >= self.threshold and self.opened_at is None:
            self.opened_at = time.monotonic()
            logger.warning(f"Circuit opened after {self.failures} consecutive Valkey failures")

    def success(self) -> None:
        self.failures = 0
        if self.opened_at is not None:
            self.opened_at = None
            logger.info("Circuit closed, Valkey answering again")


class InProcessStore:
    """
    Dict-backed stand-in for Valkey when no client is configured.

    Bounded: at ``max_size`` entries the first entry carrying a TTL is
    evicted, otherwise the oldest entry. Lock leases are never evicted.
    """

    def __init__(self, max_size: int = 10000, protected_prefix: str = f"{CacheKeyPrefix.LOCK.value}:"):
        self.max_size = max_size
        self.protected_prefix = protected_prefix
        self._entries: Dict[str, Any] = {}
        self._expiry: Dict[str, datetime] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def _expired(self, key: str) -> bool:
        expires_at = self._expiry.get(key)
        if expires_at is not None and datetime.now() > expires_at:
            self._entries.pop(key, None)
            del self._expiry[key]
            return True
        return False

    def get(self, key: str) -> Optional[Any]:
        if self._expired(key):
            return None
        return self._entries.get(key)

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        if key not in self._entries and len(self._entries) >= self.max_size:
            victim = self._eviction_candidate()
            if victim is not None:
                self.delete(victim)
        self._entries[key] = value
        if ttl:
            self._expiry[key] = datetime.now() + timedelta(seconds=ttl)
        else:
            self._expiry.pop(key, None)

    def _eviction_candidate(self) -> Optional[str]:
        for key in chain(self._expiry, self._entries):
            if not key.startswith(self.protected_prefix):
                return key
        return None

    def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            self._expiry.pop(key, None)
            if self._entries.pop(key, None) is not None:
                removed += 1
        return removed

    def incr(self, key: str) -> int:
        value = int(self.get(key) or 0) + 1
        self._entries[key] = value
        return value

    def ttl(self, key: str) -> Optional[int]:
        if self._expired(key) or key not in self._expiry:
            return None
        return max(0, int((self._expiry[key] - datetime.now()).total_seconds()))

    def keys(self, pattern: str) -> List[str]:
        return [key for key in list(self._entries) if fnmatch.fnmatch(key, pattern) and not self._expired(key)]

    def clear(self) -> None:
        self._entries.clear()
        self._expiry.clear()


class CacheManager:
    """
    Cache manager with error handling and graceful degradation.

    With a Valkey client configured, reads that fail (or are skipped while
    the circuit is open) come back as misses, so callers rebuild from the
    row store. Writes (put, delete, incr, pattern clear) raise
    CacheWriteError rather than landing in local memory. Lock primitives
    report failure.
    """

    def __init__(
        self,
        client: Optional[ValkeyClient] = None,
        config: Optional[ValkeyConfig] = None,
        policy: Optional[CachePolicy] = None,
        use_valkey: bool = True,
        enable_fallback: bool = True,
        circuit_breaker_threshold: int = 5,
        circuit_breaker_timeout: int = 60,
        fallback_max_size: int = 10000
    ):
        """
        Args:
            client: Connected ValkeyClient; one is created on ``initialize()`` otherwise
            config: ValkeyConfig used when a client has to be created
            policy: CachePolicy supplying the per-entry size ceiling
            use_valkey: False runs on the in-process store only
            enable_fallback: Start without Valkey and answer failed reads as misses
            circuit_breaker_threshold: Consecutive failures before Valkey is bypassed
            circuit_breaker_timeout: Seconds Valkey stays bypassed
            fallback_max_size: Maximum number of in-process entries
        """
        self.client = client
        self.config = config or ValkeyConfig.from_env()
        self.policy = policy or CachePolicy()
        self.use_valkey = use_valkey or client is not None
        self.enable_fallback = enable_fallback
        self.key_manager = key_manager

        self.stats = CacheStats()
        self.breaker = CircuitBreaker(circuit_breaker_threshold, circuit_breaker_timeout)
        self.local = InProcessStore(fallback_max_size)

        logger.info(f"CacheManager initialized (valkey={self.use_valkey}, fallback={enable_fallback})")

    async def initialize(self) -> None:
        """Connect to Valkey unless running on the in-process store."""
        if not self.use_valkey:
            logger.info("CacheManager running on in-process store")
            return

        if self.client is None:
            self.client = await get_client(self.config)

        try:
            await self.client.ensure_connection()
        except (ValkeyConnectionError,) + VALKEY_ERRORS as e:
            logger.warning(f"Valkey not reachable at startup: {e}")
            if not self.enable_fallback:
                raise

    @property
    def max_entry_size_bytes(self) -> int:
        return self.policy.max_entry_size_bytes

    @property
    def is_circuit_open(self) -> bool:
        return self.breaker.is_open

    async def _call(
        self,
        command: Callable[[Any], Any],
        fallback: Optional[Callable[[], Any]] = None
    ) -> Any:
        """
        Run ``command`` against the raw Valkey handle.

        Without a client the fallback is the store itself. With one, the
        fallback answers reads while the circuit is open or after a Valkey
        error; the local store is empty then, so they read as misses.
        """
        if self.client is None:
            return fallback() if fallback else None

        self.stats.total_operations += 1

        if not self.breaker.allows_request():
            self.stats.degraded_operations += 1
            return fallback() if fallback else None

        try:
            await self.client.ensure_connection()
            result = command(self.client.client)
        except VALKEY_ERRORS as e:
            logger.warning(f"Valkey command failed: {e}")
            self.stats.record_error(e)
            self.breaker.failure()
        else:
            self.breaker.success()
            return result

        if self.enable_fallback and fallback:
            self.stats.fallback_operations += 1
            return fallback()
        return None

    async def _write(self, key: str, command: Callable[[Any], Any], local: Callable[[], Any]) -> Any:
        """
        Run a write against Valkey, or ``local`` when no client is configured.

        Raises:
            CacheWriteError: If Valkey failed or is bypassed by the open circuit
        """
        if self.client is None:
            return local()

        self.stats.total_operations += 1

        if not self.breaker.allows_request():
            self.stats.degraded_operations += 1
            raise CacheWriteError(key, "circuit open")

        try:
            await self.client.ensure_connection()
            result = command(self.client.client)
        except (ValkeyConnectionError,) + VALKEY_ERRORS as e:
            logger.error(f"Valkey write to {key} failed: {e}")
            self.stats.record_error(e)
            self.breaker.failure()
            raise CacheWriteError(key, str(e)) from e

        self.breaker.success()
        return result

    @staticmethod
    def _text(value: Any) -> Any:
        return value.decode("utf-8") if isinstance(value, bytes) else value

    async def get_raw(self, key: str) -> Optional[str]:
        """
        Read an entry as stored.

        Returns:
            The stored string, or None on a miss
        """
        value = self._text(await self._call(lambda v: v.get(key), lambda: self.local.get(key)))
        self.stats.record_read(value)
        return value

    async def get_many_raw(self, keys: Sequence[str]) -> List[Optional[str]]:
        """Read several entries in one round trip; missing keys yield None."""
        keys = list(keys)
        if not keys:
            return []

        values = await self._call(lambda v: v.mget(keys), lambda: [self.local.get(key) for key in keys])
        values = [self._text(value) for value in values] if values is not None else [None] * len(keys)
        for value in values:
            self.stats.record_read(value)
        return values

    async def put_raw(self, key: str, payload: str, ttl: Optional[int] = None) -> bool:
        """
        Store ``payload`` under ``key``.

        Raises:
            CacheEntryTooLargeError: If the payload exceeds the entry ceiling
            CacheWriteError: If Valkey did not take the write
        """
        size = len(payload.encode("utf-8"))
        if size > self.max_entry_size_bytes:
            raise CacheEntryTooLargeError(key, size, self.max_entry_size_bytes)

        self.stats.set_count += 1

        def write(v):
            return v.setex(key, ttl, payload) if ttl else v.set(key, payload)

        def write_locally():
            self.local.set(key, payload, ttl)
            return True

        return bool(await self._write(key, write, write_locally))

    async def get_head(self, key: str, length: int) -> Optional[str]:
        """
        First ``length`` bytes of an entry (GETRANGE), None on a miss.

        A multi-byte character cut at the end is dropped.
        """
        head = await self._call(
            lambda v: v.getrange(key, 0, length - 1),
            lambda: (self.local.get(key) or "").encode("utf-8")[:length]
        )
        if isinstance(head, bytes):
            head = head.decode("utf-8", errors="ignore")
        self.stats.record_read(head or None)
        return head or None

    async def delete(self, key: str) -> bool:
        return await self.delete_many([key]) > 0

    async def delete_many(self, keys: Sequence[str]) -> int:
        """
        Delete ``keys`` and return how many existed.

        Raises:
            CacheWriteError: If Valkey did not take the delete
        """
        keys = list(keys)
        if not keys:
            return 0

        self.stats.delete_count += len(keys)
        return int(await self._write(keys[0], lambda v: v.delete(*keys), lambda: self.local.delete(*keys)) or 0)

    async def incr(self, key: str) -> int:
        """
        Atomically increment the integer counter at ``key``.

        Raises:
            CacheWriteError: If Valkey did not take the increment
        """
        return int(await self._write(key, lambda v: v.incr(key), lambda: self.local.incr(key)))

    async def set_if_absent(self, key: str, value: str, ttl: int) -> bool:
        """SET NX EX: store ``value`` only if ``key`` does not exist."""
        if self.client is None:
            if self.local.get(key) is not None:
                return False
            self.local.set(key, value, ttl)
            return True
        return bool(await self._call(lambda v: v.set(key, value, nx=True, ex=ttl)))

    async def delete_if_equals(self, key: str, value: str) -> bool:
        """Delete ``key`` only while it still holds ``value``."""
        if self.client is None:
            if self.local.get(key) != value:
                return False
            return self.local.delete(key) == 1
        return bool(await self._call(lambda v: v.eval(COMPARE_AND_DELETE_SCRIPT, 1, key, value)))

    async def exists(self, key: str) -> bool:
        return bool(await self._call(lambda v: v.exists(key), lambda: self.local.get(key) is not None))

    async def get_ttl(self, key: str) -> Optional[int]:
        """Remaining TTL in seconds, None if the key is missing or has no TTL."""
        if self.client is None:
            return self.local.ttl(key)
        result = await self._call(lambda v: v.ttl(key))
        return result if result and result > 0 else None

    async def clear_pattern(self, pattern: str) -> int:
        """
        Delete every key matching ``pattern``.

        Raises:
            CacheWriteError: If Valkey could not be scanned or cleared
        """
        def clear(v):
            keys = list(v.scan_iter(match=pattern))
            return v.delete(*keys) if keys else 0

        return int(await self._write(pattern, clear, lambda: self.local.delete(*self.local.keys(pattern))) or 0)

    async def get_stats(self) -> Dict[str, Any]:
        stats = self.stats.to_dict()
        stats["backend"] = "valkey" if self.client else "in-process"
        stats["circuit_breaker_open"] = self.breaker.is_open
        stats["consecutive_failures"] = self.breaker.failures
        stats["in_process_entries"] = len(self.local)
        if self.client:
            stats["connection_info"] = await self.client.get_connection_info()
        return stats

    async def health_check(self) -> Dict[str, Any]:
        """
        Round-trip a probe entry.

        Returns:
            ``status`` is healthy, degraded (circuit open or probe mismatch)
            or unhealthy (the probe raised)
        """
        health: Dict[str, Any] = {
            "backend": "valkey" if self.client else "in-process",
            "circuit_breaker_open": self.breaker.is_open,
            "errors": [],
        }

        probe_key = key_manager.key_builder.build_key(CacheKeyPrefix.HEALTH, "probe")
        probe_value = datetime.now().isoformat()
        started = time.perf_counter()

        try:
            await self.put_raw(probe_key, probe_value, ttl=int(TTLPreset.HEALTH_CHECK))
            read_back = await self.get_raw(probe_key)
            await self.delete(probe_key)
        except CacheWriteError as e:
            health.update(status="degraded" if self.breaker.is_open else "unhealthy", errors=[str(e)])
            return health
        except CacheEntryTooLargeError as e:
            health.update(status="unhealthy", errors=[str(e)])
            return health

        health["latency_ms"] = round((time.perf_counter() - started) * 1000, 2)
        if read_back != probe_value:
            health["errors"].append("Probe read back a different value")
        if self.breaker.is_open:
            health["errors"].append("Valkey bypassed, circuit open")
        health["status"] = "degraded" if health["errors"] else "healthy"
        return health

    async def close(self) -> None:
        """Close the Valkey client and clear the in-process store."""
        if self.client:
            await self.client.disconnect()
        self.local.clear()
        logger.info("CacheManager closed")
