"""
Simple cache tests without a Valkey server.

Tests the cache configuration, key naming and TTL helpers, and the
in-process store behind the cache manager.
"""

import pytest
from unittest.mock import patch

from atelier.cache import (
    ValkeyConfig,
    CachePolicy,
    CacheConfigurationError,
    CacheEntryTooLargeError,
    CacheManager,
    CacheWriteError,
    InProcessStore,
    CacheKeyPrefix,
    TTLPreset,
    CacheKeyBuilder,
    TTLCalculator,
    key_manager
)


class TestValkeyConfig:
    """Test Valkey configuration functionality."""

    def test_config_creation_with_defaults(self):
        """Test creating config with default values."""
        config = ValkeyConfig()
        assert config.host == "localhost"
        assert config.port == 6379
        assert config.database == 0
        assert config.max_connections == 10
        assert config.socket_timeout == 5.0

    def test_config_from_env(self):
        """Test creating config from environment variables."""
        with patch.dict('os.environ', {
            'VALKEY_HOST': 'cache-host',
            'VALKEY_PORT': '6380',
            'VALKEY_PASSWORD': 'test-pass',
            'VALKEY_DATABASE': '5',
            'VALKEY_MAX_CONNECTIONS': '20'
        }):
            config = ValkeyConfig.from_env()
            assert config.host == "cache-host"
            assert config.port == 6380
            assert config.password == "test-pass"
            assert config.database == 5
            assert config.max_connections == 20

    def test_config_to_connection_kwargs(self):
        """Test converting config to connection parameters."""
        config = ValkeyConfig(host="cache-host", port=6380, password="test-pass", database=5)
        kwargs = config.to_connection_kwargs()
        assert kwargs["host"] == "cache-host"
        assert kwargs["db"] == 5
        assert "max_connections" not in kwargs  # Only in pool kwargs
        assert config.to_connection_pool_kwargs()["max_connections"] == 10

    def test_config_string_representation(self):
        """Test config string representation hides password."""
        config_str = str(ValkeyConfig(password="secret123"))
        assert "secret123" not in config_str
        assert "***" in config_str


class TestCachePolicy:
    """Test dataset cache sizing."""

    def test_defaults(self):
        policy = CachePolicy()
        assert policy.chunk_size_limit_bytes == 90 * 1024
        assert policy.max_entry_size_bytes == 100 * 1024
        assert policy.max_chunks == 20

    def test_from_env(self):
        with patch.dict('os.environ', {
            'CACHE_CHUNK_SIZE_LIMIT_KB': '40',
            'CACHE_MAX_CHUNKS': '50',
            'CACHE_EXPIRY_SECONDS': '600'
        }):
            policy = CachePolicy.from_env()
            assert policy.chunk_size_limit_kb == 40
            assert policy.max_chunks == 50
            assert policy.cache_expiry_seconds == 600

    @pytest.mark.parametrize("kwargs", [
        {"chunk_size_limit_kb": 0},
        {"max_chunks": 0},
        {"chunk_size_limit_kb": 101},
    ])
    def test_invalid_policy_rejected(self, kwargs):
        """Test that a chunk limit above the entry ceiling is a configuration error."""
        with pytest.raises(CacheConfigurationError):
            CachePolicy(**kwargs)


class TestKeys:
    """Test cache key naming."""

    def test_prefix_values(self):
        assert CacheKeyPrefix.DATASET == "atelier:dataset"
        assert CacheKeyPrefix.LOCK == "atelier:lock"
        assert TTLPreset.DATASET == 86400

    def test_build_key_skips_none(self):
        key = CacheKeyBuilder.build_key(CacheKeyPrefix.DATASET, "reservations", None, shard=None, v=2)
        assert key == "atelier:dataset:reservations:v=2"

    def test_dataset_chunk_and_version_keys(self):
        base = key_manager.dataset_key("reservations")
        assert base == "atelier:dataset:reservations"
        assert key_manager.chunk_key(base, 3) == "atelier:dataset:reservations#chunk#3"
        assert key_manager.version_key(base) != base
        assert key_manager.lock_key("reservation_write") == "atelier:lock:reservation_write"

    def test_pattern(self):
        assert key_manager.dataset_pattern() == "atelier:dataset:*"


class TestTTLCalculator:
    """Test TTL calculation utilities."""

    def test_calculate_ttl_with_jitter(self):
        """Test TTL calculation with jitter."""
        ttls = [TTLCalculator.calculate_ttl_with_jitter(3600, 0.1) for _ in range(10)]

        for ttl in ttls:
            assert 3240 <= ttl <= 3960
        assert len(set(ttls)) > 1

    def test_calculate_ttl_minimum_enforcement(self):
        assert TTLCalculator.calculate_ttl_with_jitter(10, 0.9, min_ttl=30) >= 30


class TestInProcessStore:
    """Test the cache manager without a Valkey client."""

    @pytest.fixture
    def cache(self):
        return CacheManager(use_valkey=False, policy=CachePolicy(chunk_size_limit_kb=1, max_entry_size_kb=1))

    async def test_put_get_delete(self, cache):
        assert await cache.put_raw("k", "v", ttl=60) is True
        assert await cache.get_raw("k") == "v"
        assert 0 < await cache.get_ttl("k") <= 60

        assert await cache.delete("k") is True
        assert await cache.get_raw("k") is None
        assert cache.stats.miss_count == 1

    async def test_entry_ceiling(self, cache):
        with pytest.raises(CacheEntryTooLargeError):
            await cache.put_raw("k", "x" * 2048)

    async def test_counters(self, cache):
        assert await cache.incr("counter") == 1
        assert await cache.incr("counter") == 2

    def test_eviction_skips_lock_leases(self):
        """Test that a full store evicts data entries and keeps a held lock."""
        store = InProcessStore(max_size=2)
        store.set("atelier:lock:reservation_write", "owner", ttl=30)
        store.set("atelier:dataset:schedule", "rows", ttl=30)

        store.set("atelier:dataset:roster", "rows", ttl=30)

        assert store.get("atelier:lock:reservation_write") == "owner"
        assert store.get("atelier:dataset:schedule") is None
        assert store.get("atelier:dataset:roster") == "rows"

    def test_eviction_with_only_locks_left(self):
        store = InProcessStore(max_size=1)
        store.set("atelier:lock:a", "owner", ttl=30)

        store.set("atelier:dataset:schedule", "rows")

        assert store.get("atelier:lock:a") == "owner"
        assert len(store) == 2

    async def test_lock_survives_cache_churn(self):
        cache = CacheManager(use_valkey=False, fallback_max_size=3)
        lock_key = key_manager.lock_key("reservation_write")
        assert await cache.set_if_absent(lock_key, "owner", 30) is True

        for i in range(10):
            await cache.put_raw(f"atelier:dataset:d{i}", "x", ttl=60)

        assert await cache.set_if_absent(lock_key, "intruder", 30) is False
        assert await cache.delete_if_equals(lock_key, "owner") is True

    async def test_set_if_absent(self, cache):
        assert await cache.set_if_absent("lock", "a", 10) is True
        assert await cache.set_if_absent("lock", "b", 10) is False
        assert await cache.delete_if_equals("lock", "b") is False
        assert await cache.delete_if_equals("lock", "a") is True

    async def test_clear_pattern(self, cache):
        await cache.put_raw("atelier:dataset:a", "1")
        await cache.put_raw("atelier:dataset:b", "2")
        await cache.put_raw("atelier:lock:x", "3")

        assert await cache.clear_pattern("atelier:dataset:*") == 2
        assert await cache.exists("atelier:lock:x") is True


class TestDegradation:
    """Test fallback when Valkey fails."""

    async def test_reads_fall_back_and_circuit_opens(self, mock_valkey):
        cache = CacheManager(client=mock_valkey, circuit_breaker_threshold=2)
        await cache.put_raw("k", "v")
        mock_valkey.fail = True

        assert await cache.get_raw("k") is None
        await cache.get_raw("k")

        assert cache.is_circuit_open is True
        assert cache.stats.connection_errors == 2
        assert cache.stats.to_dict()["error_count"] == 2

    async def test_circuit_closes_when_valkey_returns(self, mock_valkey):
        cache = CacheManager(client=mock_valkey, circuit_breaker_threshold=1, circuit_breaker_timeout=0)
        mock_valkey.fail = True
        await cache.get_raw("k")
        assert cache.is_circuit_open is True

        mock_valkey.fail = False
        await cache.put_raw("k", "v")

        assert cache.is_circuit_open is False
        assert mock_valkey.data["k"] == "v"

    async def test_writes_raise_while_failing(self, mock_valkey):
        """Test that a failed write is reported and never kept in process memory."""
        cache = CacheManager(client=mock_valkey)
        mock_valkey.fail = True

        with pytest.raises(CacheWriteError):
            await cache.put_raw("k", "v")
        with pytest.raises(CacheWriteError):
            await cache.incr("counter")
        with pytest.raises(CacheWriteError):
            await cache.delete("k")

        assert len(cache.local) == 0
        mock_valkey.fail = False
        assert await cache.get_raw("k") is None

    async def test_writes_raise_while_circuit_open(self, mock_valkey):
        cache = CacheManager(client=mock_valkey, circuit_breaker_threshold=1)
        mock_valkey.fail = True
        await cache.get_raw("k")
        mock_valkey.fail = False

        with pytest.raises(CacheWriteError, match="circuit open"):
            await cache.put_raw("k", "v")
        assert "k" not in mock_valkey.data

    async def test_dropped_write_keeps_previous_value_visible(self, mock_valkey):
        cache = CacheManager(client=mock_valkey)
        await cache.put_raw("k", "old")
        mock_valkey.fail_writes("k", times=1)

        with pytest.raises(CacheWriteError):
            await cache.put_raw("k", "new")

        assert await cache.get_raw("k") == "old"
        assert await cache.delete("k") is True

    async def test_head_read(self, mock_valkey):
        cache = CacheManager(client=mock_valkey)
        await cache.put_raw("k", '{"version":12,"rows":[]}')

        assert await cache.get_head("k", 13) == '{"version":12'
        assert await cache.get_head("missing", 13) is None

    async def test_health_check(self, mock_valkey):
        cache = CacheManager(client=mock_valkey)

        health = await cache.health_check()
        stats = await cache.get_stats()

        assert health["status"] == "healthy"
        assert health["backend"] == "valkey"
        assert stats["connection_info"]["mock"] is True

        mock_valkey.fail = True
        cache.breaker.threshold = 1
        await cache.get_raw("k")

        assert (await cache.health_check())["status"] == "degraded"
