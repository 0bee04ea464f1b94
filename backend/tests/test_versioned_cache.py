"""
Tests for the versioned dataset cache and incremental single-row updates.
"""

import asyncio

import pytest

from atelier.cache import (
    CacheManager,
    CachePolicy,
    CacheWriteError,
    ChunkedCacheStore,
    IncrementalCacheUpdater,
    VersionedCache,
    bootstrap_sheets,
    key_manager,
)
from atelier.models.cache import RowSet
from atelier.models.enums import DatasetKey, ReservationStatus
from atelier.store.base import SheetNotFoundError
from atelier.store.memory import InMemoryRowStore


@pytest.fixture
def versioned(cache_manager, row_store):
    return VersionedCache(ChunkedCacheStore(cache_manager), row_store)


@pytest.fixture
def updater(versioned):
    return IncrementalCacheUpdater(versioned)


def seed_reservations(seed, count=3):
    for i in range(count):
        seed.reservation(f"R{i}", student_id=f"S{i}", created_at=f"2026-03-01T10:00:0{i}")


class TestReadPath:
    """Rebuild on miss, then serve from the cache."""

    async def test_rebuilds_once_then_hits(self, versioned, row_store, seed):
        seed_reservations(seed)

        first = await versioned.get_cached_data(DatasetKey.RESERVATIONS)
        second = await versioned.get_cached_data("reservations")

        assert len(first.rows) == 3
        assert second.version == first.version
        assert row_store.scan_counts["reservations"] == 1

    async def test_auto_rebuild_disabled_returns_none(self, versioned, row_store, seed):
        """Test that a version probe never scans the row store."""
        seed_reservations(seed)

        assert await versioned.get_cached_data(DatasetKey.RESERVATIONS, auto_rebuild=False) is None
        assert row_store.scan_count == 0

    async def test_unknown_dataset(self, versioned):
        with pytest.raises(KeyError):
            await versioned.get_cached_data("invoices")

    async def test_concurrent_misses_share_one_rebuild(self, versioned, row_store, seed):
        """Test that near-simultaneous misses trigger a single row store scan."""
        seed_reservations(seed)
        original_put = versioned.store.put

        async def slow_put(*args, **kwargs):
            await asyncio.sleep(0.01)
            return await original_put(*args, **kwargs)

        versioned.store.put = slow_put

        results = await asyncio.gather(*[
            versioned.get_cached_data(DatasetKey.RESERVATIONS) for _ in range(5)
        ])

        assert row_store.scan_counts["reservations"] == 1
        assert len({result.version for result in results}) == 1
        assert versioned.rebuild_counts["reservations"] == 1

    async def test_schema_version_mismatch_is_miss(self, versioned, row_store, seed):
        """Test that an entry written with another schema version is rebuilt."""
        seed_reservations(seed)
        await versioned.store.put(
            versioned.cache_key(DatasetKey.RESERVATIONS),
            RowSet(header=["reservation_id"], rows=[["old"]]),
            schema_version=99,
        )

        dataset = await versioned.get_cached_data(DatasetKey.RESERVATIONS)

        assert dataset.schema_version == 1
        assert len(dataset.rows) == 3
        assert row_store.scan_counts["reservations"] == 1

    async def test_rebuild_drops_keyless_rows(self, versioned, seed):
        seed_reservations(seed, 2)
        seed.row_store.append_row("reservations", {"student_id": "S9"})

        dataset = await versioned.get_cached_data(DatasetKey.RESERVATIONS)

        assert len(dataset.rows) == 2

    async def test_schedule_ids_are_normalized(self, versioned, seed):
        seed.lesson("L1", reservation_ids='["R1", "R2"]')

        dataset = await versioned.get_cached_data(DatasetKey.SCHEDULE)

        column = dataset.column_index("reservation_ids")
        assert dataset.rows[0][column] == ["R1", "R2"]


class TestChunkedRebuild:
    """A dataset that needs chunks survives chunk eviction."""

    async def test_missing_chunk_triggers_repairing_rebuild(self, row_store, seed):
        manager = CacheManager(
            use_valkey=False,
            policy=CachePolicy(chunk_size_limit_kb=1, max_chunks=100, max_entry_size_kb=2),
        )
        versioned = VersionedCache(ChunkedCacheStore(manager), row_store)
        for i in range(60):
            seed.reservation(f"R{i:03d}", student_id=f"S{i}", message_to_teacher="m" * 40)

        first = await versioned.get_cached_data(DatasetKey.RESERVATIONS)
        info = await versioned.get_cache_info(DatasetKey.RESERVATIONS)
        assert info.chunked is True

        await manager.delete(key_manager.chunk_key(versioned.cache_key(DatasetKey.RESERVATIONS), 1))
        assert await versioned.get_cached_data(DatasetKey.RESERVATIONS, auto_rebuild=False) is None

        repaired = await versioned.get_cached_data(DatasetKey.RESERVATIONS)

        assert repaired.rows == first.rows
        assert repaired.version > first.version
        assert row_store.scan_counts["reservations"] == 2


class TestDatasetIndependence:
    """Datasets are keyed and rebuilt separately."""

    async def test_rebuilding_one_keeps_another(self, versioned, seed):
        seed_reservations(seed)
        seed.lesson("L1")
        schedule = await versioned.get_cached_data(DatasetKey.SCHEDULE)

        await versioned.rebuild(DatasetKey.RESERVATIONS)

        versions = await versioned.get_cache_versions()
        assert versions["schedule"] == schedule.version
        assert versions["reservations"] is not None
        assert versions["roster"] is None

    async def test_invalidate(self, versioned, seed):
        seed_reservations(seed)
        await versioned.get_cached_data(DatasetKey.RESERVATIONS)

        await versioned.invalidate(DatasetKey.RESERVATIONS)

        assert (await versioned.get_cache_info(DatasetKey.RESERVATIONS)).exists is False

    async def test_clear_all_keeps_versions_increasing(self, versioned, seed):
        seed_reservations(seed)
        seed.lesson("L1")
        first = await versioned.get_cached_data(DatasetKey.RESERVATIONS)
        await versioned.get_cached_data(DatasetKey.SCHEDULE)

        assert await versioned.clear_all() == 2

        versions = await versioned.get_cache_versions()
        assert all(version is None for version in versions.values())
        again = await versioned.get_cached_data(DatasetKey.RESERVATIONS)
        assert again.version > first.version

    async def test_rebuild_all_reports_failures(self, cache_manager):
        """Test that one failing dataset does not stop the others."""
        row_store = InMemoryRowStore()
        bootstrap_sheets(row_store)
        del row_store._sheets["roster"]
        versioned = VersionedCache(ChunkedCacheStore(cache_manager), row_store)

        versions = await versioned.rebuild_all()

        assert versions["roster"] is None
        assert all(versions[name] is not None for name in ("reservations", "schedule", "accounting_master"))

    async def test_rebuild_error_propagates_to_reader(self, cache_manager):
        row_store = InMemoryRowStore()
        versioned = VersionedCache(ChunkedCacheStore(cache_manager), row_store)

        with pytest.raises(SheetNotFoundError):
            await versioned.get_cached_data(DatasetKey.ROSTER)

    async def test_cache_info(self, versioned, seed):
        seed_reservations(seed)
        await versioned.get_cached_data(DatasetKey.RESERVATIONS)

        infos = {info.key: info for info in await versioned.get_all_cache_info()}

        assert infos["reservations"].exists is True
        assert infos["reservations"].total_count == 3
        assert infos["reservations"].chunked is False
        assert infos["reservations"].ttl_seconds > 0
        assert infos["schedule"].exists is False


class TestIncrementalUpdates:
    """Single-row patches match a full rebuild and never scan."""

    async def assert_matches_rebuild(self, versioned, row_store):
        patched = await versioned.get_cached_data(DatasetKey.RESERVATIONS, auto_rebuild=False)
        scans = row_store.scan_count
        rebuilt = await versioned.rebuild(DatasetKey.RESERVATIONS)
        assert row_store.scan_count == scans + 1
        assert patched.rows == rebuilt.rows
        assert patched.header == rebuilt.header

    async def test_append_row(self, versioned, updater, row_store, seed):
        seed_reservations(seed)
        before = await versioned.get_cached_data(DatasetKey.RESERVATIONS)
        scans = row_store.scan_count

        values = seed.reservation("R9", student_id="S9")
        version = await updater.append_row(DatasetKey.RESERVATIONS, values)

        assert version > before.version
        assert row_store.scan_count == scans
        await self.assert_matches_rebuild(versioned, row_store)

    async def test_update_status(self, versioned, updater, row_store, seed):
        seed_reservations(seed)
        await versioned.get_cached_data(DatasetKey.RESERVATIONS)
        scans = row_store.scan_count

        row_store.update_row("reservations", "R1", {"status": "canceled"})
        await updater.update_status(DatasetKey.RESERVATIONS, "R1", ReservationStatus.CANCELED)

        assert row_store.scan_count == scans
        await self.assert_matches_rebuild(versioned, row_store)

    async def test_replace_row(self, versioned, updater, row_store, seed):
        seed_reservations(seed)
        await versioned.get_cached_data(DatasetKey.RESERVATIONS)

        values = seed.rows("reservations")[2]
        values.update({"start_time": "11:00", "end_time": "14:00", "order": "walnut"})
        row_store.update_row("reservations", "R2", values)
        await updater.replace_row(DatasetKey.RESERVATIONS, "R2", values)

        await self.assert_matches_rebuild(versioned, row_store)

    async def test_update_column(self, versioned, updater, row_store, seed):
        seed_reservations(seed)
        await versioned.get_cached_data(DatasetKey.RESERVATIONS)

        row_store.update_row("reservations", "R0", {"message_to_teacher": "late by 10 minutes"})
        await updater.update_column(DatasetKey.RESERVATIONS, "R0", "message_to_teacher", "late by 10 minutes")

        await self.assert_matches_rebuild(versioned, row_store)

    async def test_snapshot_is_updated_in_place(self, versioned, updater, seed):
        seed_reservations(seed)
        snapshot = await versioned.get_cached_data(DatasetKey.RESERVATIONS)

        version = await updater.update_status(DatasetKey.RESERVATIONS, "R0", "canceled", snapshot=snapshot)

        assert snapshot.version == version
        assert snapshot.rows[0][snapshot.column_index("status")] == "canceled"

    async def test_miss_is_noop(self, versioned, updater, row_store, seed):
        """Test that nothing is written or scanned when the dataset is not cached."""
        seed_reservations(seed)

        assert await updater.update_status(DatasetKey.RESERVATIONS, "R0", "canceled") is None
        assert row_store.scan_count == 0
        assert await versioned.get_cache_versions() == {
            "reservations": None, "schedule": None, "accounting_master": None, "roster": None
        }

    async def test_missing_row_defers_to_rebuild(self, versioned, updater, row_store, seed):
        """Test that a stale patch target is not fabricated and the dataset is invalidated."""
        seed_reservations(seed)
        await versioned.get_cached_data(DatasetKey.RESERVATIONS)

        result = await updater.update_column(DatasetKey.RESERVATIONS, "R404", "order", "oak")

        assert result is None
        assert updater.stale_patches == 1
        assert await versioned.get_cached_data(DatasetKey.RESERVATIONS, auto_rebuild=False) is None

        rebuilt = await versioned.get_cached_data(DatasetKey.RESERVATIONS)
        assert len(rebuilt.rows) == 3

    async def test_unknown_column_defers_to_rebuild(self, versioned, updater, seed):
        seed_reservations(seed)
        await versioned.get_cached_data(DatasetKey.RESERVATIONS)

        assert await updater.update_column(DatasetKey.RESERVATIONS, "R0", "colour", "red") is None
        assert updater.stale_patches == 1


class TestCacheWriteFailures:
    """A write Valkey refused never leaves an outdated dataset readable."""

    @pytest.fixture
    def versioned(self, valkey_cache_manager, row_store):
        return VersionedCache(ChunkedCacheStore(valkey_cache_manager), row_store)

    async def test_failed_patch_invalidates(self, versioned, updater, mock_valkey, seed):
        seed_reservations(seed)
        snapshot = await versioned.get_cached_data(DatasetKey.RESERVATIONS)
        mock_valkey.fail_writes(versioned.cache_key(DatasetKey.RESERVATIONS), times=1)

        values = seed.reservation("R9", student_id="S9")
        assert await updater.append_row(DatasetKey.RESERVATIONS, values, snapshot=snapshot) is None

        assert await versioned.get_cached_data(DatasetKey.RESERVATIONS, auto_rebuild=False) is None
        assert len((await versioned.get_cached_data(DatasetKey.RESERVATIONS)).rows) == 4

    async def test_failed_invalidation_raises_and_bypasses(self, versioned, updater, mock_valkey, row_store, seed):
        """Test that an entry which could be neither patched nor deleted is no longer served."""
        seed_reservations(seed)
        snapshot = await versioned.get_cached_data(DatasetKey.RESERVATIONS)
        mock_valkey.fail_writes(versioned.cache_key(DatasetKey.RESERVATIONS))

        values = seed.reservation("R9", student_id="S9")
        with pytest.raises(CacheWriteError):
            await updater.append_row(DatasetKey.RESERVATIONS, values, snapshot=snapshot)

        assert versioned.is_unsynced(DatasetKey.RESERVATIONS)
        scans = row_store.scan_count
        fresh = await versioned.get_cached_data(DatasetKey.RESERVATIONS)
        assert len(fresh.rows) == 4
        assert fresh.cached is False
        assert row_store.scan_count == scans + 1

    async def test_unsynced_clears_after_successful_rebuild(self, versioned, mock_valkey, seed):
        seed_reservations(seed)
        key = versioned.cache_key(DatasetKey.RESERVATIONS)
        mock_valkey.fail_writes(key, times=1)

        uncached = await versioned.rebuild(DatasetKey.RESERVATIONS)
        assert uncached.cached is False
        assert (await versioned.rebuild_all())["reservations"] is not None

        assert not versioned.is_unsynced(DatasetKey.RESERVATIONS)
        cached = await versioned.get_cached_data(DatasetKey.RESERVATIONS, auto_rebuild=False)
        assert cached.version == (await versioned.get_cache_versions())["reservations"]

    async def test_rebuild_all_reports_uncached_dataset(self, versioned, mock_valkey, seed):
        seed_reservations(seed)
        mock_valkey.fail_writes(versioned.cache_key(DatasetKey.ROSTER))

        versions = await versioned.rebuild_all()

        assert versions["roster"] is None
        assert versions["reservations"] is not None
