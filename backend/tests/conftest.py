"""
Shared fixtures: in-process cache manager, mock Valkey client, seeded row
store and a fully wired app on top of them.
"""

import asyncio
import datetime as dt
import fnmatch
from typing import Any, Dict, List, Optional

import pytest
from valkey.exceptions import ConnectionError

from atelier.app import build_app
from atelier.cache.datasets import bootstrap_sheets
from atelier.cache.manager import CacheManager
from atelier.store.memory import InMemoryRowStore
from atelier.utils.config import AtelierConfig

LESSON_DATE = "2026-03-10"


class MockValkeyClient:
    """Mock Valkey client for testing; ``client`` points back at itself like ValkeyClient."""

    def __init__(self):
        self.data: Dict[str, Any] = {}
        self.ttls: Dict[str, int] = {}
        self.client = self
        self.fail = False
        self.write_failures: Dict[str, Optional[int]] = {}

    def _check(self):
        if self.fail:
            raise ConnectionError("mock connection lost")

    def fail_writes(self, key: str, times: Optional[int] = None):
        """Make writes to ``key`` raise, ``times`` times or until cleared."""
        self.write_failures[key] = times

    def _check_write(self, *keys):
        self._check()
        for key in keys:
            if key not in self.write_failures:
                continue
            remaining = self.write_failures[key]
            if remaining is not None:
                if remaining <= 1:
                    del self.write_failures[key]
                else:
                    self.write_failures[key] = remaining - 1
            raise ConnectionError(f"mock write to {key} dropped")

    async def ensure_connection(self):
        pass

    async def disconnect(self):
        pass

    async def get_connection_info(self):
        return {"status": "connected", "mock": True}

    def get(self, key):
        self._check()
        return self.data.get(key)

    def mget(self, keys):
        self._check()
        return [self.data.get(key) for key in keys]

    def getrange(self, key, start, end):
        self._check()
        return self.data.get(key, "").encode("utf-8")[start:end + 1]

    def set(self, key, value, nx=False, ex=None):
        """Mock SET operation."""
        self._check_write(key)
        if nx and key in self.data:
            return None
        self.data[key] = value
        if ex:
            self.ttls[key] = ex
        return True

    def setex(self, key, ttl, value):
        self._check_write(key)
        self.data[key] = value
        self.ttls[key] = ttl
        return True

    def incr(self, key):
        self._check_write(key)
        value = int(self.data.get(key, 0)) + 1
        self.data[key] = str(value)
        return value

    def delete(self, *keys):
        self._check_write(*keys)
        deleted = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                deleted += 1
            self.ttls.pop(key, None)
        return deleted

    def eval(self, script, num_keys, *args):
        """Mock EVAL for the compare-and-delete script."""
        self._check()
        key, expected_value = args[0], args[1]
        if self.data.get(key) == expected_value:
            self.delete(key)
            return 1
        return 0

    def exists(self, key):
        self._check()
        return int(key in self.data)

    def ttl(self, key):
        self._check()
        if key not in self.data:
            return -2
        return self.ttls.get(key, -1)

    def scan_iter(self, match=None):
        self._check()
        return [key for key in list(self.data) if match is None or fnmatch.fnmatch(key, match)]


class YieldingCacheManager(CacheManager):
    """In-process cache manager that suspends on every read, as a network round trip would."""

    async def get_raw(self, key):
        await asyncio.sleep(0)
        return await super().get_raw(key)


class Clock:
    """Clock advancing one second per call so creation timestamps are ordered."""

    def __init__(self, start: dt.datetime):
        self.now = start

    def __call__(self) -> dt.datetime:
        self.now += dt.timedelta(seconds=1)
        return self.now


class Seeder:
    """Writes fixture rows straight into the row store."""

    def __init__(self, row_store):
        self.row_store = row_store

    def lesson(self, lesson_id: str = "L1", **fields) -> Dict[str, Any]:
        values = {
            "lesson_id": lesson_id,
            "date": LESSON_DATE,
            "classroom": "Tokyo",
            "venue": "Asakusa",
            "classroom_type": "session_based",
            "first_start": "10:00",
            "first_end": "13:00",
            "total_capacity": 1,
            "beginner_capacity": 0,
            "status": "scheduled",
            "reservation_ids": [],
        }
        values.update(fields)
        self.row_store.append_row("schedule", values)
        return values

    def time_dual_lesson(self, lesson_id: str = "L1", **fields) -> Dict[str, Any]:
        values = {
            "classroom_type": "time_dual",
            "first_start": "09:00",
            "first_end": "12:00",
            "second_start": "13:00",
            "second_end": "17:00",
        }
        values.update(fields)
        return self.lesson(lesson_id, **values)

    def reservation(
        self,
        reservation_id: str,
        lesson_id: str = "L1",
        student_id: str = "S1",
        status: str = "confirmed",
        **fields
    ) -> Dict[str, Any]:
        values = {
            "reservation_id": reservation_id,
            "lesson_id": lesson_id,
            "student_id": student_id,
            "date": LESSON_DATE,
            "classroom": "Tokyo",
            "venue": "Asakusa",
            "start_time": "10:00",
            "end_time": "13:00",
            "status": status,
            "first_lecture": False,
            "created_at": "2026-03-01T10:00:00",
        }
        values.update(fields)
        self.row_store.append_row("reservations", values)
        return values

    def student(self, student_id: str, email: Optional[str] = None, **fields) -> Dict[str, Any]:
        values = {"student_id": student_id, "real_name": f"Student {student_id}", "email": email}
        values.update(fields)
        self.row_store.append_row("roster", values)
        return values

    def item(self, item_name: str, unit_price: int, item_type: str = "tuition") -> Dict[str, Any]:
        values = {"item_type": item_type, "item_name": item_name, "unit_price": unit_price}
        self.row_store.append_row("accounting_master", values)
        return values

    def rows(self, sheet_name: str) -> List[Dict[str, Any]]:
        row_set = self.row_store.scan_all(sheet_name)
        self.row_store.scan_counts[sheet_name] -= 1
        return [dict(zip(row_set.header, row)) for row in row_set.rows]


@pytest.fixture
def config():
    """In-process configuration with short lock waits."""
    return AtelierConfig(
        database_url="sqlite://",
        use_valkey=False,
        lock_wait_timeout_seconds=2,
        lock_ttl_seconds=10,
    )


@pytest.fixture
def cache_manager():
    """Cache manager running on its in-process store."""
    return CacheManager(use_valkey=False)


@pytest.fixture
def mock_valkey():
    return MockValkeyClient()


@pytest.fixture
def valkey_cache_manager(mock_valkey):
    """Cache manager talking to the mock Valkey client."""
    return CacheManager(client=mock_valkey)


@pytest.fixture
def row_store():
    store = InMemoryRowStore()
    bootstrap_sheets(store)
    return store


@pytest.fixture
def seed(row_store):
    return Seeder(row_store)


@pytest.fixture
def clock():
    return Clock(dt.datetime(2026, 3, 2, 9, 0, 0))


@pytest.fixture
async def atelier_app(config, cache_manager, row_store, clock):
    """Wired app on the in-process cache and in-memory row store."""
    application = await build_app(config, cache_manager=cache_manager, row_store=row_store, clock=clock)
    yield application
    await application.close()


@pytest.fixture
async def concurrent_app(config, row_store, clock):
    """Wired app whose cache reads yield to other tasks."""
    application = await build_app(config, cache_manager=YieldingCacheManager(use_valkey=False), row_store=row_store, clock=clock)
    yield application
    await application.close()


@pytest.fixture
async def valkey_app(config, valkey_cache_manager, row_store, clock):
    """Wired app on the mock Valkey client."""
    application = await build_app(config, cache_manager=valkey_cache_manager, row_store=row_store, clock=clock)
    yield application
    await application.close()
