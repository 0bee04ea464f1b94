"""
Distributed lock manager and the reservation write mutex.

Locks are Valkey keys taken with SET NX EX and released with a Lua
compare-and-delete, so a lease that expired and was taken over by another
holder is never deleted by the old one. Without a Valkey client the same
primitives run on the cache manager's in-process store, which serializes
the tasks of a single process.
"""

import asyncio
import logging
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from ..cache.manager import CacheManager
from ..cache.utils import key_manager

logger = logging.getLogger(__name__)

MAX_LEASE_SECONDS = 300


class LockTimeoutError(Exception):
    """Raised when a lock could not be acquired within the wait timeout."""

    def __init__(self, resource_key: str, timeout_seconds: float):
        self.resource_key = resource_key
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Could not acquire lock {resource_key} within {timeout_seconds}s")


@dataclass
class LockInfo:
    """A lease this process holds."""
    lock_key: str
    lock_value: str
    acquired_at: datetime
    ttl_seconds: int
    owner_id: str

    @property
    def expires_at(self) -> datetime:
        return self.acquired_at + timedelta(seconds=self.ttl_seconds)

    @property
    def remaining_ttl_seconds(self) -> float:
        return max(0.0, (self.expires_at - datetime.now()).total_seconds())

    @property
    def is_expired(self) -> bool:
        return self.remaining_ttl_seconds == 0.0

    def to_dict(self) -> Dict[str, Any]:
        return dict(
            lock_key=self.lock_key,
            owner_id=self.owner_id,
            acquired_at=self.acquired_at.isoformat(),
            ttl_seconds=self.ttl_seconds,
            remaining_ttl_seconds=round(self.remaining_ttl_seconds, 3),
            is_expired=self.is_expired,
        )


class DistributedLockManager:
    """
    Leases on named resources, shared by every process using the same Valkey.

    Waiting is bounded by a deadline rather than an attempt count. A lease
    whose holder died simply runs out its TTL.
    """

    def __init__(self, cache_manager: CacheManager, default_lock_ttl: int = 60, lock_retry_delay: float = 0.05):
        """
        Args:
            cache_manager: Medium providing SET NX EX and compare-and-delete
            default_lock_ttl: Lease TTL in seconds when none is given
            lock_retry_delay: Seconds between acquisition attempts
        """
        self.cache = cache_manager
        self.instance_id = uuid.uuid4().hex[:8]
        self.default_lock_ttl = default_lock_ttl
        self.lock_retry_delay = lock_retry_delay
        self.max_lock_ttl = MAX_LEASE_SECONDS
        self.active_locks: Dict[str, LockInfo] = {}

        logger.info(f"Lock manager {self.instance_id} ready (lease {default_lock_ttl}s)")

    async def acquire_lock(
        self,
        resource_key: str,
        ttl_seconds: Optional[int] = None,
        timeout_seconds: float = 5.0,
        retry_delay: Optional[float] = None
    ) -> Optional[LockInfo]:
        """
        Take the lease on ``resource_key``, polling until ``timeout_seconds``.

        Args:
            resource_key: Name of the guarded resource
            ttl_seconds: Lease TTL, capped at ``max_lock_ttl``
            timeout_seconds: How long to keep trying; 0 tries once
            retry_delay: Pause between tries

        Returns:
            LockInfo, or None if the lease stayed taken
        """
        ttl = min(ttl_seconds or self.default_lock_ttl, self.max_lock_ttl)
        pause = retry_delay or self.lock_retry_delay
        lock_key = key_manager.lock_key(resource_key)
        token = f"{self.instance_id}:{uuid.uuid4().hex}"

        started = time.monotonic()
        deadline = started + max(0.0, timeout_seconds)
        tries = 0

        while True:
            tries += 1
            if await self.cache.set_if_absent(lock_key, token, ttl):
                lease = LockInfo(lock_key, token, datetime.now(), ttl, self.instance_id)
                self.active_locks[lock_key] = lease
                logger.debug(f"Took {lock_key} after {tries} tries ({(time.monotonic() - started) * 1000:.1f}ms)")
                return lease

            left = deadline - time.monotonic()
            if left <= 0:
                logger.warning(
                    f"Gave up on {lock_key} after {tries} tries ({(time.monotonic() - started) * 1000:.1f}ms)"
                )
                return None
            await asyncio.sleep(min(pause, left))

    async def release_lock(self, lock_info: LockInfo) -> bool:
        """
        Give a lease back.

        Returns:
            False when the lease had already expired or passed to another holder
        """
        self.active_locks.pop(lock_info.lock_key, None)

        if await self.cache.delete_if_equals(lock_info.lock_key, lock_info.lock_value):
            logger.debug(f"Released {lock_info.lock_key}")
            return True
        logger.warning(f"{lock_info.lock_key} was no longer ours to release")
        return False

    @asynccontextmanager
    async def lock_context(
        self,
        resource_key: str,
        ttl_seconds: Optional[int] = None,
        timeout_seconds: float = 5.0
    ):
        """
        Yield the lease (or None) and give it back on exit.

        Usage:
            async with lock_manager.lock_context("lesson:L1") as lease:
                if lease:
                    ...
        """
        lease = await self.acquire_lock(resource_key, ttl_seconds, timeout_seconds)
        try:
            yield lease
        finally:
            if lease:
                await self.release_lock(lease)

    async def get_lock_status(self, resource_key: str) -> Optional[Dict[str, Any]]:
        """Who holds ``resource_key`` and for how much longer; None when free."""
        lock_key = key_manager.lock_key(resource_key)
        token = await self.cache.get_raw(lock_key)
        if token is None:
            return None

        holder = token.split(":", 1)[0]
        return dict(
            lock_key=lock_key,
            owner_id=holder,
            is_owned_by_us=holder == self.instance_id,
            ttl_seconds=await self.cache.get_ttl(lock_key) or 0,
        )

    def get_active_locks(self) -> List[Dict[str, Any]]:
        return [lease.to_dict() for lease in self.active_locks.values()]


class ReservationMutex:
    """
    The single mutual-exclusion lock serializing every reservation write.

    One lease covers all lessons and classrooms, so no two capacity checks
    ever interleave. ``try_acquire``/``release`` mirror a plain mutex;
    ``hold`` is the context form used by the transaction manager.
    """

    def __init__(
        self,
        lock_manager: DistributedLockManager,
        resource_key: str = "reservation_write",
        wait_timeout_seconds: float = 30.0,
        lock_ttl_seconds: int = 60
    ):
        self.lock_manager = lock_manager
        self.resource_key = resource_key
        self.wait_timeout_seconds = wait_timeout_seconds
        self.lock_ttl_seconds = lock_ttl_seconds
        self._held: Optional[LockInfo] = None

    @property
    def is_held(self) -> bool:
        return self._held is not None

    async def try_acquire(self, timeout_seconds: Optional[float] = None) -> bool:
        """Wait up to ``timeout_seconds`` (default: the configured wait) for the mutex."""
        timeout = self.wait_timeout_seconds if timeout_seconds is None else timeout_seconds
        lock_info = await self.lock_manager.acquire_lock(
            self.resource_key, ttl_seconds=self.lock_ttl_seconds, timeout_seconds=timeout
        )
        if lock_info is None:
            return False
        self._held = lock_info
        return True

    async def release(self) -> None:
        if self._held is None:
            return
        lock_info, self._held = self._held, None
        await self.lock_manager.release_lock(lock_info)

    @asynccontextmanager
    async def hold(self, timeout_seconds: Optional[float] = None):
        """
        Hold the mutex for the body of an ``async with`` block.

        Raises:
            LockTimeoutError: If the mutex is not acquired in time
        """
        timeout = self.wait_timeout_seconds if timeout_seconds is None else timeout_seconds
        lock_info = await self.lock_manager.acquire_lock(
            self.resource_key, ttl_seconds=self.lock_ttl_seconds, timeout_seconds=timeout
        )
        if lock_info is None:
            raise LockTimeoutError(self.resource_key, timeout)
        try:
            yield lock_info
        finally:
            await self.lock_manager.release_lock(lock_info)
