"""
Wiring of the booking core.

``build_app`` assembles the cache, row store and services from an
``AtelierConfig``. Tests and embedding applications pass their own cache
manager or row store to replace the configured ones.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from .cache.chunked_store import ChunkedCacheStore
from .cache.datasets import bootstrap_sheets
from .cache.incremental import IncrementalCacheUpdater
from .cache.manager import CacheManager
from .cache.versioned import VersionedCache
from .database.config import DatabaseConfig
from .services.capacity import CapacityCalculator
from .services.lock_manager import DistributedLockManager, ReservationMutex
from .services.reservation_manager import ReservationTransactionManager
from .services.waitlist_notifier import NotificationSink, WaitlistNotifier
from .store.base import RowStore
from .store.sql import SqlRowStore
from .utils.config import AtelierConfig, get_config

logger = logging.getLogger(__name__)


@dataclass
class AtelierApp:
    """The assembled components."""
    config: AtelierConfig
    cache_manager: CacheManager
    row_store: RowStore
    store: ChunkedCacheStore
    cache: VersionedCache
    updater: IncrementalCacheUpdater
    lock_manager: DistributedLockManager
    mutex: ReservationMutex
    calculator: CapacityCalculator
    notifier: WaitlistNotifier
    reservations: ReservationTransactionManager
    db_config: Optional[DatabaseConfig] = None

    async def close(self) -> None:
        await self.cache_manager.close()
        if self.db_config:
            self.db_config.close()
        logger.info("Atelier app closed")


async def build_app(
    config: Optional[AtelierConfig] = None,
    cache_manager: Optional[CacheManager] = None,
    row_store: Optional[RowStore] = None,
    sink: Optional[NotificationSink] = None,
    clock: Callable[[], datetime] = datetime.now
) -> AtelierApp:
    """
    Build the booking core.

    Args:
        config: Settings; the process-wide configuration when omitted
        cache_manager: Replaces the configured (Valkey or in-process) manager
        row_store: Replaces the SQL row store on ``config.database_url``
        sink: Notification delivery; waitlist events are only logged without one
        clock: Source of "now" for creation timestamps and past-lesson checks
    """
    config = config or get_config()

    if cache_manager is None:
        cache_manager = CacheManager(
            config=config.valkey_config(),
            policy=config.cache_policy(),
            use_valkey=config.use_valkey,
        )
        await cache_manager.initialize()

    db_config = None
    if row_store is None:
        db_config = DatabaseConfig(database_url=config.database_url, echo=config.debug)
        row_store = SqlRowStore(db_config)
    bootstrap_sheets(row_store)

    store = ChunkedCacheStore(cache_manager, cache_manager.policy)
    cache = VersionedCache(store, row_store)
    updater = IncrementalCacheUpdater(cache)

    lock_manager = DistributedLockManager(cache_manager, default_lock_ttl=config.lock_ttl_seconds)
    mutex = ReservationMutex(
        lock_manager,
        wait_timeout_seconds=config.lock_wait_timeout_seconds,
        lock_ttl_seconds=config.lock_ttl_seconds,
    )

    calculator = CapacityCalculator()
    notifier = WaitlistNotifier(cache, calculator, sink=sink, clock=clock)
    reservations = ReservationTransactionManager(
        cache, updater, row_store, mutex, calculator, notifier, clock=clock
    )

    logger.info(f"Atelier app ready (row store: {type(row_store).__name__})")
    return AtelierApp(
        config=config,
        cache_manager=cache_manager,
        row_store=row_store,
        store=store,
        cache=cache,
        updater=updater,
        lock_manager=lock_manager,
        mutex=mutex,
        calculator=calculator,
        notifier=notifier,
        reservations=reservations,
        db_config=db_config,
    )
