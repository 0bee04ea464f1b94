"""
Booking services: the reservation mutex, capacity accounting, the
reservation transaction manager and waitlist notifications.
"""

from .lock_manager import DistributedLockManager, LockInfo, LockTimeoutError, ReservationMutex
from .capacity import (
    CapacityCalculator,
    TimeWindow,
    Block,
    parse_time_minutes,
    check_reservation_window,
    MIN_RESERVATION_MINUTES,
)
from .waitlist_notifier import WaitlistNotifier, NotificationSink, LoggingNotificationSink
from .reservation_manager import ReservationTransactionManager, TransactionContext, UPDATABLE_COLUMNS

__all__ = [
    'DistributedLockManager',
    'LockInfo',
    'LockTimeoutError',
    'ReservationMutex',
    'CapacityCalculator',
    'TimeWindow',
    'Block',
    'parse_time_minutes',
    'check_reservation_window',
    'MIN_RESERVATION_MINUTES',
    'WaitlistNotifier',
    'NotificationSink',
    'LoggingNotificationSink',
    'ReservationTransactionManager',
    'TransactionContext',
    'UPDATABLE_COLUMNS',
]
