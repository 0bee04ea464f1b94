"""
Enums for the class booking core.

String values are what the row store and the cache hold.
"""

from enum import Enum


class DatasetKey(str, Enum):
    """Logical datasets mirrored in the cache."""
    RESERVATIONS = "reservations"
    SCHEDULE = "schedule"
    ACCOUNTING_MASTER = "accounting_master"
    ROSTER = "roster"


class ReservationStatus(str, Enum):
    """Reservation lifecycle states."""
    CONFIRMED = "confirmed"
    WAITLISTED = "waitlisted"
    COMPLETED = "completed"    # Accounting saved, terminal for cache purposes
    CANCELED = "canceled"      # Terminal, never reused


class ClassroomType(str, Enum):
    """Capacity accounting modes of a classroom."""
    SESSION_BASED = "session_based"
    TIME_DUAL = "time_dual"    # Morning and afternoon blocks
    TIME_FULL = "time_full"    # One all-day window


class ScheduleStatus(str, Enum):
    """Status of a scheduled lesson."""
    SCHEDULED = "scheduled"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class PaymentMethod(str, Enum):
    CASH = "cash"
    CARD = "card"
    TRANSFER = "transfer"


class TransactionState(str, Enum):
    """States a reservation transaction walks through."""
    REQUESTED = "requested"
    LOCK_ACQUIRED = "lock_acquired"
    VALIDATED = "validated"
    PERSISTED = "persisted"
    CACHE_SYNCED = "cache_synced"
    DONE = "done"
    REJECTED = "rejected"


class RejectionReason(str, Enum):
    """Why a reservation transaction was rejected."""
    LOCK_TIMEOUT = "lock_timeout"
    CAPACITY_EXCEEDED = "capacity_exceeded"
    DUPLICATE_BOOKING = "duplicate_booking"
    LESSON_NOT_FOUND = "lesson_not_found"
    LESSON_NOT_BOOKABLE = "lesson_not_bookable"
    RESERVATION_NOT_FOUND = "reservation_not_found"
    ALREADY_FINALIZED = "already_finalized"
    INVALID_STATE = "invalid_state"
    INVALID_REQUEST = "invalid_request"
    PERMISSION_DENIED = "permission_denied"
