"""
Pydantic v2 models for the booking core.
"""

from .enums import (
    DatasetKey,
    ReservationStatus,
    ClassroomType,
    ScheduleStatus,
    PaymentMethod,
    TransactionState,
    RejectionReason,
)

from .lesson import LessonModel

from .reservation import (
    AccountingLineItem,
    AccountingDetails,
    ReservationModel,
)

from .student import StudentModel, AccountingItemModel

from .cache import (
    RowSet,
    ChunkPayload,
    ChunkMeta,
    ChunkSet,
    CachedDataset,
    CacheInfo,
)

from .results import (
    ReservationRequest,
    ReservationResult,
    WaitlistNotificationEvent,
    AvailableSlots,
)

from .schema import RowSchema

__all__ = [
    # Enums
    "DatasetKey",
    "ReservationStatus",
    "ClassroomType",
    "ScheduleStatus",
    "PaymentMethod",
    "TransactionState",
    "RejectionReason",

    # Records
    "LessonModel",
    "AccountingLineItem",
    "AccountingDetails",
    "ReservationModel",
    "StudentModel",
    "AccountingItemModel",

    # Cache payloads
    "RowSet",
    "ChunkPayload",
    "ChunkMeta",
    "ChunkSet",
    "CachedDataset",
    "CacheInfo",

    # Requests, results and events
    "ReservationRequest",
    "ReservationResult",
    "WaitlistNotificationEvent",
    "AvailableSlots",

    # Codec
    "RowSchema",
]
