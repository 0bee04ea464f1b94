"""
Requests, results and events exchanged with the reservation services.
"""

import datetime as dt
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from .enums import RejectionReason, ReservationStatus, TransactionState


class ReservationRequest(BaseModel):
    """A student's request to book a lesson."""
    model_config = ConfigDict(from_attributes=True)

    lesson_id: str = Field(..., min_length=1, description="Lesson to book")
    student_id: str = Field(..., min_length=1, description="Booking student")
    start_time: Optional[str] = Field(None, description="Requested start (HH:MM), time-based classrooms")
    end_time: Optional[str] = Field(None, description="Requested end (HH:MM), time-based classrooms")
    first_lecture: bool = Field(default=False, description="First lesson of a new student")
    chisel_rental: bool = Field(default=False, description="Rent carving tools")
    work_in_progress: Optional[str] = Field(None, description="What the student will work on")
    message_to_teacher: Optional[str] = Field(None, description="Message for the teacher")
    order: Optional[str] = Field(None, description="Material order notes")


class ReservationResult(BaseModel):
    """
    Outcome of a reservation transaction.

    Validation failures come back here with ``success`` false and a
    ``rejection`` reason; infrastructure failures are raised instead.
    """

    success: bool = Field(..., description="Whether the transaction committed")
    reservation_id: Optional[str] = Field(None, description="Affected reservation")
    status: Optional[ReservationStatus] = Field(None, description="Reservation status after the transaction")
    rejection: Optional[RejectionReason] = Field(None, description="Why the transaction was rejected")
    message: str = Field(default="", description="Human readable outcome")
    final_state: TransactionState = Field(..., description="DONE or REJECTED")
    failed_at: Optional[TransactionState] = Field(None, description="State reached before rejection")
    cache_synced: bool = Field(default=True, description="False when the row store committed but the cache could not follow")

    @classmethod
    def done(
        cls,
        reservation_id: str,
        status: ReservationStatus,
        message: str = "",
        cache_synced: bool = True
    ) -> "ReservationResult":
        return cls(
            success=True,
            reservation_id=reservation_id,
            status=status,
            message=message,
            final_state=TransactionState.DONE,
            cache_synced=cache_synced,
        )

    @classmethod
    def rejected(
        cls,
        reason: RejectionReason,
        message: str,
        failed_at: TransactionState,
        reservation_id: Optional[str] = None,
        status: Optional[ReservationStatus] = None
    ) -> "ReservationResult":
        return cls(
            success=False,
            reservation_id=reservation_id,
            status=status,
            rejection=reason,
            message=message,
            final_state=TransactionState.REJECTED,
            failed_at=failed_at,
        )


class WaitlistNotificationEvent(BaseModel):
    """What the notification collaborator needs to tell a waitlisted student about a free seat."""

    lesson_id: str
    date: dt.date
    classroom: str
    venue: Optional[str] = None
    reservation_id: str
    student_id: str
    contact_email: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class AvailableSlots(BaseModel):
    """Remaining seats of a lesson, per block where the classroom has blocks."""

    lesson_id: str
    overall: int = Field(..., ge=0)
    first: Optional[int] = Field(None, ge=0)
    second: Optional[int] = Field(None, ge=0)
    beginner: Optional[int] = Field(None, ge=0)
