"""
Reservation and accounting models.
"""

import datetime as dt
import json
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .enums import PaymentMethod, ReservationStatus


class AccountingLineItem(BaseModel):
    """One priced line of a reservation's bill."""
    model_config = ConfigDict(from_attributes=True)

    name: str = Field(..., min_length=1, description="Item name from the accounting master")
    unit_price: int = Field(..., ge=0, description="Unit price in yen")
    quantity: float = Field(default=1, gt=0, description="Quantity in the item's unit")
    subtotal: int = Field(..., ge=0, description="Line total in yen")


class AccountingDetails(BaseModel):
    """
    Accounting saved when a reservation is completed.

    Pricing is computed elsewhere; this model only checks that the figures
    are well-formed and add up.
    """
    model_config = ConfigDict(from_attributes=True)

    tuition: List[AccountingLineItem] = Field(default_factory=list, description="Tuition lines")
    sales: List[AccountingLineItem] = Field(default_factory=list, description="Material and goods lines")
    payment_method: PaymentMethod = Field(..., description="How the student paid")
    grand_total: int = Field(..., ge=0, description="Total charged in yen")

    @model_validator(mode="after")
    def check_grand_total(self) -> "AccountingDetails":
        lines = self.tuition + self.sales
        if lines and sum(line.subtotal for line in lines) != self.grand_total:
            raise ValueError("grand_total does not match the sum of line subtotals")
        return self


class ReservationModel(BaseModel):
    """
    One student's booking against a lesson.

    ``date``, ``classroom`` and ``venue`` are copied from the lesson at
    creation so the reservations dataset can be read without the schedule.
    """
    model_config = ConfigDict(from_attributes=True)

    reservation_id: str = Field(..., min_length=1, description="Reservation identifier")
    lesson_id: str = Field(..., min_length=1, description="Booked lesson")
    student_id: str = Field(..., min_length=1, description="Booking student")
    date: dt.date = Field(..., description="Lesson date")
    classroom: str = Field(..., description="Classroom name")
    venue: Optional[str] = Field(None, description="Venue")
    start_time: Optional[str] = Field(None, description="Start time (HH:MM)")
    end_time: Optional[str] = Field(None, description="End time (HH:MM)")
    status: ReservationStatus = Field(..., description="Lifecycle status")
    first_lecture: bool = Field(default=False, description="First lesson of a new student")
    chisel_rental: bool = Field(default=False, description="Student rents carving tools")
    work_in_progress: Optional[str] = Field(None, description="What the student is working on")
    message_to_teacher: Optional[str] = Field(None, description="Message left with the booking")
    order: Optional[str] = Field(None, description="Material order notes")
    created_at: str = Field(default="", description="ISO timestamp of creation, used for waitlist order")
    accounting_details: Optional[AccountingDetails] = Field(None, description="Saved on completion")

    @field_validator("first_lecture", "chisel_rental", mode="before")
    @classmethod
    def blank_flag_is_false(cls, v: Any) -> Any:
        return False if v is None or v == "" else v

    @field_validator("accounting_details", mode="before")
    @classmethod
    def parse_accounting_details(cls, v: Any) -> Any:
        if v is None or v == "":
            return None
        if isinstance(v, str):
            return json.loads(v)
        return v

    @property
    def is_active(self) -> bool:
        """Confirmed or Waitlisted: still changeable by the student."""
        return self.status in (ReservationStatus.CONFIRMED, ReservationStatus.WAITLISTED)
