"""
Schedule models: one Lesson per scheduled class instance.
"""

import datetime as dt
import json
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .enums import ClassroomType, ScheduleStatus


class LessonModel(BaseModel):
    """
    A scheduled class instance (date + classroom) with its capacity layout.

    Time fields are ``HH:MM`` strings as kept in the schedule sheet; they are
    only interpreted by the capacity calculator, which tolerates malformed
    values. ``reservation_ids`` is a derived back-reference that is synced
    after reservation writes and reconciled by a periodic pass.
    """
    model_config = ConfigDict(from_attributes=True)

    lesson_id: str = Field(..., min_length=1, description="Lesson identifier")
    date: dt.date = Field(..., description="Lesson date")
    classroom: str = Field(..., description="Classroom name")
    venue: Optional[str] = Field(None, description="Venue within the classroom's city")
    classroom_type: ClassroomType = Field(
        default=ClassroomType.SESSION_BASED, description="Capacity accounting mode"
    )
    first_start: Optional[str] = Field(None, description="First block start (HH:MM)")
    first_end: Optional[str] = Field(None, description="First block end (HH:MM)")
    second_start: Optional[str] = Field(None, description="Second block start (HH:MM)")
    second_end: Optional[str] = Field(None, description="Second block end (HH:MM)")
    beginner_start: Optional[str] = Field(None, description="Start time for first-time students")
    total_capacity: int = Field(default=0, ge=0, description="Seats in the shared pool")
    beginner_capacity: int = Field(default=0, ge=0, description="Seats for first-time students")
    status: ScheduleStatus = Field(default=ScheduleStatus.SCHEDULED, description="Schedule status")
    notes: Optional[str] = Field(None, description="Free text notes")
    reservation_ids: List[str] = Field(default_factory=list, description="Non-canceled reservation ids")

    @field_validator("total_capacity", "beginner_capacity", mode="before")
    @classmethod
    def blank_capacity_is_zero(cls, v: Any) -> Any:
        return 0 if v is None or v == "" else v

    @field_validator("reservation_ids", mode="before")
    @classmethod
    def parse_reservation_ids(cls, v: Any) -> Any:
        if v is None or v == "":
            return []
        if isinstance(v, str):
            try:
                v = json.loads(v)
            except ValueError:
                return []
        return [str(item) for item in v] if isinstance(v, list) else []

    @property
    def is_time_based(self) -> bool:
        return self.classroom_type in (ClassroomType.TIME_DUAL, ClassroomType.TIME_FULL)

    @property
    def is_bookable(self) -> bool:
        return self.status == ScheduleStatus.SCHEDULED
