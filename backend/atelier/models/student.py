"""
Roster and accounting master records.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class StudentModel(BaseModel):
    """A roster entry; only the fields the booking core reads."""
    model_config = ConfigDict(from_attributes=True)

    student_id: str = Field(..., min_length=1, description="Student identifier")
    real_name: Optional[str] = Field(None, description="Legal name")
    nickname: Optional[str] = Field(None, description="Display name")
    phone: Optional[str] = Field(None, description="Phone number")
    email: Optional[str] = Field(None, description="Contact e-mail")
    email_preference: bool = Field(default=False, description="Wants e-mail notices")

    @field_validator("email_preference", mode="before")
    @classmethod
    def blank_flag_is_false(cls, v: Any) -> Any:
        return False if v is None or v == "" else v

    @property
    def display_name(self) -> str:
        return self.nickname or self.real_name or self.student_id


class AccountingItemModel(BaseModel):
    """A priced item of the accounting master."""
    model_config = ConfigDict(from_attributes=True)

    item_type: str = Field(..., description="Tuition, sales or material")
    item_name: str = Field(..., min_length=1, description="Item name")
    unit_price: int = Field(default=0, ge=0, description="Unit price in yen")
    unit: Optional[str] = Field(None, description="Pricing unit")
    target_classroom: Optional[str] = Field(None, description="Classroom the price applies to")
    notes: Optional[str] = Field(None, description="Free text notes")
