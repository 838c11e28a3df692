# circulation/models/member.py
from datetime import date
from functools import partial
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, model_validator

from circulation.core.utils import new_id
from .base import CalendarDate, Entity
from .enum import MemberStatus, StaffStatus


class Member(Entity):
    id: str = Field(default_factory=partial(new_id, "mbr"))
    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)
    email: EmailStr
    phone_number: Optional[str] = Field(None, max_length=20)
    membership_date: CalendarDate
    membership_expiry: Optional[CalendarDate] = None
    status: MemberStatus = MemberStatus.ACTIVE

    @model_validator(mode="after")
    def check_expiry_after_start(self) -> "Member":
        if self.membership_expiry is not None and self.membership_expiry < self.membership_date:
            raise ValueError("membership_expiry must not precede membership_date")
        return self

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def membership_lapsed(self, today: date) -> bool:
        return self.membership_expiry is not None and today > self.membership_expiry

    class Create(BaseModel):
        first_name: str = Field(..., min_length=1, max_length=50)
        last_name: str = Field(..., min_length=1, max_length=50)
        email: EmailStr
        phone_number: Optional[str] = Field(None, max_length=20)
        membership_expiry: Optional[CalendarDate] = None


class Staff(Entity):
    id: str = Field(default_factory=partial(new_id, "stf"))
    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)
    email: EmailStr
    position: str = Field(..., min_length=1, max_length=100)
    hire_date: Optional[CalendarDate] = None
    status: StaffStatus = StaffStatus.ACTIVE

    class Create(BaseModel):
        first_name: str = Field(..., min_length=1, max_length=50)
        last_name: str = Field(..., min_length=1, max_length=50)
        email: EmailStr
        position: str = Field(..., min_length=1, max_length=100)
        hire_date: Optional[CalendarDate] = None
