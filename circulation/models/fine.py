# circulation/models/fine.py
from datetime import datetime
from functools import partial
from typing import Optional

from pydantic import BaseModel, Field

from circulation.core.utils import new_id
from .base import CalendarDate, Entity, Money
from .enum import PaymentStatus


class Fine(Entity):
    """At most one per loan. Frozen once paid or waived."""
    id: str = Field(default_factory=partial(new_id, "fine"))
    loan_id: str
    member_id: str
    amount: Money = Field(..., gt=0)
    fine_date: CalendarDate
    reason: str = Field(..., min_length=1, max_length=255)
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_date: Optional[datetime] = None
    waived_by: Optional[str] = None

    @property
    def is_settled(self) -> bool:
        return self.payment_status != PaymentStatus.PENDING

    class Waive(BaseModel):
        staff_id: str = Field(..., min_length=1)
