# circulation/models/loan.py
from datetime import date, datetime
from functools import partial
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from circulation.core.config import MAX_RENEWALS
from circulation.core.utils import new_id
from .base import CalendarDate, Entity
from .enum import ItemCondition


class Loan(Entity):
    """One borrowing of one copy. Open while ``return_date`` is None, closed afterwards."""
    id: str = Field(default_factory=partial(new_id, "loan"))
    item_id: str
    book_id: str
    member_id: str
    loan_date: datetime
    due_date: CalendarDate
    return_date: Optional[datetime] = None
    renewal_count: int = Field(default=0, ge=0, le=MAX_RENEWALS)

    @model_validator(mode="after")
    def check_dates(self) -> "Loan":
        if self.due_date < self.loan_date.date():
            raise ValueError("due_date must not precede the loan date")
        if self.return_date is not None and self.return_date < self.loan_date:
            raise ValueError("return_date must not precede loan_date")
        return self

    @property
    def is_open(self) -> bool:
        return self.return_date is None

    def is_overdue(self, now: datetime) -> bool:
        return self.is_open and now.date() > self.due_date

    def days_overdue(self, today: date) -> int:
        return max((today - self.due_date).days, 0)

    # --- API schemas ---
    class Checkout(BaseModel):
        item_id: str = Field(..., min_length=1)
        member_id: str = Field(..., min_length=1)

    class Return(BaseModel):
        condition: Optional[ItemCondition] = None
        damaged: bool = False
