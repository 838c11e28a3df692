# circulation/models/reservation.py
from datetime import datetime
from functools import partial
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from circulation.core.utils import new_id
from .base import Entity
from .enum import NotificationStatus, ReservationStatus


class Reservation(Entity):
    """
    A member's place in a book's FIFO queue.

    Pending -> Fulfilled when a copy is held for the member (``item_id`` set,
    ``expiry_date`` moved to the end of the hold window). A held reservation
    either records the loan that consumed it (``loan_id``) or lapses to Expired.
    """
    id: str = Field(default_factory=partial(new_id, "res"))
    book_id: str
    member_id: str
    reservation_date: datetime
    expiry_date: datetime
    status: ReservationStatus = ReservationStatus.PENDING
    notification_status: NotificationStatus = NotificationStatus.NOT_SENT
    item_id: Optional[str] = None
    loan_id: Optional[str] = None

    @model_validator(mode="after")
    def check_expiry(self) -> "Reservation":
        if self.expiry_date <= self.reservation_date:
            raise ValueError("expiry_date must be after reservation_date")
        return self

    @property
    def is_pending(self) -> bool:
        return self.status == ReservationStatus.PENDING

    @property
    def is_holding(self) -> bool:
        """Fulfilled, copy set aside, not yet checked out."""
        return (
            self.status == ReservationStatus.FULFILLED
            and self.item_id is not None
            and self.loan_id is None
        )

    def is_stale(self, now: datetime) -> bool:
        return (self.is_pending or self.is_holding) and now >= self.expiry_date

    class Create(BaseModel):
        book_id: str = Field(..., min_length=1)
        member_id: str = Field(..., min_length=1)

    class Notification(BaseModel):
        sent: bool
