# circulation/core/events.py
"""
Domain events emitted by the circulation services.

Events raised while an operation runs are buffered in a context-local outbox
and only handed to subscribers after the operation's transaction commits. A
rolled-back operation publishes nothing.
"""
import inspect
from contextvars import ContextVar
from datetime import datetime
from decimal import Decimal
from typing import Awaitable, Callable, List, Optional, Union

from loguru import logger
from pydantic import BaseModel

from circulation.models.enum import ItemStatus


class DomainEvent(BaseModel):
    occurred_at: datetime

    @property
    def name(self) -> str:
        return type(self).__name__


class ItemStatusChanged(DomainEvent):
    item_id: str
    book_id: str
    old_status: ItemStatus
    new_status: ItemStatus


class LoanClosed(DomainEvent):
    loan_id: str
    item_id: str
    member_id: str
    overdue_days: int
    fine_id: Optional[str] = None


class ReservationFulfilled(DomainEvent):
    reservation_id: str
    book_id: str
    member_id: str
    item_id: str
    hold_expires_at: datetime


class ReservationExpired(DomainEvent):
    reservation_id: str
    book_id: str
    member_id: str
    item_id: Optional[str] = None


class FineAssessed(DomainEvent):
    fine_id: str
    loan_id: str
    member_id: str
    amount: Decimal


Handler = Callable[[DomainEvent], Union[None, Awaitable[None]]]

_outbox: ContextVar[Optional[List[DomainEvent]]] = ContextVar("event_outbox", default=None)


def emit(event: DomainEvent) -> None:
    """Queue an event for publication once the surrounding operation commits."""
    outbox = _outbox.get()
    if outbox is None:
        raise RuntimeError(f"{event.name} emitted outside of an atomic operation")
    outbox.append(event)


class EventBus:
    """In-process fan-out to subscribers (e.g. the notification collaborator)."""

    def __init__(self) -> None:
        self._handlers: List[Handler] = []

    def subscribe(self, handler: Handler) -> None:
        self._handlers.append(handler)

    def open_outbox(self):
        outbox: List[DomainEvent] = []
        return outbox, _outbox.set(outbox)

    @staticmethod
    def close_outbox(token) -> None:
        _outbox.reset(token)

    async def publish(self, events: List[DomainEvent]) -> None:
        for event in events:
            logger.debug(f"Publishing {event.name}: {event.model_dump(mode='json')}")
            for handler in self._handlers:
                try:
                    result = handler(event)
                    if inspect.isawaitable(result):
                        await result
                except Exception as e:
                    # subscribers never undo a committed operation
                    logger.exception(f"Event handler {handler!r} failed on {event.name}: {e}")
