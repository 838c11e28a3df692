# circulation/models/enum.py
from enum import Enum
from typing import Dict, FrozenSet


class ItemStatus(str, Enum):
    AVAILABLE = "available"
    BORROWED = "borrowed"
    RESERVED = "reserved"
    LOST = "lost"
    DAMAGED = "damaged"


class ItemCondition(str, Enum):
    NEW = "new"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"


class MemberStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    SUSPENDED = "suspended"


class StaffStatus(str, Enum):
    ACTIVE = "active"
    ON_LEAVE = "on_leave"
    TERMINATED = "terminated"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    WAIVED = "waived"


class ReservationStatus(str, Enum):
    PENDING = "pending"
    FULFILLED = "fulfilled"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class NotificationStatus(str, Enum):
    NOT_SENT = "not_sent"
    SENT = "sent"
    FAILED = "failed"


class HistoryStatus(str, Enum):
    OVERDUE = "overdue"
    BORROWED = "borrowed"
    RETURNED = "returned"


# --- Item transition table ---
# Lost and Damaged are reachable from every other state.
_WRITE_OFF = frozenset({ItemStatus.LOST, ItemStatus.DAMAGED})

ITEM_TRANSITIONS: Dict[ItemStatus, FrozenSet[ItemStatus]] = {
    ItemStatus.AVAILABLE: frozenset({ItemStatus.BORROWED, ItemStatus.RESERVED}) | _WRITE_OFF,
    ItemStatus.BORROWED: frozenset({ItemStatus.AVAILABLE}) | _WRITE_OFF,
    ItemStatus.RESERVED: frozenset({ItemStatus.BORROWED, ItemStatus.AVAILABLE}) | _WRITE_OFF,
    ItemStatus.LOST: frozenset({ItemStatus.AVAILABLE, ItemStatus.DAMAGED}),
    ItemStatus.DAMAGED: frozenset({ItemStatus.AVAILABLE, ItemStatus.LOST}),
}


def can_transition(current: ItemStatus, new: ItemStatus) -> bool:
    return new in ITEM_TRANSITIONS.get(current, frozenset())


