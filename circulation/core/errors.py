# circulation/core/errors.py
from enum import Enum
from typing import Optional


class ErrorCategory(str, Enum):
    VALIDATION = "validation"
    STATE_CONFLICT = "state_conflict"
    CONTENTION = "contention"
    INTEGRITY = "integrity"


class CirculationError(Exception):
    """Base class for every error raised by the circulation core."""
    category: ErrorCategory = ErrorCategory.STATE_CONFLICT
    retryable: bool = False

    def __init__(self, message: str, *, entity_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.entity_id = entity_id

    @property
    def code(self) -> str:
        return type(self).__name__


# --- validation ---
class ValidationFailed(CirculationError):
    category = ErrorCategory.VALIDATION


class NotFound(ValidationFailed):
    pass


# --- state conflicts ---
class InvalidTransition(CirculationError):
    pass


class ItemUnavailable(CirculationError):
    pass


class MemberIneligible(CirculationError):
    pass


class RenewalLimitExceeded(CirculationError):
    pass


class LoanClosed(CirculationError):
    pass


class ItemReserved(CirculationError):
    pass


class AlreadyAvailable(CirculationError):
    pass


class DuplicateReservation(CirculationError):
    pass


class AlreadyPaid(CirculationError):
    pass


class AlreadyWaived(CirculationError):
    pass


class NotAuthorized(CirculationError):
    pass


class ReservationClosed(CirculationError):
    pass


class CategoryCycle(CirculationError):
    pass


# --- contention ---
class Contention(CirculationError):
    category = ErrorCategory.CONTENTION
    retryable = True


# --- integrity ---
class IntegrityFailure(CirculationError):
    category = ErrorCategory.INTEGRITY


class DuplicateKey(IntegrityFailure):
    def __init__(self, message: str, *, field: Optional[str] = None, entity_id: Optional[str] = None):
        super().__init__(message, entity_id=entity_id)
        self.field = field
