# circulation/services/fines.py
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional

from loguru import logger
from pymongo import DESCENDING

from circulation.core.errors import AlreadyPaid, AlreadyWaived
from circulation.core.events import FineAssessed, emit
from circulation.models.enum import PaymentStatus
from circulation.models.fine import Fine
from circulation.models.loan import Loan
from circulation.services.base import ServiceContext, build, require_aware
from circulation.services.directory import WAIVE_FINE, Directory

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


class FineCalculator:
    def __init__(self, ctx: ServiceContext, directory: Directory) -> None:
        self.ctx = ctx
        self.directory = directory

    # --- pure computation ---
    @staticmethod
    def days_late(loan: Loan, now: datetime) -> int:
        end = loan.return_date or now
        return max((end.date() - loan.due_date).days, 0)

    def assess(self, loan: Loan, now: datetime) -> Decimal:
        """Late fee for ``loan`` as of its return (or ``now`` while open). Never negative."""
        days = self.days_late(loan, now)
        if days <= 0:
            return ZERO
        return (self.ctx.policy.fine_rate_per_day * days).quantize(CENT, rounding=ROUND_HALF_UP)

    # --- called by the loan engine inside its transaction ---
    async def assess_closure(
        self, loan: Loan, now: datetime, surcharge: Decimal = ZERO, note: Optional[str] = None
    ) -> Optional[Fine]:
        late_fee = self.assess(loan, now)
        amount = (late_fee + surcharge).quantize(CENT, rounding=ROUND_HALF_UP)
        if amount <= 0:
            return None

        parts = []
        days = self.days_late(loan, now)
        if days:
            parts.append(f"Overdue {days} day(s)")
        if note:
            parts.append(note)
        fine = build(
            Fine,
            loan_id=loan.id,
            member_id=loan.member_id,
            amount=amount,
            fine_date=now.date(),
            reason="; ".join(parts),
        )
        await self.ctx.repo.fines.add(fine)
        emit(FineAssessed(occurred_at=now, fine_id=fine.id, loan_id=loan.id, member_id=loan.member_id, amount=amount))
        logger.info(f"Fine '{fine.id}' of {amount} assessed on loan '{loan.id}' ({fine.reason}).")
        return fine

    # --- settlement ---
    @staticmethod
    def _ensure_pending(fine: Fine) -> None:
        if not fine.is_settled:
            return
        if fine.payment_status == PaymentStatus.PAID:
            raise AlreadyPaid(f"Fine '{fine.id}' is already paid.", entity_id=fine.id)
        if fine.payment_status == PaymentStatus.WAIVED:
            raise AlreadyWaived(f"Fine '{fine.id}' was waived.", entity_id=fine.id)

    async def pay(self, fine_id: str, now: datetime) -> Fine:
        require_aware(now)
        async with self.ctx.atomic(f"fine:{fine_id}"):
            fine = await self.ctx.repo.fines.require(fine_id)
            self._ensure_pending(fine)
            fine.payment_status = PaymentStatus.PAID
            fine.payment_date = now
            await self.ctx.repo.fines.update(fine)
        logger.info(f"Fine '{fine_id}' paid ({fine.amount}).")
        return fine

    async def waive(self, fine_id: str, staff_id: str, now: datetime) -> Fine:
        require_aware(now)
        async with self.ctx.atomic(f"fine:{fine_id}"):
            await self.directory.authorize_staff(staff_id, WAIVE_FINE)
            fine = await self.ctx.repo.fines.require(fine_id)
            self._ensure_pending(fine)
            fine.payment_status = PaymentStatus.WAIVED
            fine.payment_date = now
            fine.waived_by = staff_id
            await self.ctx.repo.fines.update(fine)
        logger.info(f"Fine '{fine_id}' waived by staff '{staff_id}'.")
        return fine

    # --- reads ---
    async def for_member(self, member_id: str, status: Optional[PaymentStatus] = None) -> List[Fine]:
        filters = {"member_id": member_id}
        if status is not None:
            filters["payment_status"] = status
        return await self.ctx.repo.fines.find(filters, sort=[("fine_date", DESCENDING)])

    async def outstanding(self, member_id: str) -> Decimal:
        pending = await self.for_member(member_id, PaymentStatus.PENDING)
        return sum((f.amount for f in pending), ZERO)
