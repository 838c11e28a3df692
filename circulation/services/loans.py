# circulation/services/loans.py
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional

from loguru import logger
from pymongo import DESCENDING

from circulation.core.errors import (
    ItemReserved,
    ItemUnavailable,
    LoanClosed,
    RenewalLimitExceeded,
    ValidationFailed,
)
from circulation.core.events import LoanClosed as LoanClosedEvent, emit
from circulation.models.enum import ItemCondition, ItemStatus
from circulation.models.fine import Fine
from circulation.models.loan import Loan
from circulation.services.base import ServiceContext, build, require_aware
from circulation.services.directory import Directory
from circulation.services.fines import ZERO, FineCalculator
from circulation.services.ledger import InventoryLedger
from circulation.services.reservations import ReservationQueue


class LoanEngine:
    """Open -> (renew -> Open)* -> Closed. Closed is terminal."""

    def __init__(
        self,
        ctx: ServiceContext,
        ledger: InventoryLedger,
        fines: FineCalculator,
        reservations: ReservationQueue,
        directory: Directory,
    ) -> None:
        self.ctx = ctx
        self.ledger = ledger
        self.fines = fines
        self.reservations = reservations
        self.directory = directory

    def due_date_from(self, start: datetime):
        return start.date() + timedelta(days=self.ctx.policy.loan_period_days)

    async def checkout(self, item_id: str, member_id: str, now: datetime) -> Loan:
        require_aware(now)
        item = await self.ctx.repo.items.require(item_id)
        async with self.ctx.atomic(f"item:{item_id}", f"book:{item.book_id}"):
            await self.reservations.expire_for_book(item.book_id, now)
            item = await self.ctx.repo.items.require(item_id)

            if item.status == ItemStatus.RESERVED:
                hold = await self.reservations.hold_for_item(item_id)
                if hold is None or hold.member_id != member_id:
                    logger.info(f"Checkout refused: item '{item_id}' is held for another member.")
                    raise ItemUnavailable(f"Item '{item_id}' is reserved for another member.", entity_id=item_id)
            elif item.status != ItemStatus.AVAILABLE:
                logger.info(f"Checkout refused: item '{item_id}' is {item.status.value}.")
                raise ItemUnavailable(f"Item '{item_id}' is {item.status.value}.", entity_id=item_id)

            open_loan = await self.ctx.repo.loans.find_one({"item_id": item_id, "return_date": None})
            if open_loan is not None:
                logger.error(f"Item '{item_id}' is {item.status.value} but loan '{open_loan.id}' is still open.")
                raise ItemUnavailable(f"Item '{item_id}' is already on loan.", entity_id=item_id)

            await self.directory.check_member_eligible(member_id, now)

            loan = build(
                Loan,
                item_id=item_id,
                book_id=item.book_id,
                member_id=member_id,
                loan_date=now,
                due_date=self.due_date_from(now),
            )
            await self.ledger.transition(item, ItemStatus.BORROWED, now)
            await self.ctx.repo.loans.add(loan)
            await self.reservations.consume(loan, now)

        logger.info(f"Loan '{loan.id}' opened: item '{item_id}' to member '{member_id}', due {loan.due_date}.")
        return loan

    async def renew(self, loan_id: str, now: datetime) -> Loan:
        require_aware(now)
        loan = await self.ctx.repo.loans.require(loan_id)
        async with self.ctx.atomic(f"loan:{loan_id}", f"book:{loan.book_id}"):
            loan = await self.ctx.repo.loans.require(loan_id)
            if not loan.is_open:
                raise LoanClosed(f"Loan '{loan_id}' was returned on {loan.return_date}.", entity_id=loan_id)
            if loan.renewal_count >= self.ctx.policy.max_renewals:
                logger.info(f"Renewal refused for loan '{loan_id}': limit {self.ctx.policy.max_renewals} reached.")
                raise RenewalLimitExceeded(
                    f"Loan '{loan_id}' has already been renewed {loan.renewal_count} times.", entity_id=loan_id
                )
            await self.reservations.expire_for_book(loan.book_id, now)
            if await self.reservations.has_waiting(loan.book_id, exclude_member=loan.member_id):
                logger.info(f"Renewal refused for loan '{loan_id}': book '{loan.book_id}' has waiting reservations.")
                raise ItemReserved(f"Book '{loan.book_id}' is reserved by another member.", entity_id=loan_id)

            loan.due_date = max(loan.due_date, now.date()) + timedelta(days=self.ctx.policy.loan_period_days)
            loan.renewal_count += 1
            await self.ctx.repo.loans.update(loan)
        logger.info(f"Loan '{loan_id}' renewed ({loan.renewal_count}); due {loan.due_date}.")
        return loan

    async def return_item(
        self,
        loan_id: str,
        now: datetime,
        condition: Optional[ItemCondition] = None,
        damaged: bool = False,
    ) -> Loan:
        """Closes the loan. The copy is re-shelved (or handed to the next reservation) unless damaged."""
        require_aware(now)
        target = ItemStatus.DAMAGED if damaged else ItemStatus.AVAILABLE
        surcharge = self.ctx.policy.damage_fee if damaged else ZERO
        return await self._close(loan_id, now, target, surcharge, "damaged copy" if damaged else None, condition)

    async def declare_lost(self, loan_id: str, now: datetime) -> Loan:
        require_aware(now)
        loan = await self.ctx.repo.loans.require(loan_id)
        item = await self.ctx.repo.items.require(loan.item_id)
        replacement = item.price if item.price else self.ctx.policy.lost_item_fee
        return await self._close(loan_id, now, ItemStatus.LOST, replacement, "lost copy")

    async def _close(
        self,
        loan_id: str,
        now: datetime,
        target: ItemStatus,
        surcharge: Decimal,
        note: Optional[str],
        condition: Optional[ItemCondition] = None,
    ) -> Loan:
        loan = await self.ctx.repo.loans.require(loan_id)
        async with self.ctx.atomic(f"loan:{loan_id}", f"item:{loan.item_id}", f"book:{loan.book_id}"):
            loan = await self.ctx.repo.loans.require(loan_id)
            if not loan.is_open:
                raise LoanClosed(f"Loan '{loan_id}' was already returned on {loan.return_date}.", entity_id=loan_id)
            if now < loan.loan_date:
                raise ValidationFailed(f"Return time {now} precedes loan date {loan.loan_date}.", entity_id=loan_id)

            loan.return_date = now
            await self.ctx.repo.loans.update(loan)

            item = await self.ctx.repo.items.require(loan.item_id)
            if condition is not None and condition != item.condition:
                item.condition = condition
                if item.status == target:
                    await self.ctx.repo.items.update(item)
            if item.status != target:
                await self.ledger.transition(item, target, now)

            fine: Optional[Fine] = await self.fines.assess_closure(loan, now, surcharge, note)
            emit(LoanClosedEvent(
                occurred_at=now,
                loan_id=loan.id,
                item_id=loan.item_id,
                member_id=loan.member_id,
                overdue_days=self.fines.days_late(loan, now),
                fine_id=fine.id if fine else None,
            ))
        logger.info(
            f"Loan '{loan_id}' closed; item '{loan.item_id}' -> {item.status.value}"
            f"{f', fine {fine.amount}' if fine else ''}."
        )
        return loan

    # --- reads ---
    async def open_loans(self, member_id: str) -> List[Loan]:
        return await self.ctx.repo.loans.find(
            {"member_id": member_id, "return_date": None}, sort=[("due_date", DESCENDING)]
        )

    async def overdue(self, now: datetime) -> List[Loan]:
        return await self.ctx.repo.loans.find({"return_date": None, "due_date": {"$lt": now.date()}})
