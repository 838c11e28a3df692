# circulation/services/reservations.py
from datetime import datetime, timedelta
from typing import List, Optional

from loguru import logger
from pymongo import ASCENDING

from circulation.core.errors import AlreadyAvailable, DuplicateReservation, ReservationClosed
from circulation.core.events import ReservationExpired, ReservationFulfilled, emit
from circulation.models.enum import ItemStatus, NotificationStatus, ReservationStatus
from circulation.models.item import BookItem
from circulation.models.loan import Loan
from circulation.models.reservation import Reservation
from circulation.services.base import ServiceContext, build, require_aware
from circulation.services.directory import Directory
from circulation.services.ledger import InventoryLedger

FIFO = [("reservation_date", ASCENDING), ("id", ASCENDING)]
OPEN_STATUSES = [ReservationStatus.PENDING, ReservationStatus.FULFILLED]


class ReservationQueue:
    """
    Per-book FIFO queue of holds.

    Registers itself with the ledger: every copy that becomes Available is
    offered to the head of its book's queue before anyone else can see it.
    """

    def __init__(self, ctx: ServiceContext, ledger: InventoryLedger, directory: Directory) -> None:
        self.ctx = ctx
        self.ledger = ledger
        self.directory = directory
        ledger.on_available(self._offer)
        ledger.on_hold_withdrawn(self._withdraw_hold)

    # --- reads ---
    async def queue(self, book_id: str) -> List[Reservation]:
        return await self.ctx.repo.reservations.find(
            {"book_id": book_id, "status": ReservationStatus.PENDING}, sort=FIFO
        )

    async def hold_for_item(self, item_id: str) -> Optional[Reservation]:
        return await self.ctx.repo.reservations.find_one(
            {"item_id": item_id, "status": ReservationStatus.FULFILLED, "loan_id": None}
        )

    async def has_waiting(self, book_id: str, exclude_member: Optional[str] = None) -> bool:
        return any(r.member_id != exclude_member for r in await self.queue(book_id))

    async def active_for_member(self, book_id: str, member_id: str) -> Optional[Reservation]:
        found = await self.ctx.repo.reservations.find(
            {"book_id": book_id, "member_id": member_id, "status": {"$in": OPEN_STATUSES}}
        )
        return next((r for r in found if r.is_pending or r.is_holding), None)

    # --- public operations ---
    async def reserve(self, book_id: str, member_id: str, now: datetime) -> Reservation:
        require_aware(now)
        await self.ctx.repo.books.require(book_id)
        async with self.ctx.atomic(f"book:{book_id}"):
            await self.expire_for_book(book_id, now)
            if await self.ledger.available_items(book_id):
                logger.info(f"Reservation refused: book '{book_id}' has an available copy.")
                raise AlreadyAvailable(
                    f"Book '{book_id}' has a copy available; check it out instead.", entity_id=book_id
                )
            if await self.active_for_member(book_id, member_id) is not None:
                raise DuplicateReservation(
                    f"Member '{member_id}' already has an open reservation for book '{book_id}'.",
                    entity_id=book_id,
                )
            await self.directory.check_member_eligible(member_id, now)
            reservation = build(
                Reservation,
                book_id=book_id,
                member_id=member_id,
                reservation_date=now,
                expiry_date=now + timedelta(days=self.ctx.policy.reservation_lifetime_days),
            )
            await self.ctx.repo.reservations.add(reservation)
        logger.info(f"Reservation '{reservation.id}' queued: member '{member_id}' for book '{book_id}'.")
        return reservation

    async def cancel(self, reservation_id: str, now: datetime) -> Reservation:
        require_aware(now)
        reservation = await self.ctx.repo.reservations.require(reservation_id)
        async with self.ctx.atomic(f"book:{reservation.book_id}"):
            reservation = await self.ctx.repo.reservations.require(reservation_id)
            if not (reservation.is_pending or reservation.is_holding):
                raise ReservationClosed(
                    f"Reservation '{reservation_id}' is already {reservation.status.value}.", entity_id=reservation_id
                )
            was_holding = reservation.is_holding
            reservation.status = ReservationStatus.CANCELLED
            await self.ctx.repo.reservations.update(reservation)
            if was_holding:
                await self._release_item(reservation.item_id, now)
        logger.info(f"Reservation '{reservation_id}' cancelled.")
        return reservation

    async def promote_next(self, book_id: str, item: BookItem, now: datetime) -> Optional[Reservation]:
        """
        Hands ``item`` to the earliest live Pending reservation of ``book_id``.
        Must run inside an operation holding the ``book:`` lock.
        """
        if item.status != ItemStatus.AVAILABLE:
            return None
        for reservation in await self.queue(book_id):
            if reservation.is_stale(now):
                await self._expire(reservation, now)
                continue
            reservation.status = ReservationStatus.FULFILLED
            reservation.item_id = item.id
            reservation.expiry_date = now + timedelta(days=self.ctx.policy.hold_window_days)
            reservation.notification_status = NotificationStatus.NOT_SENT
            await self.ctx.repo.reservations.update(reservation)
            await self.ledger.transition(item, ItemStatus.RESERVED, now)
            emit(ReservationFulfilled(
                occurred_at=now,
                reservation_id=reservation.id,
                book_id=book_id,
                member_id=reservation.member_id,
                item_id=item.id,
                hold_expires_at=reservation.expiry_date,
            ))
            logger.info(
                f"Reservation '{reservation.id}' fulfilled with item '{item.id}'; "
                f"hold expires {reservation.expiry_date.isoformat()}."
            )
            return reservation
        return None

    async def expire_for_book(self, book_id: str, now: datetime) -> int:
        """Lazily expires stale reservations of one book. Caller holds the ``book:`` lock."""
        candidates = await self.ctx.repo.reservations.find(
            {"book_id": book_id, "status": {"$in": OPEN_STATUSES}, "expiry_date": {"$lte": now}}, sort=FIFO
        )
        expired = 0
        for candidate in candidates:
            # earlier iterations may have promoted or expired this one already
            reservation = await self.ctx.repo.reservations.get(candidate.id)
            if reservation is None or not reservation.is_stale(now):
                continue
            await self._expire(reservation, now)
            expired += 1
        return expired

    async def expire_stale_reservations(self, now: datetime) -> int:
        """Idempotent sweep over every book with stale reservations; one transaction per book."""
        require_aware(now)
        stale = await self.ctx.repo.reservations.find(
            {"status": {"$in": OPEN_STATUSES}, "expiry_date": {"$lte": now}}
        )
        book_ids = sorted({r.book_id for r in stale if r.is_stale(now)})
        total = 0
        for book_id in book_ids:
            async with self.ctx.atomic(f"book:{book_id}"):
                total += await self.expire_for_book(book_id, now)
        if total:
            logger.info(f"Expired {total} stale reservation(s) across {len(book_ids)} book(s).")
        return total

    async def consume(self, loan: Loan, now: datetime) -> Optional[Reservation]:
        """
        Records ``loan`` against the borrower's open reservation for the book.
        A hold on another copy is given up and that copy is offered to the next
        in line. Caller holds the ``book:`` lock.
        """
        reservation = await self.active_for_member(loan.book_id, loan.member_id)
        if reservation is None:
            return None
        other_copy = reservation.item_id if reservation.is_holding and reservation.item_id != loan.item_id else None
        reservation.status = ReservationStatus.FULFILLED
        reservation.item_id = loan.item_id
        reservation.loan_id = loan.id
        await self.ctx.repo.reservations.update(reservation)
        logger.info(f"Reservation '{reservation.id}' consumed by loan '{loan.id}'.")
        if other_copy is not None:
            await self._release_item(other_copy, now)
        return reservation

    async def mark_notified(self, reservation_id: str, sent: bool) -> Reservation:
        async with self.ctx.atomic(f"reservation:{reservation_id}"):
            reservation = await self.ctx.repo.reservations.require(reservation_id)
            reservation.notification_status = NotificationStatus.SENT if sent else NotificationStatus.FAILED
            await self.ctx.repo.reservations.update(reservation)
        return reservation

    # --- internals ---
    async def _expire(self, reservation: Reservation, now: datetime) -> None:
        was_holding = reservation.is_holding
        reservation.status = ReservationStatus.EXPIRED
        await self.ctx.repo.reservations.update(reservation)
        emit(ReservationExpired(
            occurred_at=now,
            reservation_id=reservation.id,
            book_id=reservation.book_id,
            member_id=reservation.member_id,
            item_id=reservation.item_id if was_holding else None,
        ))
        logger.info(f"Reservation '{reservation.id}' expired{' (hold released)' if was_holding else ''}.")
        if was_holding:
            await self._release_item(reservation.item_id, now)

    async def _release_item(self, item_id: str, now: datetime) -> None:
        item = await self.ctx.repo.items.get(item_id)
        if item is not None and item.status == ItemStatus.RESERVED:
            # Reserved -> Available re-enters promotion for the next in line
            await self.ledger.transition(item, ItemStatus.AVAILABLE, now)

    async def _offer(self, item: BookItem, now: datetime) -> None:
        await self.promote_next(item.book_id, item, now)

    async def _withdraw_hold(self, item: BookItem, now: datetime) -> None:
        """
        Held copy left Reserved without being checked out. A written-off copy
        sends its holder back to the head of the queue; a copy released to the
        shelf cancels the hold before the next member is offered it.
        """
        hold = await self.hold_for_item(item.id)
        if hold is None:
            return
        if item.status == ItemStatus.AVAILABLE:
            hold.status = ReservationStatus.CANCELLED
            await self.ctx.repo.reservations.update(hold)
            logger.info(f"Reservation '{hold.id}' cancelled: held item '{item.id}' was released.")
            return
        hold.status = ReservationStatus.PENDING
        hold.item_id = None
        hold.expiry_date = now + timedelta(days=self.ctx.policy.reservation_lifetime_days)
        await self.ctx.repo.reservations.update(hold)
        logger.info(f"Reservation '{hold.id}' returned to queue: held item '{item.id}' is {item.status.value}.")
