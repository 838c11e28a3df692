# circulation/services/ledger.py
from datetime import datetime
from typing import Awaitable, Callable, List, Optional

from loguru import logger

from circulation.core.errors import InvalidTransition
from circulation.core.events import ItemStatusChanged, emit
from circulation.models.enum import ItemStatus, can_transition
from circulation.models.item import BookItem
from circulation.services.base import ServiceContext, require_aware

ItemHook = Callable[[BookItem, datetime], Awaitable[object]]

# Borrowed belongs to loans and Reserved to the reservation queue
LOAN_OWNED = frozenset({ItemStatus.BORROWED})
QUEUE_OWNED = frozenset({ItemStatus.RESERVED})


class InventoryLedger:
    """
    Authoritative status of every physical copy.

    ``transition`` is the only code path that changes ``BookItem.status``. It must
    run inside an operation that holds the copy's ``book:`` lock, because a copy
    becoming Available immediately hands it to the reservation queue.

    A Reserved copy leaving Reserved for anything but a checkout first withdraws
    its hold, so a copy never carries two live holds.
    """

    def __init__(self, ctx: ServiceContext) -> None:
        self.ctx = ctx
        self._on_available: Optional[ItemHook] = None
        self._on_hold_withdrawn: Optional[ItemHook] = None

    def on_available(self, hook: ItemHook) -> None:
        self._on_available = hook

    def on_hold_withdrawn(self, hook: ItemHook) -> None:
        self._on_hold_withdrawn = hook

    async def transition(self, item: BookItem, new_status: ItemStatus, now: datetime) -> BookItem:
        old_status = item.status
        if not can_transition(old_status, new_status):
            logger.warning(f"Rejected transition for item '{item.id}': {old_status.value} -> {new_status.value}")
            raise InvalidTransition(
                f"Item '{item.id}' cannot move from '{old_status.value}' to '{new_status.value}'.",
                entity_id=item.id,
            )
        item.status = new_status
        await self.ctx.repo.items.update(item)
        emit(ItemStatusChanged(
            occurred_at=now, item_id=item.id, book_id=item.book_id,
            old_status=old_status, new_status=new_status,
        ))
        logger.info(f"Item '{item.id}' ({item.barcode}): {old_status.value} -> {new_status.value}")

        if (
            old_status == ItemStatus.RESERVED
            and new_status != ItemStatus.BORROWED
            and self._on_hold_withdrawn is not None
        ):
            await self._on_hold_withdrawn(item, now)
        if new_status == ItemStatus.AVAILABLE and self._on_available is not None:
            await self._on_available(item, now)
        return item

    async def set_status(self, item_id: str, new_status: ItemStatus, now: datetime) -> BookItem:
        """
        Administrative transition (recover, write off, release a hold) as its own
        atomic operation. Copies on loan and copies entering Reserved are left to
        the loan engine and the reservation queue.
        """
        require_aware(now)
        item = await self.ctx.repo.items.require(item_id)
        async with self.ctx.atomic(f"item:{item_id}", f"book:{item.book_id}"):
            item = await self.ctx.repo.items.require(item_id)
            if item.status in LOAN_OWNED or new_status in LOAN_OWNED | QUEUE_OWNED:
                logger.warning(
                    f"Rejected administrative change for item '{item.id}': "
                    f"{item.status.value} -> {new_status.value}"
                )
                raise InvalidTransition(
                    f"Item '{item.id}' cannot be set from '{item.status.value}' to '{new_status.value}' directly; "
                    f"use checkout, return or reservations.",
                    entity_id=item.id,
                )
            await self.transition(item, new_status, now)
        return item

    async def is_available(self, item_id: str) -> bool:
        item = await self.ctx.repo.items.require(item_id)
        return item.status == ItemStatus.AVAILABLE

    async def available_items(self, book_id: str) -> List[BookItem]:
        return await self.ctx.repo.items.find({"book_id": book_id, "status": ItemStatus.AVAILABLE})
