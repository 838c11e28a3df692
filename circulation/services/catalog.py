# circulation/services/catalog.py
from datetime import datetime
from typing import List, Optional

from loguru import logger

from circulation.core.errors import CategoryCycle
from circulation.models.category import Category
from circulation.models.item import Book, BookItem
from circulation.services.base import ServiceContext, build, require_aware
from circulation.services.reservations import ReservationQueue

MAX_CATEGORY_DEPTH = 32


class Catalog:
    """Record-keeping for books, copies and categories needed to feed circulation."""

    def __init__(self, ctx: ServiceContext, reservations: ReservationQueue) -> None:
        self.ctx = ctx
        self.reservations = reservations

    async def add_book(self, data: Book.Create) -> Book:
        for category_id in data.category_ids:
            await self.ctx.repo.categories.require(category_id)
        book = build(Book, **data.model_dump())
        await self.ctx.repo.books.add(book)
        logger.info(f"Book '{book.id}' added: {book.title!r} ({book.isbn}).")
        return book

    async def add_item(self, book_id: str, data: BookItem.Create, now: datetime) -> BookItem:
        """New copies start Available and are offered to the book's queue straight away."""
        require_aware(now)
        await self.ctx.repo.books.require(book_id)
        async with self.ctx.atomic(f"book:{book_id}"):
            fields = data.model_dump()
            if fields.get("acquisition_date") is None:
                fields["acquisition_date"] = now.date()
            item = build(BookItem, book_id=book_id, **fields)
            await self.ctx.repo.items.add(item)
            await self.reservations.promote_next(book_id, item, now)
        logger.info(f"Item '{item.id}' ({item.barcode}) added to book '{book_id}' as {item.status.value}.")
        return item

    # --- categories (parent-id adjacency) ---
    async def add_category(self, data: Category.Create) -> Category:
        if data.parent_id is not None:
            await self.ctx.repo.categories.require(data.parent_id)
        category = build(Category, **data.model_dump())
        await self.ctx.repo.categories.add(category)
        return category

    async def ancestors(self, category_id: str) -> List[Category]:
        """Parent chain, nearest first, bounded by MAX_CATEGORY_DEPTH."""
        chain: List[Category] = []
        current = await self.ctx.repo.categories.require(category_id)
        while current.parent_id is not None:
            if len(chain) >= MAX_CATEGORY_DEPTH:
                raise CategoryCycle(f"Category hierarchy above '{category_id}' exceeds depth {MAX_CATEGORY_DEPTH}.")
            parent = await self.ctx.repo.categories.get(current.parent_id)
            if parent is None:
                break
            chain.append(parent)
            current = parent
        return chain

    async def set_parent(self, category_id: str, parent_id: Optional[str]) -> Category:
        async with self.ctx.atomic("categories"):
            category = await self.ctx.repo.categories.require(category_id)
            if parent_id is not None:
                if parent_id == category_id:
                    raise CategoryCycle(f"Category '{category_id}' cannot be its own parent.", entity_id=category_id)
                await self.ctx.repo.categories.require(parent_id)
                if any(a.id == category_id for a in await self.ancestors(parent_id)):
                    logger.warning(f"Rejected parent '{parent_id}' for category '{category_id}': cycle.")
                    raise CategoryCycle(
                        f"Making '{parent_id}' the parent of '{category_id}' would create a cycle.",
                        entity_id=category_id,
                    )
            category.parent_id = parent_id
            await self.ctx.repo.categories.update(category)
        return category

    async def copies(self, book_id: str) -> List[BookItem]:
        await self.ctx.repo.books.require(book_id)
        return await self.ctx.repo.items.find({"book_id": book_id})

    async def get_book(self, book_id: str) -> Book:
        return await self.ctx.repo.books.require(book_id)
