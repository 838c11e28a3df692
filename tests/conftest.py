# tests/conftest.py
import os

# must be set before circulation.core.config is imported
os.environ["STORAGE_BACKEND"] = "memory"
os.environ["SCHEDULER_ENABLED"] = "False"
os.environ["LOG_TO_FILE"] = "False"
os.environ["RATE_LIMIT_ENABLED"] = "False"

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from itertools import count
from typing import List, Optional

import pytest

from circulation.core.config import LibraryPolicy
from circulation.core.events import DomainEvent
from circulation.models.category import Category
from circulation.models.enum import StaffStatus
from circulation.models.item import Book, BookItem
from circulation.models.member import Member, Staff
from circulation.repository.memory import MemoryRepository
from circulation.services.library import Library

T0 = datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)


def days(n: float) -> timedelta:
    return timedelta(days=n)


class Seeder:
    """Creates catalog and directory records with unique keys."""

    def __init__(self, library: Library) -> None:
        self.library = library
        self._seq = count(1)

    async def book(self, title: str = "Dune", category_ids: Optional[List[str]] = None) -> Book:
        n = next(self._seq)
        return await self.library.catalog.add_book(Book.Create(
            title=title,
            isbn=f"978-0-{n:05d}-000-0",
            authors=["Frank Herbert"],
            category_ids=category_ids or [],
        ))

    async def item(self, book: Book, price: Optional[Decimal] = None, now: datetime = T0) -> BookItem:
        n = next(self._seq)
        return await self.library.catalog.add_item(
            book.id, BookItem.Create(barcode=f"BC-{n:06d}", location="Stack A", price=price), now
        )

    async def member(self, first_name: str = "Ada", expiry: Optional[date] = None, now: datetime = T0) -> Member:
        n = next(self._seq)
        return await self.library.directory.register_member(
            Member.Create(
                first_name=first_name,
                last_name="Reader",
                email=f"reader{n}@citylibrary.org",
                membership_expiry=expiry,
            ),
            now,
        )

    async def staff(self, status: StaffStatus = StaffStatus.ACTIVE) -> Staff:
        n = next(self._seq)
        staff = await self.library.directory.register_staff(
            Staff.Create(first_name="Sam", last_name="Clerk", email=f"clerk{n}@citylibrary.org", position="Librarian")
        )
        if status != StaffStatus.ACTIVE:
            staff.status = status
            await self.library.repo.staff.update(staff)
        return staff

    async def category(self, name: str, parent_id: Optional[str] = None) -> Category:
        return await self.library.catalog.add_category(Category.Create(name=name, parent_id=parent_id))


@pytest.fixture
def policy() -> LibraryPolicy:
    return LibraryPolicy()


@pytest.fixture
def library(policy: LibraryPolicy) -> Library:
    return Library(MemoryRepository(), policy)


@pytest.fixture
def seed(library: Library) -> Seeder:
    return Seeder(library)


@pytest.fixture
def events(library: Library) -> List[DomainEvent]:
    published: List[DomainEvent] = []
    library.bus.subscribe(published.append)
    return published
