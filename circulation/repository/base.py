# circulation/repository/base.py
"""
Persistence contract for the circulation core.

Services only talk to a ``Repository``: one ``Collection`` per entity type plus a
``transaction()`` context. Filters use the Mongo query dialect (equality,
``$in``, ``$nin``, ``$ne``, ``$lt``, ``$lte``, ``$gt``, ``$gte``) so the same call
works against the in-memory store and against MongoDB. Sort specs are lists of
``(field, ASCENDING | DESCENDING)`` tuples from pymongo. Grouped counts
(``count_by``) run inside the store, as an aggregation pipeline on MongoDB.
"""
from abc import ABC, abstractmethod
from typing import Any, AsyncContextManager, Generic, List, Mapping, Optional, Sequence, Tuple, Type, TypeVar

from circulation.core.errors import NotFound
from circulation.models.base import Entity
from circulation.models.category import Category
from circulation.models.fine import Fine
from circulation.models.item import Book, BookItem
from circulation.models.loan import Loan
from circulation.models.member import Member, Staff
from circulation.models.reservation import Reservation

T = TypeVar("T", bound=Entity)

Filters = Mapping[str, Any]
SortSpec = Sequence[Tuple[str, int]]

# (collection name, unique fields)
COLLECTIONS = {
    "books": (Book, ("isbn",)),
    "items": (BookItem, ("barcode",)),
    "loans": (Loan, ()),
    "fines": (Fine, ("loan_id",)),
    "reservations": (Reservation, ()),
    "members": (Member, ("email",)),
    "staff": (Staff, ("email",)),
    "categories": (Category, ("name",)),
}


class Collection(ABC, Generic[T]):
    model: Type[T]
    name: str

    @abstractmethod
    async def get(self, entity_id: str) -> Optional[T]:
        ...

    async def require(self, entity_id: str) -> T:
        entity = await self.get(entity_id)
        if entity is None:
            raise NotFound(f"{self.model.__name__} '{entity_id}' not found.", entity_id=entity_id)
        return entity

    @abstractmethod
    async def add(self, entity: T) -> T:
        """Insert a new record. Raises DuplicateKey on unique-constraint violations."""

    @abstractmethod
    async def update(self, entity: T) -> T:
        """
        Persist changes to an existing record.

        ``entity.version`` must equal the stored version; on success it is bumped in
        place. A mismatch raises Contention.
        """

    @abstractmethod
    async def find(
        self,
        filters: Optional[Filters] = None,
        sort: Optional[SortSpec] = None,
        limit: Optional[int] = None,
    ) -> List[T]:
        ...

    @abstractmethod
    async def count_by(
        self, field: str, filters: Optional[Filters] = None, limit: Optional[int] = None
    ) -> List[Tuple[Any, int]]:
        """
        Groups matching records by ``field`` and counts each group.
        Returns ``(value, count)`` pairs, largest count first, ties by value.
        """

    async def find_one(self, filters: Filters, sort: Optional[SortSpec] = None) -> Optional[T]:
        found = await self.find(filters, sort=sort, limit=1)
        return found[0] if found else None


class Repository(ABC):
    books: Collection[Book]
    items: Collection[BookItem]
    loans: Collection[Loan]
    fines: Collection[Fine]
    reservations: Collection[Reservation]
    members: Collection[Member]
    staff: Collection[Staff]
    categories: Collection[Category]

    @abstractmethod
    def transaction(self) -> AsyncContextManager[None]:
        """
        All-or-nothing unit of work. Nested calls join the outer transaction.
        Nothing written inside is visible to other callers before commit.
        """
