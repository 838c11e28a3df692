# circulation/repository/mongo.py
from contextlib import asynccontextmanager
from contextvars import ContextVar
from datetime import date, datetime, time, timezone
from decimal import Decimal
from enum import Enum
from functools import partial
from typing import Any, AsyncIterator, Dict, Generic, List, Optional, Tuple, Type

import motor.motor_asyncio
from beanie import Document
from bson import Decimal128
from loguru import logger
from pydantic import Field, ValidationError
from pymongo import ASCENDING, DESCENDING, IndexModel
from pymongo.errors import DuplicateKeyError, OperationFailure, PyMongoError

from circulation.core.errors import Contention, DuplicateKey, IntegrityFailure
from circulation.core.utils import new_id
from circulation.models.category import Category
from circulation.models.fine import Fine
from circulation.models.item import Book, BookItem
from circulation.models.loan import Loan
from circulation.models.member import Member, Staff
from circulation.models.reservation import Reservation
from circulation.repository.base import Collection, Filters, Repository, SortSpec, T

_current_session: ContextVar[Optional[Any]] = ContextVar("mongo_session", default=None)


# --- Beanie documents (domain model + collection settings) ---
class BookDocument(Document, Book):
    id: str = Field(default_factory=partial(new_id, "bk"))

    class Settings:
        name = "books"
        indexes = [
            IndexModel([("isbn", ASCENDING)], name="book_isbn_unique_index", unique=True),
            IndexModel([("title", ASCENDING)], name="book_title_index"),
        ]


class BookItemDocument(Document, BookItem):
    id: str = Field(default_factory=partial(new_id, "itm"))

    class Settings:
        name = "book_items"
        indexes = [
            IndexModel([("barcode", ASCENDING)], name="item_barcode_unique_index", unique=True),
            IndexModel([("book_id", ASCENDING), ("status", ASCENDING)], name="item_book_status_index"),
        ]


class LoanDocument(Document, Loan):
    id: str = Field(default_factory=partial(new_id, "loan"))

    class Settings:
        name = "loans"
        indexes = [
            IndexModel([("item_id", ASCENDING), ("return_date", ASCENDING)], name="loan_item_open_index"),
            IndexModel([("member_id", ASCENDING), ("loan_date", DESCENDING)], name="loan_member_history_index"),
            IndexModel([("due_date", ASCENDING), ("return_date", ASCENDING)], name="loan_status_index"),
        ]


class FineDocument(Document, Fine):
    id: str = Field(default_factory=partial(new_id, "fine"))

    class Settings:
        name = "fines"
        indexes = [
            IndexModel([("loan_id", ASCENDING)], name="fine_loan_unique_index", unique=True),
            IndexModel([("member_id", ASCENDING), ("payment_status", ASCENDING)], name="fine_member_status_index"),
        ]


class ReservationDocument(Document, Reservation):
    id: str = Field(default_factory=partial(new_id, "res"))

    class Settings:
        name = "reservations"
        indexes = [
            IndexModel(
                [("book_id", ASCENDING), ("status", ASCENDING), ("reservation_date", ASCENDING)],
                name="reservation_queue_index",
            ),
            IndexModel([("status", ASCENDING), ("expiry_date", ASCENDING)], name="reservation_expiry_index"),
        ]


class MemberDocument(Document, Member):
    id: str = Field(default_factory=partial(new_id, "mbr"))

    class Settings:
        name = "members"
        indexes = [
            IndexModel([("email", ASCENDING)], name="member_email_unique_index", unique=True),
            IndexModel([("last_name", ASCENDING), ("first_name", ASCENDING)], name="member_name_index"),
        ]


class StaffDocument(Document, Staff):
    id: str = Field(default_factory=partial(new_id, "stf"))

    class Settings:
        name = "staff"
        indexes = [IndexModel([("email", ASCENDING)], name="staff_email_unique_index", unique=True)]


class CategoryDocument(Document, Category):
    id: str = Field(default_factory=partial(new_id, "cat"))

    class Settings:
        name = "categories"
        indexes = [IndexModel([("name", ASCENDING)], name="category_name_unique_index", unique=True)]


DOCUMENT_MODELS = [
    BookDocument,
    BookItemDocument,
    LoanDocument,
    FineDocument,
    ReservationDocument,
    MemberDocument,
    StaffDocument,
    CategoryDocument,
]


# --- BSON helpers ---
def _to_bson(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return Decimal128(value)
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    if isinstance(value, dict):
        return {k: _to_bson(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_bson(v) for v in value]
    return value


def _query(filters: Optional[Filters]) -> Dict[str, Any]:
    query = _to_bson(dict(filters or {}))
    if "id" in query:
        query["_id"] = query.pop("id")
    return query


class MongoCollection(Collection[T], Generic[T]):
    def __init__(self, name: str, model: Type[T], document: Type[Document]) -> None:
        self.name = name
        self.model = model
        self.document = document

    def _to_model(self, doc: Document) -> T:
        return self.model.model_validate(doc.model_dump())

    async def get(self, entity_id: str) -> Optional[T]:
        doc = await self.document.get(entity_id, session=_current_session.get())
        return self._to_model(doc) if doc is not None else None

    async def find(
        self,
        filters: Optional[Filters] = None,
        sort: Optional[SortSpec] = None,
        limit: Optional[int] = None,
    ) -> List[T]:
        cursor = self.document.find(_query(filters), session=_current_session.get())
        if sort:
            cursor = cursor.sort([("_id" if field == "id" else field, direction) for field, direction in sort])
        if limit is not None:
            cursor = cursor.limit(limit)
        return [self._to_model(doc) for doc in await cursor.to_list()]

    async def count_by(
        self, field: str, filters: Optional[Filters] = None, limit: Optional[int] = None
    ) -> List[Tuple[Any, int]]:
        key = "_id" if field == "id" else field
        pipeline: List[Dict[str, Any]] = [
            {"$match": _query(filters)},
            {"$group": {"_id": f"${key}", "count": {"$sum": 1}}},
            {"$sort": {"count": -1, "_id": 1}},
        ]
        if limit is not None:
            pipeline.append({"$limit": limit})
        collection = self.document.get_motor_collection()
        result = await collection.aggregate(pipeline, session=_current_session.get()).to_list(length=None)
        return [(row["_id"], row["count"]) for row in result]

    async def add(self, entity: T) -> T:
        try:
            doc = self.document.model_validate(entity.model_dump())
        except ValidationError as e:
            raise IntegrityFailure(f"{self.model.__name__} '{entity.id}' violates a constraint: {e}", entity_id=entity.id) from e
        try:
            await doc.insert(session=_current_session.get())
        except DuplicateKeyError as e:
            logger.warning(f"Duplicate key inserting into {self.name}: {e.details}")
            raise DuplicateKey(f"{self.model.__name__} violates a unique constraint.", entity_id=entity.id) from e
        return entity

    async def update(self, entity: T) -> T:
        try:
            self.model.model_validate(entity.model_dump())
        except ValidationError as e:
            raise IntegrityFailure(f"{self.model.__name__} '{entity.id}' violates a constraint: {e}", entity_id=entity.id) from e
        payload = _to_bson(entity.model_dump(exclude={"id"}))
        payload["version"] = entity.version + 1
        try:
            result = await self.document.get_motor_collection().update_one(
                {"_id": entity.id, "version": entity.version},
                {"$set": payload},
                session=_current_session.get(),
            )
        except DuplicateKeyError as e:
            raise DuplicateKey(f"{self.model.__name__} violates a unique constraint.", entity_id=entity.id) from e
        if result.matched_count == 0:
            raise Contention(
                f"{self.model.__name__} '{entity.id}' was modified concurrently or no longer exists.",
                entity_id=entity.id,
            )
        entity.version += 1
        return entity


class MongoRepository(Repository):
    """
    MongoDB-backed store (Beanie documents on Motor).

    Transactions need a replica set; write conflicts surface as Contention.
    """

    def __init__(self, client: motor.motor_asyncio.AsyncIOMotorClient) -> None:
        self.client = client
        self.books = MongoCollection("books", Book, BookDocument)
        self.items = MongoCollection("items", BookItem, BookItemDocument)
        self.loans = MongoCollection("loans", Loan, LoanDocument)
        self.fines = MongoCollection("fines", Fine, FineDocument)
        self.reservations = MongoCollection("reservations", Reservation, ReservationDocument)
        self.members = MongoCollection("members", Member, MemberDocument)
        self.staff = MongoCollection("staff", Staff, StaffDocument)
        self.categories = MongoCollection("categories", Category, CategoryDocument)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        if _current_session.get() is not None:
            yield
            return
        try:
            async with await self.client.start_session() as session:
                async with session.start_transaction():
                    token = _current_session.set(session)
                    try:
                        yield
                    finally:
                        _current_session.reset(token)
        except DuplicateKeyError as e:
            raise DuplicateKey("Unique constraint violated.") from e
        except OperationFailure as e:
            if e.has_error_label("TransientTransactionError"):
                logger.warning(f"Transaction aborted by write conflict: {e}")
                raise Contention("Concurrent update conflict; retry the operation.") from e
            logger.exception(f"Transaction failed: {e}")
            raise IntegrityFailure(f"Persistence failure: {e}") from e
        except PyMongoError as e:
            logger.exception(f"Transaction failed: {e}")
            raise IntegrityFailure(f"Persistence failure: {e}") from e
