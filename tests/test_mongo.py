# tests/test_mongo.py
import os
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

import motor.motor_asyncio
import pytest
from beanie import init_beanie
from bson import Decimal128
from pymongo.errors import DuplicateKeyError, OperationFailure

from circulation.core.errors import Contention, DuplicateKey, IntegrityFailure
from circulation.models.enum import ItemStatus, PaymentStatus
from circulation.models.fine import Fine
from circulation.models.item import BookItem
from circulation.models.loan import Loan
from circulation.repository import mongo
from circulation.repository.mongo import DOCUMENT_MODELS, MongoRepository, _query, _to_bson
from tests.conftest import T0, days

MONGODB_URL = os.getenv("MONGODB_URL")
live = pytest.mark.skipif(not MONGODB_URL, reason="MONGODB_URL not set")


# --- BSON mapping ---
def test_calendar_dates_and_money_become_bson_types():
    fine = Fine(
        loan_id="loan_1", member_id="mbr_1", amount=Decimal("3.50"),
        fine_date=date(2024, 3, 21), reason="Overdue by 7 day(s)",
    )
    stored = _to_bson(fine.model_dump())

    assert stored["amount"] == Decimal128("3.50")
    assert stored["fine_date"] == datetime(2024, 3, 21, tzinfo=timezone.utc)
    assert stored["payment_status"] == "pending"
    assert Fine.model_validate(stored).model_dump() == fine.model_dump()


def test_loan_survives_bson_mapping():
    loan = Loan(item_id="itm_1", book_id="bk_1", member_id="mbr_1", loan_date=T0, due_date=(T0 + days(14)).date())
    stored = _to_bson(loan.model_dump())
    assert stored["loan_date"] == T0
    assert isinstance(stored["due_date"], datetime)
    assert Loan.model_validate(stored).model_dump() == loan.model_dump()


def test_query_maps_id_and_converts_operands():
    query = _query({"id": "itm_1", "status": ItemStatus.AVAILABLE, "due_date": {"$lt": date(2024, 3, 1)}})
    assert query == {
        "_id": "itm_1",
        "status": "available",
        "due_date": {"$lt": datetime(2024, 3, 1, tzinfo=timezone.utc)},
    }


# --- transaction error mapping ---
class FakeTransaction:
    def __init__(self, error):
        self.error = error

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        # the server reports conflicts when the commit is attempted
        if exc_type is None and self.error is not None:
            raise self.error
        return False


class FakeSession:
    def __init__(self, error):
        self.error = error

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    def start_transaction(self):
        return FakeTransaction(self.error)


class FakeClient:
    def __init__(self, error=None):
        self.error = error

    async def start_session(self):
        return FakeSession(self.error)


async def test_write_conflict_maps_to_contention():
    conflict = OperationFailure(
        "Write conflict during plan execution", code=112, details={"errorLabels": ["TransientTransactionError"]}
    )
    repo = MongoRepository(FakeClient(conflict))
    with pytest.raises(Contention) as exc_info:
        async with repo.transaction():
            pass
    assert exc_info.value.retryable


async def test_other_operation_failure_maps_to_integrity_failure():
    repo = MongoRepository(FakeClient(OperationFailure("Transaction numbers are only allowed on a replica set", code=20)))
    with pytest.raises(IntegrityFailure) as exc_info:
        async with repo.transaction():
            pass
    assert not isinstance(exc_info.value, DuplicateKey)


async def test_duplicate_key_on_commit_maps_to_duplicate_key():
    repo = MongoRepository(FakeClient(DuplicateKeyError("E11000 duplicate key error", code=11000)))
    with pytest.raises(DuplicateKey):
        async with repo.transaction():
            pass


async def test_nested_transaction_joins_outer_session():
    repo = MongoRepository(FakeClient())
    async with repo.transaction():
        outer = mongo._current_session.get()
        assert outer is not None
        async with repo.transaction():
            assert mongo._current_session.get() is outer
    assert mongo._current_session.get() is None


# --- against a live server ---
@pytest.fixture
async def mongo_repo():
    client = motor.motor_asyncio.AsyncIOMotorClient(MONGODB_URL, tz_aware=True)
    name = f"circulation_test_{uuid.uuid4().hex[:8]}"
    await init_beanie(database=client[name], document_models=DOCUMENT_MODELS)
    yield MongoRepository(client)
    await client.drop_database(name)
    client.close()


@live
async def test_versioned_update_rejects_stale_copy(mongo_repo):
    item = await mongo_repo.items.add(BookItem(book_id="bk_1", barcode="BC-1", location="Stack A"))
    first = await mongo_repo.items.require(item.id)
    second = await mongo_repo.items.require(item.id)

    first.location = "Stack B"
    await mongo_repo.items.update(first)
    assert first.version == 1

    second.location = "Stack C"
    with pytest.raises(Contention):
        await mongo_repo.items.update(second)
    assert (await mongo_repo.items.require(item.id)).location == "Stack B"


@live
async def test_unique_barcode(mongo_repo):
    await mongo_repo.items.add(BookItem(book_id="bk_1", barcode="BC-1", location="Stack A"))
    with pytest.raises(DuplicateKey):
        await mongo_repo.items.add(BookItem(book_id="bk_1", barcode="BC-1", location="Stack B"))


@live
async def test_fine_round_trip_and_grouped_counts(mongo_repo):
    fine = Fine(
        loan_id="loan_1", member_id="mbr_1", amount=Decimal("2.50"),
        fine_date=date(2024, 3, 20), reason="Overdue by 5 day(s)",
    )
    await mongo_repo.fines.add(fine)
    stored = await mongo_repo.fines.require(fine.id)
    assert stored.amount == Decimal("2.50")
    assert stored.fine_date == date(2024, 3, 20)

    stored.payment_status = PaymentStatus.PAID
    stored.payment_date = T0
    await mongo_repo.fines.update(stored)
    paid = await mongo_repo.fines.find({"payment_status": PaymentStatus.PAID})
    assert [f.id for f in paid] == [fine.id]

    for n, book_id in enumerate(["bk_1", "bk_1", "bk_2"]):
        await mongo_repo.items.add(BookItem(book_id=book_id, barcode=f"BC-{n}", location="Stack A"))
    assert await mongo_repo.items.count_by("book_id") == [("bk_1", 2), ("bk_2", 1)]
    assert await mongo_repo.items.count_by("book_id", limit=1) == [("bk_1", 2)]
