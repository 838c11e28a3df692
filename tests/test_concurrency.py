# tests/test_concurrency.py
import asyncio

import pytest

from circulation.core.config import LibraryPolicy
from circulation.core.errors import Contention, DuplicateKey, ItemUnavailable
from circulation.core.events import ItemStatusChanged, emit
from circulation.core.locks import KeyedLocks
from circulation.models.enum import ItemStatus
from circulation.models.item import Book, BookItem
from circulation.models.loan import Loan
from tests.conftest import T0, days


async def test_concurrent_checkouts_of_one_copy(library, seed):
    book = await seed.book()
    item = await seed.item(book)
    ann = await seed.member("Ann")
    bob = await seed.member("Bob")

    results = await asyncio.gather(
        library.loans.checkout(item.id, ann.id, T0),
        library.loans.checkout(item.id, bob.id, T0),
        return_exceptions=True,
    )

    loans = [r for r in results if isinstance(r, Loan)]
    failures = [r for r in results if isinstance(r, Exception)]
    assert len(loans) == 1
    assert len(failures) == 1 and isinstance(failures[0], ItemUnavailable)
    assert len(await library.repo.loans.find({"item_id": item.id})) == 1


async def test_concurrent_returns_close_once(library, seed):
    book = await seed.book()
    item = await seed.item(book)
    member = await seed.member()
    loan = await library.loans.checkout(item.id, member.id, T0)

    results = await asyncio.gather(
        library.loans.return_item(loan.id, T0 + days(20)),
        library.loans.return_item(loan.id, T0 + days(20)),
        return_exceptions=True,
    )
    assert sum(isinstance(r, Loan) for r in results) == 1
    assert len(await library.fines.for_member(member.id)) == 1


async def test_lock_wait_is_bounded():
    locks = KeyedLocks(timeout=0.05)
    async with locks.hold("item:a"):
        with pytest.raises(Contention) as exc_info:
            async with locks.hold("item:a"):
                pass
    assert exc_info.value.retryable
    # released after the failed attempt
    async with locks.hold("item:a", "book:b"):
        pass
    assert len(locks) == 0


async def test_lock_entries_live_only_while_in_use():
    locks = KeyedLocks(timeout=1.0)
    served = asyncio.Event()

    async def waiter():
        async with locks.hold("item:a"):
            served.set()

    async with locks.hold("item:a", "book:b"):
        assert len(locks) == 2
        task = asyncio.ensure_future(waiter())
        await asyncio.sleep(0)
        # a queued waiter keeps its entry
        assert len(locks) == 2
    await task
    assert served.is_set()
    assert len(locks) == 0


async def test_lock_table_is_empty_after_operations(library, seed):
    book = await seed.book()
    item = await seed.item(book)
    member = await seed.member()
    for n in range(20):
        loan = await library.loans.checkout(item.id, member.id, T0 + days(n))
        await library.loans.return_item(loan.id, T0 + days(n))
    assert len(library.ctx.locks) == 0


@pytest.mark.parametrize("policy", [LibraryPolicy(lock_timeout_seconds=0.05)])
async def test_operation_on_busy_item_reports_contention(library, seed, policy):
    book = await seed.book()
    item = await seed.item(book)
    member = await seed.member()

    async with library.ctx.locks.hold(f"item:{item.id}"):
        with pytest.raises(Contention):
            await library.loans.checkout(item.id, member.id, T0)
    assert (await library.repo.items.require(item.id)).status == ItemStatus.AVAILABLE


async def test_stale_version_is_rejected(library, seed):
    book = await seed.book()
    item = await seed.item(book)
    first = await library.repo.items.require(item.id)
    second = await library.repo.items.require(item.id)

    first.location = "Stack B"
    await library.repo.items.update(first)
    second.location = "Stack C"
    with pytest.raises(Contention):
        await library.repo.items.update(second)
    assert (await library.repo.items.require(item.id)).location == "Stack B"


# --- atomicity ---
async def test_failed_operation_writes_nothing_and_publishes_nothing(library, seed, events):
    book = await seed.book()
    item = await seed.item(book)
    events.clear()

    with pytest.raises(RuntimeError):
        async with library.ctx.atomic(f"item:{item.id}"):
            await library.ledger.transition(item, ItemStatus.LOST, T0)
            await library.repo.books.add(Book(title="Orphan", isbn="111-111-1111"))
            raise RuntimeError("boom")

    assert (await library.repo.items.require(item.id)).status == ItemStatus.AVAILABLE
    assert await library.repo.books.find({"isbn": "111-111-1111"}) == []
    assert events == []


async def test_events_published_after_commit(library, events):
    async with library.ctx.atomic("item:x"):
        emit(ItemStatusChanged(
            occurred_at=T0, item_id="x", book_id="b",
            old_status=ItemStatus.AVAILABLE, new_status=ItemStatus.LOST,
        ))
        assert events == []
    assert len(events) == 1


async def test_duplicate_barcode_rolls_back(library, seed):
    book = await seed.book()
    first = await seed.item(book)
    with pytest.raises(DuplicateKey) as exc_info:
        await library.catalog.add_item(book.id, BookItem.Create(barcode=first.barcode, location="Stack B"), T0)
    assert exc_info.value.field == "barcode"
    assert len(await library.catalog.copies(book.id)) == 1


async def test_duplicate_isbn(library, seed):
    book = await seed.book()
    with pytest.raises(DuplicateKey):
        await library.catalog.add_book(Book.Create(title="Copycat", isbn=book.isbn))


async def test_one_fine_per_loan(library, seed):
    book = await seed.book()
    item = await seed.item(book)
    member = await seed.member()
    loan = await library.loans.checkout(item.id, member.id, T0)
    await library.loans.return_item(loan.id, T0 + days(20))
    closed = await library.repo.loans.require(loan.id)

    with pytest.raises(DuplicateKey):
        await library.fines.assess_closure(closed, T0 + days(20))
