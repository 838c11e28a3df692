# tests/test_queries.py
from circulation.models.enum import HistoryStatus, ItemStatus
from tests.conftest import T0, days


async def test_available_books_counts_available_copies(library, seed):
    dune = await seed.book("Dune")
    emma = await seed.book("Emma")
    gone = await seed.book("Gone")
    d1 = await seed.item(dune)
    await seed.item(dune)
    await seed.item(emma)
    g1 = await seed.item(gone)
    member = await seed.member()

    await library.loans.checkout(d1.id, member.id, T0)
    await library.loans.checkout(g1.id, member.id, T0)

    rows = await library.queries.available_books()
    assert [(r.title, r.available_copies) for r in rows] == [("Dune", 1), ("Emma", 1)]
    assert rows[0].author == "Frank Herbert"
    assert rows[0].isbn == dune.isbn


async def test_overdue_loans_most_overdue_first(library, seed):
    book = await seed.book("Dune")
    early, later, fresh = [await seed.item(book) for _ in range(3)]
    ann = await seed.member("Ann")
    bob = await seed.member("Bob")

    early_loan = await library.loans.checkout(early.id, ann.id, T0)
    later_loan = await library.loans.checkout(later.id, bob.id, T0 + days(3))
    await library.loans.checkout(fresh.id, bob.id, T0 + days(10))

    rows = await library.queries.overdue_loans(T0 + days(20))
    assert [r.loan_id for r in rows] == [early_loan.id, later_loan.id]
    assert [r.days_overdue for r in rows] == [6, 3]
    assert rows[0].member_name == "Ann Reader"
    assert rows[0].barcode == early.barcode
    assert rows[0].title == "Dune"


async def test_borrowing_history_statuses_and_order(library, seed):
    book = await seed.book("Dune")
    a, b, c = [await seed.item(book) for _ in range(3)]
    member = await seed.member()

    returned = await library.loans.checkout(a.id, member.id, T0)
    await library.loans.return_item(returned.id, T0 + days(2))
    overdue = await library.loans.checkout(b.id, member.id, T0 + days(1))
    current = await library.loans.checkout(c.id, member.id, T0 + days(15))

    rows = await library.queries.member_borrowing_history(T0 + days(16), member_id=member.id)
    assert [r.loan_date for r in rows] == [current.loan_date, overdue.loan_date, returned.loan_date]
    assert [r.status for r in rows] == [HistoryStatus.BORROWED, HistoryStatus.OVERDUE, HistoryStatus.RETURNED]


async def test_borrowing_history_groups_by_member(library, seed):
    book = await seed.book()
    x, y = await seed.item(book), await seed.item(book)
    ann = await seed.member("Ann")
    bob = await seed.member("Bob")
    await library.loans.checkout(x.id, bob.id, T0)
    await library.loans.checkout(y.id, ann.id, T0 + days(1))

    rows = await library.queries.member_borrowing_history(T0 + days(2))
    member_ids = [r.member_id for r in rows]
    assert member_ids == sorted(member_ids)
    assert len(rows) == 2


async def test_popular_books(library, seed):
    dune = await seed.book("Dune")
    emma = await seed.book("Emma")
    d, e = await seed.item(dune), await seed.item(emma)
    member = await seed.member()

    for n in range(3):
        loan = await library.loans.checkout(d.id, member.id, T0 + days(n * 2))
        await library.loans.return_item(loan.id, T0 + days(n * 2 + 1))
    await library.loans.checkout(e.id, member.id, T0)

    rows = await library.queries.popular_books()
    assert [(r.title, r.borrow_count) for r in rows] == [("Dune", 3), ("Emma", 1)]
    assert [r.title for r in await library.queries.popular_books(limit=1)] == ["Dune"]


async def test_views_on_empty_library(library):
    assert await library.queries.available_books() == []
    assert await library.queries.overdue_loans(T0) == []
    assert await library.queries.member_borrowing_history(T0) == []
    assert await library.queries.popular_books() == []


async def test_grouped_counts_are_ranked_in_store(library, seed):
    dune = await seed.book("Dune")
    emma = await seed.book("Emma")
    await seed.item(dune)
    await seed.item(dune)
    lent = await seed.item(emma)
    await seed.item(emma)
    member = await seed.member()
    await library.loans.checkout(lent.id, member.id, T0)

    available = await library.repo.items.count_by("book_id", {"status": ItemStatus.AVAILABLE})
    assert available == [(dune.id, 2), (emma.id, 1)]
    assert await library.repo.items.count_by("book_id", {"status": ItemStatus.AVAILABLE}, limit=1) == [(dune.id, 2)]
    assert await library.repo.loans.count_by("book_id", {"member_id": "mbr_missing"}) == []
