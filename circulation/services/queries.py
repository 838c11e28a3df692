# circulation/services/queries.py
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from pymongo import ASCENDING, DESCENDING

from circulation.models.enum import HistoryStatus, ItemStatus
from circulation.models.item import Book, BookItem
from circulation.models.loan import Loan
from circulation.models.member import Member
from circulation.models.report import AvailableBookRow, BorrowingHistoryRow, OverdueLoanRow, PopularBookRow
from circulation.repository.base import Repository


class QueryFacade:
    """
    Read-only views over ledger, loan and member state.

    Reads run outside any transaction, so results may trail concurrent writes
    slightly; they are never used to make mutation decisions.
    """

    def __init__(self, repo: Repository) -> None:
        self.repo = repo

    async def _books(self, ids: Iterable[str]) -> Dict[str, Book]:
        return {b.id: b for b in await self.repo.books.find({"id": {"$in": sorted(set(ids))}})}

    async def _items(self, ids: Iterable[str]) -> Dict[str, BookItem]:
        return {i.id: i for i in await self.repo.items.find({"id": {"$in": sorted(set(ids))}})}

    async def _members(self, ids: Iterable[str]) -> Dict[str, Member]:
        return {m.id: m for m in await self.repo.members.find({"id": {"$in": sorted(set(ids))}})}

    async def available_books(self) -> List[AvailableBookRow]:
        counts = dict(await self.repo.items.count_by("book_id", {"status": ItemStatus.AVAILABLE}))
        books = await self._books(counts)
        rows = [
            AvailableBookRow(
                book_id=book.id,
                title=book.title,
                isbn=book.isbn,
                author=book.author_line,
                available_copies=counts[book.id],
            )
            for book in books.values()
        ]
        return sorted(rows, key=lambda r: (r.title, r.book_id))

    async def overdue_loans(self, now: datetime) -> List[OverdueLoanRow]:
        today = now.date()
        loans = await self.repo.loans.find(
            {"return_date": None, "due_date": {"$lt": today}}, sort=[("due_date", ASCENDING)]
        )
        items = await self._items(l.item_id for l in loans)
        books = await self._books(l.book_id for l in loans)
        members = await self._members(l.member_id for l in loans)
        rows = []
        for loan in loans:
            member = members.get(loan.member_id)
            rows.append(OverdueLoanRow(
                loan_id=loan.id,
                title=books[loan.book_id].title if loan.book_id in books else "",
                barcode=items[loan.item_id].barcode if loan.item_id in items else "",
                member_name=member.full_name if member else "",
                member_email=member.email if member else "",
                loan_date=loan.loan_date,
                due_date=loan.due_date,
                days_overdue=loan.days_overdue(today),
            ))
        return rows

    @staticmethod
    def history_status(loan: Loan, now: datetime) -> HistoryStatus:
        if loan.is_overdue(now):
            return HistoryStatus.OVERDUE
        if loan.is_open:
            return HistoryStatus.BORROWED
        return HistoryStatus.RETURNED

    async def member_borrowing_history(
        self, now: datetime, member_id: Optional[str] = None
    ) -> List[BorrowingHistoryRow]:
        filters = {"member_id": member_id} if member_id else {}
        loans = await self.repo.loans.find(filters, sort=[("member_id", ASCENDING), ("loan_date", DESCENDING)])
        books = await self._books(l.book_id for l in loans)
        members = await self._members(l.member_id for l in loans)
        return [
            BorrowingHistoryRow(
                member_id=loan.member_id,
                member_name=members[loan.member_id].full_name if loan.member_id in members else "",
                title=books[loan.book_id].title if loan.book_id in books else "",
                loan_date=loan.loan_date,
                due_date=loan.due_date,
                return_date=loan.return_date,
                status=self.history_status(loan, now),
            )
            for loan in loans
        ]

    async def popular_books(self, limit: Optional[int] = None) -> List[PopularBookRow]:
        ranked = await self.repo.loans.count_by("book_id", limit=limit)
        books = await self._books(book_id for book_id, _ in ranked)
        return [
            PopularBookRow(book_id=book_id, title=books[book_id].title, borrow_count=count)
            for book_id, count in ranked
            if book_id in books
        ]
