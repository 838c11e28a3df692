# circulation/models/report.py
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, Field

from .enum import HistoryStatus


class AvailableBookRow(BaseModel):
    """Row of the available-books view."""
    book_id: str
    title: str
    isbn: str
    author: str
    available_copies: int = Field(..., gt=0)


class OverdueLoanRow(BaseModel):
    loan_id: str
    title: str
    barcode: str
    member_name: str
    member_email: str
    loan_date: datetime
    due_date: date
    days_overdue: int = Field(..., gt=0)


class BorrowingHistoryRow(BaseModel):
    member_id: str
    member_name: str
    title: str
    loan_date: datetime
    due_date: date
    return_date: Optional[datetime] = None
    status: HistoryStatus


class PopularBookRow(BaseModel):
    book_id: str
    title: str
    borrow_count: int
