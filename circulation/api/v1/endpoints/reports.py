# circulation/api/v1/endpoints/reports.py
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request

from circulation.api.deps import get_library
from circulation.core.rate_limiter import limiter
from circulation.core.utils import utcnow
from circulation.models.report import AvailableBookRow, BorrowingHistoryRow, OverdueLoanRow, PopularBookRow
from circulation.services.library import Library

router = APIRouter(prefix="/reports", tags=["Reports"])


@router.get("/available-books", response_model=List[AvailableBookRow])
@limiter.limit("60/minute")
async def available_books(request: Request, library: Library = Depends(get_library)):
    return await library.queries.available_books()


@router.get("/overdue-loans", response_model=List[OverdueLoanRow])
@limiter.limit("60/minute")
async def overdue_loans(request: Request, library: Library = Depends(get_library)):
    return await library.queries.overdue_loans(utcnow())


@router.get("/borrowing-history", response_model=List[BorrowingHistoryRow])
@limiter.limit("60/minute")
async def borrowing_history(
    request: Request,
    member_id: Optional[str] = Query(None),
    library: Library = Depends(get_library),
):
    return await library.queries.member_borrowing_history(utcnow(), member_id=member_id)


@router.get("/popular-books", response_model=List[PopularBookRow])
@limiter.limit("60/minute")
async def popular_books(
    request: Request,
    limit: Optional[int] = Query(None, ge=1, le=100),
    library: Library = Depends(get_library),
):
    return await library.queries.popular_books(limit)
