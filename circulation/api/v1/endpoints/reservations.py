# circulation/api/v1/endpoints/reservations.py
from typing import List

from fastapi import APIRouter, Body, Depends, Path, Request, status
from pydantic import BaseModel

from circulation.api.deps import get_library
from circulation.core.rate_limiter import limiter
from circulation.core.utils import utcnow
from circulation.models.reservation import Reservation
from circulation.services.library import Library

router = APIRouter(tags=["Reservations"])


class SweepResult(BaseModel):
    expired: int


@router.post("/", response_model=Reservation, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
async def reserve(
    request: Request,
    reservation_in: Reservation.Create = Body(...),
    library: Library = Depends(get_library),
):
    return await library.reservations.reserve(reservation_in.book_id, reservation_in.member_id, utcnow())


@router.post("/{reservation_id}/cancel", response_model=Reservation)
@limiter.limit("30/minute")
async def cancel(request: Request, reservation_id: str = Path(...), library: Library = Depends(get_library)):
    return await library.reservations.cancel(reservation_id, utcnow())


@router.patch("/{reservation_id}/notification", response_model=Reservation)
@limiter.limit("60/minute")
async def record_notification(
    request: Request,
    reservation_id: str = Path(...),
    notification: Reservation.Notification = Body(...),
    library: Library = Depends(get_library),
):
    return await library.reservations.mark_notified(reservation_id, notification.sent)


@router.get("/books/{book_id}", response_model=List[Reservation])
@limiter.limit("120/minute")
async def book_queue(request: Request, book_id: str = Path(...), library: Library = Depends(get_library)):
    """Pending reservations for a book in FIFO order."""
    await library.catalog.get_book(book_id)
    return await library.reservations.queue(book_id)


@router.post("/expire", response_model=SweepResult)
@limiter.limit("6/minute")
async def sweep(request: Request, library: Library = Depends(get_library)):
    return SweepResult(expired=await library.reservations.expire_stale_reservations(utcnow()))
