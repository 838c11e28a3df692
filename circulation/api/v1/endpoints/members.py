# circulation/api/v1/endpoints/members.py
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Path, Query, Request, status
from pydantic import BaseModel

from circulation.api.deps import get_library
from circulation.core.rate_limiter import limiter
from circulation.core.utils import utcnow
from circulation.models.enum import MemberStatus, PaymentStatus
from circulation.models.fine import Fine
from circulation.models.loan import Loan
from circulation.models.member import Member, Staff
from circulation.services.library import Library

router = APIRouter(tags=["Members & Staff"])


class MemberStatusUpdate(BaseModel):
    status: MemberStatus


@router.post("/members", response_model=Member, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
async def register_member(
    request: Request,
    member_in: Member.Create = Body(...),
    library: Library = Depends(get_library),
):
    return await library.directory.register_member(member_in, utcnow())


@router.patch("/members/{member_id}/status", response_model=Member)
@limiter.limit("30/minute")
async def update_member_status(
    request: Request,
    member_id: str = Path(...),
    update: MemberStatusUpdate = Body(...),
    library: Library = Depends(get_library),
):
    return await library.directory.set_member_status(member_id, update.status)


@router.get("/members/{member_id}/loans", response_model=List[Loan])
@limiter.limit("120/minute")
async def member_open_loans(request: Request, member_id: str = Path(...), library: Library = Depends(get_library)):
    await library.repo.members.require(member_id)
    return await library.loans.open_loans(member_id)


@router.get("/members/{member_id}/fines", response_model=List[Fine])
@limiter.limit("120/minute")
async def member_fines(
    request: Request,
    member_id: str = Path(...),
    payment_status: Optional[PaymentStatus] = Query(None),
    library: Library = Depends(get_library),
):
    await library.repo.members.require(member_id)
    return await library.fines.for_member(member_id, payment_status)


@router.post("/staff", response_model=Staff, status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
async def register_staff(
    request: Request,
    staff_in: Staff.Create = Body(...),
    library: Library = Depends(get_library),
):
    return await library.directory.register_staff(staff_in)
