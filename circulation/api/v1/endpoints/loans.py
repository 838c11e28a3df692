# circulation/api/v1/endpoints/loans.py
from typing import Optional

from fastapi import APIRouter, Body, Depends, Path, Request, status
from loguru import logger

from circulation.api.deps import get_library
from circulation.core.rate_limiter import limiter
from circulation.core.utils import utcnow
from circulation.models.loan import Loan
from circulation.services.library import Library

router = APIRouter(tags=["Loans"])


@router.post("/", response_model=Loan, status_code=status.HTTP_201_CREATED)
@limiter.limit("60/minute")
async def checkout(
    request: Request,
    checkout_in: Loan.Checkout = Body(...),
    library: Library = Depends(get_library),
):
    logger.info(f"Checkout requested: item '{checkout_in.item_id}' by member '{checkout_in.member_id}'")
    return await library.loans.checkout(checkout_in.item_id, checkout_in.member_id, utcnow())


@router.get("/{loan_id}", response_model=Loan)
@limiter.limit("120/minute")
async def read_loan(request: Request, loan_id: str = Path(...), library: Library = Depends(get_library)):
    return await library.repo.loans.require(loan_id)


@router.post("/{loan_id}/renew", response_model=Loan)
@limiter.limit("60/minute")
async def renew(request: Request, loan_id: str = Path(...), library: Library = Depends(get_library)):
    return await library.loans.renew(loan_id, utcnow())


@router.post("/{loan_id}/return", response_model=Loan)
@limiter.limit("60/minute")
async def return_item(
    request: Request,
    loan_id: str = Path(...),
    return_in: Optional[Loan.Return] = Body(None),
    library: Library = Depends(get_library),
):
    return_in = return_in or Loan.Return()
    return await library.loans.return_item(
        loan_id, utcnow(), condition=return_in.condition, damaged=return_in.damaged
    )


@router.post("/{loan_id}/lost", response_model=Loan)
@limiter.limit("30/minute")
async def declare_lost(request: Request, loan_id: str = Path(...), library: Library = Depends(get_library)):
    logger.warning(f"Loan '{loan_id}' declared lost")
    return await library.loans.declare_lost(loan_id, utcnow())
