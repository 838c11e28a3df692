# circulation/api/v1/endpoints/fines.py
from fastapi import APIRouter, Body, Depends, Path, Request

from circulation.api.deps import get_library
from circulation.core.rate_limiter import limiter
from circulation.core.utils import utcnow
from circulation.models.fine import Fine
from circulation.services.library import Library

router = APIRouter(tags=["Fines"])


@router.get("/{fine_id}", response_model=Fine)
@limiter.limit("120/minute")
async def read_fine(request: Request, fine_id: str = Path(...), library: Library = Depends(get_library)):
    return await library.repo.fines.require(fine_id)


@router.post("/{fine_id}/pay", response_model=Fine)
@limiter.limit("30/minute")
async def pay_fine(request: Request, fine_id: str = Path(...), library: Library = Depends(get_library)):
    return await library.fines.pay(fine_id, utcnow())


@router.post("/{fine_id}/waive", response_model=Fine)
@limiter.limit("30/minute")
async def waive_fine(
    request: Request,
    fine_id: str = Path(...),
    waive_in: Fine.Waive = Body(...),
    library: Library = Depends(get_library),
):
    return await library.fines.waive(fine_id, waive_in.staff_id, utcnow())
