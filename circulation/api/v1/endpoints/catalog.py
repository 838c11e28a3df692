# circulation/api/v1/endpoints/catalog.py
from typing import List

from fastapi import APIRouter, Body, Depends, Path, Request, status
from loguru import logger
from pydantic import BaseModel

from circulation.api.deps import get_library
from circulation.core.rate_limiter import limiter
from circulation.core.utils import utcnow
from circulation.models.category import Category
from circulation.models.item import Book, BookItem
from circulation.services.library import Library

router = APIRouter(tags=["Catalog"])


class Availability(BaseModel):
    item_id: str
    available: bool


# --- Books ---
@router.post("/books", response_model=Book, status_code=status.HTTP_201_CREATED)
@limiter.limit("60/minute")
async def create_book(
    request: Request,
    book_in: Book.Create = Body(...),
    library: Library = Depends(get_library),
):
    logger.info(f"Creating book {book_in.title!r} ({book_in.isbn})")
    return await library.catalog.add_book(book_in)


@router.get("/books/{book_id}", response_model=Book)
@limiter.limit("120/minute")
async def read_book(request: Request, book_id: str = Path(...), library: Library = Depends(get_library)):
    return await library.catalog.get_book(book_id)


@router.post("/books/{book_id}/items", response_model=BookItem, status_code=status.HTTP_201_CREATED)
@limiter.limit("60/minute")
async def create_item(
    request: Request,
    book_id: str = Path(...),
    item_in: BookItem.Create = Body(...),
    library: Library = Depends(get_library),
):
    return await library.catalog.add_item(book_id, item_in, utcnow())


@router.get("/books/{book_id}/items", response_model=List[BookItem])
@limiter.limit("120/minute")
async def list_items(request: Request, book_id: str = Path(...), library: Library = Depends(get_library)):
    return await library.catalog.copies(book_id)


# --- Items ---
@router.patch("/items/{item_id}/status", response_model=BookItem)
@limiter.limit("30/minute")
async def update_item_status(
    request: Request,
    item_id: str = Path(...),
    update: BookItem.StatusUpdate = Body(...),
    library: Library = Depends(get_library),
):
    """Administrative status change (write-off, recovery, hold release). Loans and holds own Borrowed and Reserved."""
    logger.info(f"Administrative status change for item '{item_id}' -> {update.status.value}")
    return await library.ledger.set_status(item_id, update.status, utcnow())


@router.get("/items/{item_id}/availability", response_model=Availability)
@limiter.limit("120/minute")
async def item_availability(request: Request, item_id: str = Path(...), library: Library = Depends(get_library)):
    return Availability(item_id=item_id, available=await library.ledger.is_available(item_id))


# --- Categories ---
@router.post("/categories", response_model=Category, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
async def create_category(
    request: Request,
    category_in: Category.Create = Body(...),
    library: Library = Depends(get_library),
):
    return await library.catalog.add_category(category_in)


@router.put("/categories/{category_id}/parent", response_model=Category)
@limiter.limit("20/minute")
async def set_category_parent(
    request: Request,
    category_id: str = Path(...),
    update: Category.ParentUpdate = Body(...),
    library: Library = Depends(get_library),
):
    return await library.catalog.set_parent(category_id, update.parent_id)


@router.get("/categories/{category_id}/ancestors", response_model=List[Category])
@limiter.limit("120/minute")
async def category_ancestors(request: Request, category_id: str = Path(...), library: Library = Depends(get_library)):
    return await library.catalog.ancestors(category_id)
