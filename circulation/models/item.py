# circulation/models/item.py
from functools import partial
from typing import List, Optional

from pydantic import BaseModel, Field

from circulation.core.utils import new_id
from .base import CalendarDate, Entity, Money
from .enum import ItemCondition, ItemStatus

ISBN_PATTERN = r"^[0-9-]{10,17}$"


class Book(Entity):
    """Catalog record; one Book has many physical BookItems."""
    id: str = Field(default_factory=partial(new_id, "bk"))
    title: str = Field(..., min_length=1, max_length=255)
    isbn: str = Field(..., pattern=ISBN_PATTERN)
    authors: List[str] = Field(default_factory=list)
    publisher: Optional[str] = Field(None, max_length=100)
    publication_date: Optional[CalendarDate] = None
    language: str = Field(default="English", max_length=50)
    category_ids: List[str] = Field(default_factory=list)

    @property
    def author_line(self) -> str:
        return ", ".join(self.authors)

    # --- API schemas ---
    class Create(BaseModel):
        title: str = Field(..., min_length=1, max_length=255)
        isbn: str = Field(..., pattern=ISBN_PATTERN)
        authors: List[str] = Field(default_factory=list)
        publisher: Optional[str] = Field(None, max_length=100)
        publication_date: Optional[CalendarDate] = None
        language: str = Field(default="English", max_length=50)
        category_ids: List[str] = Field(default_factory=list)


class BookItem(Entity):
    """A physical copy. ``status`` only changes through the inventory ledger."""
    id: str = Field(default_factory=partial(new_id, "itm"))
    book_id: str
    barcode: str = Field(..., min_length=1, max_length=50)
    location: str = Field(..., min_length=1, max_length=100)
    status: ItemStatus = ItemStatus.AVAILABLE
    condition: ItemCondition = ItemCondition.NEW
    price: Optional[Money] = Field(None, ge=0)
    acquisition_date: Optional[CalendarDate] = None

    class Create(BaseModel):
        barcode: str = Field(..., min_length=1, max_length=50)
        location: str = Field(..., min_length=1, max_length=100)
        condition: ItemCondition = ItemCondition.NEW
        price: Optional[Money] = Field(None, ge=0)
        acquisition_date: Optional[CalendarDate] = None

    class StatusUpdate(BaseModel):
        status: ItemStatus
