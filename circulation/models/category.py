# circulation/models/category.py
from functools import partial
from typing import Optional

from pydantic import BaseModel, Field

from circulation.core.utils import new_id
from .base import Entity


class Category(Entity):
    id: str = Field(default_factory=partial(new_id, "cat"))
    name: str = Field(..., min_length=1, max_length=50)
    description: Optional[str] = None
    parent_id: Optional[str] = None

    class Create(BaseModel):
        name: str = Field(..., min_length=1, max_length=50)
        description: Optional[str] = None
        parent_id: Optional[str] = None

    class ParentUpdate(BaseModel):
        parent_id: Optional[str] = None
