# circulation/models/base.py
from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Any

from bson import Decimal128
from pydantic import BaseModel, BeforeValidator, ConfigDict, Field


def _coerce_date(value: Any) -> Any:
    # BSON has no date type; Mongo hands calendar fields back as midnight datetimes
    if isinstance(value, datetime):
        return value.date()
    return value


def _coerce_decimal(value: Any) -> Any:
    if isinstance(value, Decimal128):
        return value.to_decimal()
    return value


CalendarDate = Annotated[date, BeforeValidator(_coerce_date)]
Money = Annotated[Decimal, BeforeValidator(_coerce_decimal), Field(max_digits=10, decimal_places=2)]


class Entity(BaseModel):
    """Common shape of every stored record: string id plus optimistic version."""
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: str
    version: int = Field(default=0, ge=0)
