import datetime as dt
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from models import MAX_AMOUNT, TransactionType


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


class CategoryIn(CamelModel):
    # trimming, length and reserved-name rules live in CategoryService
    name: str


class TransactionIn(CamelModel):
    amount: Decimal = Field(..., gt=0, le=MAX_AMOUNT, decimal_places=2)
    date: dt.date
    category_id: str = Field(..., min_length=1, max_length=36)
    type: TransactionType
    note: Optional[str] = Field(default=None, max_length=500)


class TransactionUpdate(CamelModel):
    """Partial update. Only fields present in the payload are applied."""

    amount: Optional[Decimal] = Field(
        default=None, gt=0, le=MAX_AMOUNT, decimal_places=2
    )
    date: Optional[dt.date] = None
    category_id: Optional[str] = Field(default=None, min_length=1, max_length=36)
    type: Optional[TransactionType] = None
    note: Optional[str] = Field(default=None, max_length=500)


class CategoryOut(CamelModel):
    id: str
    name: str
    is_deletable: bool


class CategoryRef(CamelModel):
    id: str
    name: str


class TransactionOut(CamelModel):
    id: str
    date: dt.date
    amount: float
    type: TransactionType
    note: Optional[str] = None
    category: Optional[CategoryRef] = None
    created_at: dt.datetime


class Pagination(CamelModel):
    page: int
    page_size: int
    total_items: int
    total_pages: int


class TransactionListOut(CamelModel):
    transactions: list[TransactionOut]
    pagination: Pagination


class SummaryTotals(CamelModel):
    income: float
    expenses: float
    balance: float


class DailyBreakdownItem(CamelModel):
    date: dt.date
    income: float
    expenses: float


class DashboardSummary(CamelModel):
    summary: SummaryTotals
    daily_breakdown: list[DailyBreakdownItem]
