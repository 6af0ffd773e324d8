import datetime as dt
from datetime import date
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from models import (
    AccountType,
    BudgetStatus,
    BudgetType,
    Frequency,
    ScheduleStatus,
    TransactionStatus,
    TransactionType,
)

# Explicit "no category" markers accepted from budget item payloads.
CATEGORY_NONE_SENTINELS = ("", "none", "empty")

CategoryRef = Union[int, Literal["", "none", "empty"], None]


class AccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    type: AccountType = AccountType.bank
    currency: str = Field("USD", min_length=3, max_length=3)
    initial_balance_cents: int = 0


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: TransactionType


class TransactionIn(BaseModel):
    date: date
    description: str = Field(..., min_length=1, max_length=200)
    amount_cents: int = Field(..., gt=0)
    type: TransactionType
    category_id: int
    account_id: int
    status: TransactionStatus = TransactionStatus.completed
    reference: Optional[str] = Field(default=None, max_length=100)
    recurring: bool = False
    notes: Optional[str] = None


class RecurringScheduleIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    description: Optional[str] = None
    frequency: Frequency
    interval: int = Field(1, ge=1)
    start_date: date
    end_date: Optional[date] = None
    amount_cents: int = Field(..., gt=0)
    type: TransactionType
    category_id: int
    account_id: int
    day_of_month: Optional[int] = Field(default=None, ge=1, le=31)
    day_of_week: Optional[int] = Field(default=None, ge=0, le=6)
    month_of_year: Optional[int] = Field(default=None, ge=1, le=12)
    status: ScheduleStatus = ScheduleStatus.active

    @model_validator(mode="after")
    def _check_dates(self) -> "RecurringScheduleIn":
        if self.end_date and self.end_date < self.start_date:
            raise ValueError("End date must not be before start date")
        return self


class BudgetItemIn(BaseModel):
    id: Optional[int] = None
    name: str = Field(..., min_length=1, max_length=120)
    amount_cents: int = Field(..., gt=0)
    spent_cents: Optional[int] = Field(default=None, ge=0)
    category_id: CategoryRef = None
    notes: Optional[str] = None

    def category_change(self) -> tuple[bool, Optional[int]]:
        """Return (touch, category_id) for an in-place update.

        An omitted field leaves the existing link alone; an explicit null or
        sentinel disconnects it.
        """
        if "category_id" not in self.model_fields_set:
            return False, None
        if self.category_id is None or self.category_id in CATEGORY_NONE_SENTINELS:
            return True, None
        return True, int(self.category_id)


class BudgetIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    description: Optional[str] = None
    type: BudgetType
    start_date: date
    end_date: date
    status: BudgetStatus = BudgetStatus.active
    total_budget_cents: int = Field(..., gt=0)
    items: list[BudgetItemIn] = Field(..., min_length=1)

    @model_validator(mode="after")
    def _check_dates(self) -> "BudgetIn":
        if self.end_date < self.start_date:
            raise ValueError("End date must not be before start date")
        return self


class BudgetUpdateIn(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    description: Optional[str] = None
    type: Optional[BudgetType] = None
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None
    status: Optional[BudgetStatus] = None
    total_budget_cents: Optional[int] = Field(default=None, gt=0)
    items: Optional[list[BudgetItemIn]] = None


class BudgetTrackIn(BaseModel):
    transaction_id: int
    budget_item_id: int
    amount_cents: int = Field(..., gt=0)


class RecalculateIn(BaseModel):
    account_id: Optional[int] = None


class SaleIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., min_length=1, max_length=64)
    company_id: Optional[int] = None
    date: date
    total_cents: int = Field(..., gt=0)
    status: str = Field(..., min_length=1, max_length=40)
    customer_name: str = Field(..., min_length=1, max_length=120)
    invoice_number: Optional[str] = Field(default=None, max_length=60)
    products: list[str] = Field(default_factory=list)
