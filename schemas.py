from datetime import date, datetime, time, timezone
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from models import (
    AccountType,
    BudgetStatus,
    BudgetType,
    CategoryType,
    ReportFormat,
    ReportPeriod,
    ReportStatus,
    ReportType,
    TransactionStatus,
)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AccountIn(CamelModel):
    code: str = Field(..., min_length=1, max_length=20)
    name: str = Field(..., min_length=1, max_length=120)
    type: AccountType
    balance: int = 0
    description: Optional[str] = None


class CategoryIn(CamelModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: CategoryType
    account_id: int
    code: Optional[str] = Field(default=None, max_length=20)
    parent_id: Optional[int] = None
    description: Optional[str] = None
    is_active: bool = True


class CategoryUpdate(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    code: Optional[str] = Field(default=None, max_length=20)
    account_id: Optional[int] = None
    parent_id: Optional[int] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None


class TransactionIn(CamelModel):
    type: CategoryType
    category_id: int
    amount: int = Field(..., gt=0)
    description: str = Field(..., min_length=1, max_length=255)
    reference: Optional[str] = Field(default=None, max_length=100)
    date: date
    notes: Optional[str] = None
    post: bool = False


class TransactionUpdate(CamelModel):
    type: Optional[CategoryType] = None
    category_id: Optional[int] = None
    amount: Optional[int] = Field(default=None, gt=0)
    description: Optional[str] = Field(default=None, min_length=1, max_length=255)
    reference: Optional[str] = Field(default=None, max_length=100)
    entry_date: Optional[date] = Field(default=None, alias="date")
    notes: Optional[str] = None


class TransactionQuery(CamelModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)
    type: Optional[CategoryType] = None
    category_id: Optional[int] = None
    status: Optional[TransactionStatus] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    search: Optional[str] = None
    sort_by: Literal["date", "amount", "createdAt"] = "date"
    sort_order: Literal["asc", "desc"] = "desc"


class BudgetItemIn(CamelModel):
    category_id: int
    budget_amount: int = Field(..., gt=0)
    notes: Optional[str] = None


class BudgetIn(CamelModel):
    name: str = Field(..., min_length=1, max_length=120)
    type: BudgetType = BudgetType.annual
    start_date: date
    end_date: date
    description: Optional[str] = None
    items: list[BudgetItemIn] = Field(..., min_length=1)


class BudgetUpdate(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    type: Optional[BudgetType] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    description: Optional[str] = None
    items: Optional[list[BudgetItemIn]] = Field(default=None, min_length=1)


class BudgetStatusIn(CamelModel):
    status: BudgetStatus


class BudgetQuery(CamelModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)
    type: Optional[BudgetType] = None
    status: Optional[BudgetStatus] = None
    year: Optional[int] = Field(default=None, ge=1970, le=3000)
    include_items: bool = False


class ReportRequest(CamelModel):
    name: str = Field(..., min_length=1, max_length=200)
    type: ReportType
    period: ReportPeriod
    start_date: datetime
    end_date: datetime
    budget_id: Optional[int] = None
    include_details: bool = False
    format: ReportFormat = ReportFormat.json
    variance_threshold: Optional[float] = Field(default=None, ge=0)

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def _midnight_for_plain_dates(cls, value):
        if isinstance(value, date) and not isinstance(value, datetime):
            return datetime.combine(value, time.min)
        if isinstance(value, str) and len(value) == 10:
            return datetime.combine(date.fromisoformat(value), time.min)
        return value

    @field_validator("start_date", "end_date")
    @classmethod
    def _naive_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    @property
    def start_day(self) -> date:
        return self.start_date.date()

    @property
    def end_day(self) -> date:
        return self.end_date.date()


class ReportQuery(CamelModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)
    type: Optional[ReportType] = None
    period: Optional[ReportPeriod] = None
    year: Optional[int] = Field(default=None, ge=1970, le=3000)
    status: Optional[ReportStatus] = None
