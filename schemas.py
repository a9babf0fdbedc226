from datetime import datetime, timezone
from decimal import Decimal
from typing import Annotated, Optional

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    StringConstraints,
    field_validator,
)

from models import Theme, TransactionType


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


Money = Annotated[Decimal, Field(gt=0, max_digits=14, decimal_places=2)]
CurrencyCode = Annotated[
    str, StringConstraints(pattern=r"^[A-Za-z]{3}$"), AfterValidator(str.upper)
]
UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: TransactionType
    icon: Optional[str] = Field(default=None, max_length=50)
    color: Optional[str] = Field(default=None, max_length=7)

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Category name cannot be blank")
        return value


class TransactionIn(BaseModel):
    type: TransactionType
    amount: Money
    currency: Optional[CurrencyCode] = None
    occurred_at: datetime
    category_id: Optional[int] = None
    note: Optional[str] = Field(default=None, max_length=1000)


class BudgetIn(BaseModel):
    category_id: int
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=2000, le=2100)
    limit_amount: Money
    currency: Optional[CurrencyCode] = None


class BudgetUpdateIn(BaseModel):
    limit_amount: Money
    currency: Optional[CurrencyCode] = None


class PreferenceIn(BaseModel):
    locale: Optional[str] = Field(default=None, min_length=2, max_length=10)
    theme: Optional[Theme] = None
    default_currency: Optional[CurrencyCode] = None


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    type: TransactionType
    icon: Optional[str] = None
    color: Optional[str] = None


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: TransactionType
    amount: Decimal
    currency: str
    occurred_at: UtcDatetime
    category: Optional[CategoryOut] = None
    note: Optional[str] = None
    created_at: UtcDatetime
    updated_at: UtcDatetime


class TransactionPage(BaseModel):
    content: list[TransactionOut]
    total_elements: int
    total_pages: int
    number: int
    size: int
    first: bool
    last: bool


class BudgetOut(BaseModel):
    id: int
    category: CategoryOut
    month: int
    year: int
    limit_amount: Decimal
    spent_amount: Decimal
    currency: str
    progress_percent: float


class PreferenceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    locale: str
    theme: Theme
    default_currency: str


class CategoryBreakdown(BaseModel):
    category_id: int
    category_name: str
    amount: Decimal


class BudgetPreview(BaseModel):
    category_name: str
    limit_amount: Decimal
    spent_amount: Decimal
    progress_percent: float


class DashboardSummary(BaseModel):
    total_income: Decimal
    total_expense: Decimal
    balance: Decimal
    top_categories: list[CategoryBreakdown]
    budgets: list[BudgetPreview]


class FieldErrorOut(BaseModel):
    field: str
    code: str
    message: str


class ErrorResponse(BaseModel):
    timestamp: datetime
    status: int
    error: str
    message: str
    details: Optional[list[FieldErrorOut]] = None
