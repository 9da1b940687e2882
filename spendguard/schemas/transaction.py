from datetime import datetime
from typing import Optional, Literal
from pydantic import BaseModel, Field, ConfigDict, field_validator


class TransactionBase(BaseModel):
    """Base transaction schema."""
    title: str = Field(..., min_length=1, max_length=100, description="Short title")
    amount: float = Field(..., gt=0, description="Transaction amount (positive)")
    category: str = Field(..., min_length=1, max_length=50, description="Transaction category")
    transaction_date: Optional[datetime] = Field(None, description="Transaction date, defaults to now")
    description: Optional[str] = Field(None, max_length=500, description="Transaction description")

    @field_validator("title", "category")
    @classmethod
    def strip_text(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @field_validator("category")
    @classmethod
    def lower_category(cls, value: str) -> str:
        return value.lower()


class ExpenseCreate(TransactionBase):
    """Schema for creating expenses."""


class IncomeCreate(TransactionBase):
    """Schema for creating income records."""


class ExpenseUpdate(BaseModel):
    """Partial update of an expense."""
    title: Optional[str] = Field(None, min_length=1, max_length=100)
    amount: Optional[float] = Field(None, gt=0)
    category: Optional[str] = Field(None, min_length=1, max_length=50)
    transaction_date: Optional[datetime] = None
    description: Optional[str] = Field(None, max_length=500)

    @field_validator("category")
    @classmethod
    def lower_category(cls, value: Optional[str]) -> Optional[str]:
        return value.strip().lower() if value else value


class TransactionResponse(BaseModel):
    """Schema for transaction responses."""
    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="Transaction ID")
    kind: str = Field(..., description="expense or income")
    title: Optional[str] = Field(None, description="Short title")
    amount: float = Field(..., description="Transaction amount")
    category: Optional[str] = Field(None, description="Transaction category")
    transaction_date: datetime = Field(..., description="Transaction date")
    description: Optional[str] = Field(None, description="Transaction description")
    created_at: Optional[datetime] = Field(None, description="Creation timestamp")

    @field_validator("id", mode="before")
    @classmethod
    def stringify_id(cls, value) -> str:
        return str(value)


class BudgetCreate(BaseModel):
    """Schema for creating budgets."""
    name: str = Field(..., min_length=1, max_length=100)
    category: str = Field(..., min_length=1, max_length=50)
    amount: float = Field(..., gt=0, description="Spending limit for the period")
    period: Literal["weekly", "monthly", "yearly"] = Field("monthly")
    start_date: Optional[datetime] = Field(None, description="Period start, defaults to now")
    end_date: Optional[datetime] = Field(None, description="Period end, derived from period when omitted")
    alert_threshold: float = Field(80.0, ge=1, le=100)
    description: Optional[str] = Field(None, max_length=500)

    @field_validator("category")
    @classmethod
    def lower_category(cls, value: str) -> str:
        return value.strip().lower()


class BudgetUpdate(BaseModel):
    """Partial update of a budget; a new period or start date moves the end date with it."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    amount: Optional[float] = Field(None, gt=0)
    period: Optional[Literal["weekly", "monthly", "yearly"]] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    alert_threshold: Optional[float] = Field(None, ge=1, le=100)
    description: Optional[str] = Field(None, max_length=500)


class BudgetResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    category: str
    amount: float
    period: str
    start_date: datetime
    end_date: datetime
    is_active: bool
    alert_threshold: Optional[float] = None

    @field_validator("id", mode="before")
    @classmethod
    def stringify_id(cls, value) -> str:
        return str(value)
