# app/schemas/expense.py
from typing import Optional
from pydantic import BaseModel, Field, model_validator
from datetime import date, datetime
import uuid

def check_single_category(is_recurring: bool, is_financing: bool, installments: Optional[int]) -> Optional[str]:
    """Return an error message when more than one schedule category is set."""
    active = [
        name for name, flag in (
            ("recurring", is_recurring),
            ("financing", is_financing),
            ("installments", bool(installments and installments > 1)),
        ) if flag
    ]
    if len(active) > 1:
        return f"An expense can only be one of recurring, financing or installments (got {', '.join(active)})"
    return None

class ExpenseBase(BaseModel):
    title: str = Field(..., min_length=1, max_length=150, description="Expense title, e.g. Rent, Car financing")
    description: Optional[str] = None
    notes: Optional[str] = None
    amount: float = Field(0.0, ge=0, description="Amount per occurrence")
    due_date: date = Field(..., description="Anchor date of the expense schedule")
    is_recurring: bool = False
    recurring_start_date: Optional[date] = None
    recurring_end_date: Optional[date] = None
    installments: Optional[int] = Field(None, ge=1)
    current_installment: Optional[int] = Field(None, ge=1)
    is_financing: bool = False
    financing_total_amount: Optional[float] = Field(None, ge=0)
    financing_months_total: Optional[int] = Field(None, ge=1)
    early_payment_discount_rate: float = Field(0.0, ge=0, le=100, description="Percentage off the remaining balance on payoff")

class ExpenseCreate(ExpenseBase):
    is_paid: bool = False

    @model_validator(mode="after")
    def check_schedule(self) -> "ExpenseCreate":
        error = check_single_category(self.is_recurring, self.is_financing, self.installments)
        if error:
            raise ValueError(error)
        if self.is_financing and (self.financing_total_amount is None or self.financing_months_total is None):
            raise ValueError("A financing needs financing_total_amount and financing_months_total")
        if self.recurring_end_date and self.recurring_end_date < (self.recurring_start_date or self.due_date):
            raise ValueError("recurring_end_date cannot be before the recurring start")
        return self

class ExpenseUpdate(BaseModel):
    # Financing aggregates (paid, discount, months paid) are owned by the payment flow
    title: Optional[str] = Field(None, min_length=1, max_length=150)
    description: Optional[str] = None
    notes: Optional[str] = None
    amount: Optional[float] = Field(None, ge=0)
    due_date: Optional[date] = None
    is_paid: Optional[bool] = None
    is_recurring: Optional[bool] = None
    recurring_start_date: Optional[date] = None
    recurring_end_date: Optional[date] = None
    installments: Optional[int] = Field(None, ge=1)
    current_installment: Optional[int] = Field(None, ge=1)
    is_financing: Optional[bool] = None
    financing_total_amount: Optional[float] = Field(None, ge=0)
    financing_months_total: Optional[int] = Field(None, ge=1)
    early_payment_discount_rate: Optional[float] = Field(None, ge=0, le=100)

class ExpenseRead(ExpenseBase):
    id: uuid.UUID
    user_id: uuid.UUID
    is_paid: bool
    paid_at: Optional[datetime] = None
    financing_paid_amount: float = 0.0
    financing_discount_amount: float = 0.0
    financing_months_paid: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
