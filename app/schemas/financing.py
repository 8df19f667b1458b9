# app/schemas/financing.py
from typing import Optional
from pydantic import BaseModel, Field
from datetime import datetime
import uuid

from app.models.payment_transaction import PaymentType

class PaymentCreate(BaseModel):
    payment_amount: float = Field(..., gt=0, description="Amount paid toward the remaining balance")
    custom_discount: float = Field(0.0, ge=0, description="Manual discount granted on top of the payment")
    idempotency_key: Optional[str] = Field(None, min_length=1, max_length=64)

class PaymentTransactionRead(BaseModel):
    id: uuid.UUID
    expense_id: uuid.UUID
    payment_amount: float
    discount_amount: float
    payment_type: PaymentType
    payment_date: datetime
    notes: Optional[str] = None

    class Config:
        from_attributes = True

class FinancingDiscount(BaseModel):
    remaining_amount: float
    discount: float
    final_amount: float

class DiscountPreview(FinancingDiscount):
    months_remaining: int
    # Balance left on the record itself (total - paid - discount), and what settling it now costs
    outstanding_balance: float
    settle_now_discount: float
    settle_now_amount: float

class UpdatedTotals(BaseModel):
    expense_id: uuid.UUID
    financing_paid_amount: float
    financing_discount_amount: float
    financing_months_paid: int
    remaining_amount: float
    automatic_discount: float = 0.0
    is_paid: bool
    paid_at: Optional[datetime] = None
    transaction_id: Optional[uuid.UUID] = None
    replayed: bool = False

class ReconciliationReport(BaseModel):
    expense_id: uuid.UUID
    record_paid_amount: float
    record_discount_amount: float
    ledger_paid_amount: float
    ledger_discount_amount: float
    ledger_transaction_count: int
    paid_instance_count: int
    paid_instance_amount: float
    record_months_paid: int
    consistent: bool
