# app/schemas/instance.py
from typing import Dict, Optional
from pydantic import BaseModel, Field
from datetime import date, datetime
import uuid

from app.models.expense import InstanceType

class ExpenseInstanceRead(BaseModel):
    # Persisted rows carry their UUID, computed ones a synthetic "<type>-<expense>-<n>" id
    id: str
    expense_id: uuid.UUID
    title: str
    instance_type: InstanceType
    installment_number: Optional[int] = None
    installments_total: Optional[int] = None
    amount: float
    instance_date: date
    is_paid: bool = False
    paid_at: Optional[datetime] = None
    is_persisted: bool = False
    is_implicitly_paid: bool = Field(False, description="Shown as paid because early payments already cover it")

    @property
    def natural_key(self):
        return (self.expense_id, self.instance_date, self.instance_type, self.installment_number or 0)

class InstanceToggleRequest(BaseModel):
    expense_id: uuid.UUID
    instance_date: date
    instance_type: InstanceType
    installment_number: Optional[int] = Field(None, ge=1)
    amount: Optional[float] = Field(None, ge=0, description="Amount stored when the instance is materialized")

class InstanceToggleResult(BaseModel):
    expense_id: uuid.UUID
    instance_date: date
    instance_type: InstanceType
    installment_number: Optional[int] = None
    is_paid: bool
    paid_at: Optional[datetime] = None
    instance_id: Optional[uuid.UUID] = None
    financing_months_paid: Optional[int] = None

class MonthSummary(BaseModel):
    month: date
    instance_count: int = 0
    total_amount: float = 0.0
    paid_count: int = 0
    paid_amount: float = 0.0
    pending_count: int = 0
    pending_amount: float = 0.0
    overdue_count: int = 0
    overdue_amount: float = 0.0
    amount_by_type: Dict[str, float] = Field(default_factory=dict)
