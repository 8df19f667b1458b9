# app/models/expense.py
import uuid
from sqlalchemy import Column, String, ForeignKey, Float, Boolean, Enum, Date, DateTime, Integer, Index, Uuid, func
from app.core.database import Base, utcnow
import enum

class InstanceType(str, enum.Enum):
    normal = "normal"
    recurring = "recurring"
    financing = "financing"

class Expense(Base):
    __tablename__ = "expenses"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, nullable=False, index=True)
    title = Column(String(length=150), nullable=False)
    description = Column(String(length=500), nullable=True)
    notes = Column(String(length=1000), nullable=True)
    # Per-occurrence amount; financing instances use the financing totals instead
    amount = Column(Float, nullable=False, default=0.0)
    # Anchor date every schedule is derived from
    due_date = Column(Date, nullable=False)
    # Only meaningful for one-off expenses, or a financing that is fully settled
    is_paid = Column(Boolean, nullable=False, default=False)
    paid_at = Column(DateTime(timezone=True), nullable=True)

    is_recurring = Column(Boolean, nullable=False, default=False)
    recurring_start_date = Column(Date, nullable=True)
    recurring_end_date = Column(Date, nullable=True)

    installments = Column(Integer, nullable=True)
    current_installment = Column(Integer, nullable=True)

    is_financing = Column(Boolean, nullable=False, default=False)
    financing_total_amount = Column(Float, nullable=True)
    financing_months_total = Column(Integer, nullable=True)
    # Aggregates below are written by the payment flow only
    financing_paid_amount = Column(Float, nullable=False, default=0.0)
    financing_discount_amount = Column(Float, nullable=False, default=0.0)
    financing_months_paid = Column(Integer, nullable=False, default=0)
    early_payment_discount_rate = Column(Float, nullable=False, default=0.0)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    @property
    def has_installments(self) -> bool:
        return bool(self.installments and self.installments > 1)

    @property
    def is_one_off(self) -> bool:
        return not self.is_recurring and not self.is_financing and not self.has_installments

    def __repr__(self):
        return f"<Expense title={self.title} amount={self.amount} user_id={self.user_id}>"

class ExpenseInstance(Base):
    __tablename__ = "expense_instances"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    expense_id = Column(Uuid, ForeignKey("expenses.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid, nullable=False, index=True)
    instance_type = Column(Enum(InstanceType), nullable=False, default=InstanceType.normal)
    installment_number = Column(Integer, nullable=True)
    amount = Column(Float, nullable=False)
    instance_date = Column(Date, nullable=False, index=True)
    is_paid = Column(Boolean, nullable=False, default=False)
    paid_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)

    @property
    def natural_key(self):
        return (self.expense_id, self.instance_date, InstanceType(self.instance_type), self.installment_number or 0)

    def __repr__(self):
        return (
            f"<ExpenseInstance expense_id={self.expense_id} date={self.instance_date} "
            f"type={self.instance_type} installment={self.installment_number} paid={self.is_paid}>"
        )

# One persisted row per (expense, date, type, installment number or 0)
Index(
    "uq_expense_instances_natural_key",
    ExpenseInstance.expense_id,
    ExpenseInstance.instance_date,
    ExpenseInstance.instance_type,
    func.coalesce(ExpenseInstance.installment_number, 0),
    unique=True,
)
