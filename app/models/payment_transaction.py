# app/models/payment_transaction.py
import uuid
import enum
from sqlalchemy import Column, String, ForeignKey, Float, DateTime, Enum, Uuid, UniqueConstraint
from app.core.database import Base, utcnow

class PaymentType(str, enum.Enum):
    early_payment = "early_payment"
    partial_payment = "partial_payment"

class PaymentTransaction(Base):
    __tablename__ = "payment_transactions"
    __table_args__ = (
        UniqueConstraint("expense_id", "idempotency_key", name="uq_payment_transactions_idempotency"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    expense_id = Column(Uuid, ForeignKey("expenses.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid, nullable=False, index=True)
    payment_amount = Column(Float, nullable=False)
    # Full discount this payment earned: manual discount plus any automatic rate discount
    discount_amount = Column(Float, nullable=False, default=0.0)
    payment_type = Column(Enum(PaymentType), nullable=False)
    payment_date = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    notes = Column(String(length=255), nullable=True)
    idempotency_key = Column(String(length=64), nullable=True)

    def __repr__(self):
        return f"<PaymentTransaction amount={self.payment_amount} discount={self.discount_amount} expense_id={self.expense_id}>"
