# app/crud/payment_transaction.py
# The ledger is append-only: there is no update helper, and rows are only
# deleted all at once when a financing's payments are reset.
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy import delete, desc, func
from app.models.payment_transaction import PaymentTransaction, PaymentType
from app.core.db_utils import with_db_retry
from typing import List, Optional, Tuple
import uuid

@with_db_retry()
async def get_transactions_for_expense(expense_id: uuid.UUID, db: AsyncSession) -> List[PaymentTransaction]:
    result = await db.execute(
        select(PaymentTransaction)
        .where(PaymentTransaction.expense_id == expense_id)
        .order_by(desc(PaymentTransaction.payment_date))
    )
    return result.scalars().all()

async def get_transaction_by_idempotency_key(
    expense_id: uuid.UUID, idempotency_key: str, db: AsyncSession
) -> Optional[PaymentTransaction]:
    result = await db.execute(
        select(PaymentTransaction).where(
            PaymentTransaction.expense_id == expense_id,
            PaymentTransaction.idempotency_key == idempotency_key,
        )
    )
    return result.scalar_one_or_none()

async def get_ledger_totals(expense_id: uuid.UUID, db: AsyncSession) -> Tuple[int, float, float]:
    """(transaction count, summed payment_amount, summed discount_amount)."""
    result = await db.execute(
        select(
            func.count(PaymentTransaction.id),
            func.coalesce(func.sum(PaymentTransaction.payment_amount), 0.0),
            func.coalesce(func.sum(PaymentTransaction.discount_amount), 0.0),
        ).where(PaymentTransaction.expense_id == expense_id)
    )
    count, paid, discount = result.one()
    return int(count or 0), float(paid or 0.0), float(discount or 0.0)

def add_payment_transaction(
    expense_id: uuid.UUID,
    user_id: uuid.UUID,
    payment_amount: float,
    discount_amount: float,
    payment_type: PaymentType,
    db: AsyncSession,
    notes: Optional[str] = None,
    idempotency_key: Optional[str] = None,
) -> PaymentTransaction:
    tx = PaymentTransaction(
        expense_id=expense_id,
        user_id=user_id,
        payment_amount=payment_amount,
        discount_amount=discount_amount,
        payment_type=payment_type,
        notes=notes,
        idempotency_key=idempotency_key,
    )
    db.add(tx)
    return tx

async def delete_transactions_for_expense(expense_id: uuid.UUID, db: AsyncSession) -> int:
    result = await db.execute(
        delete(PaymentTransaction)
        .where(PaymentTransaction.expense_id == expense_id)
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount
