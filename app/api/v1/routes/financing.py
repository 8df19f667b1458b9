# app/api/v1/routes/financing.py
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List
import uuid

from app.schemas.expense import ExpenseRead
from app.schemas.financing import (
    DiscountPreview,
    PaymentCreate,
    PaymentTransactionRead,
    ReconciliationReport,
    UpdatedTotals,
)
from app.schemas.instance import ExpenseInstanceRead
from app.crud.expense import get_expense_by_id
from app.crud.expense_instance import get_instances_for_expense
from app.crud.payment_transaction import get_transactions_for_expense
from app.core.database import get_async_session
from app.core.exceptions import ExpenseNotFoundError, ExpenseValidationError
from app.models.expense import Expense, InstanceType
from app.api.deps import get_current_user_id
from app.utils.financing import apply_payment, discount_preview, reconcile_financing, reset_all_payments
from app.utils.projection import project_financing_schedule

router = APIRouter(prefix="/expenses/{expense_id}/financing", tags=["financing"])

async def get_financing(
    expense_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    user_id: uuid.UUID = Depends(get_current_user_id),
) -> Expense:
    expense = await get_expense_by_id(expense_id, user_id, db)
    if not expense:
        raise ExpenseNotFoundError(expense_id)
    if not expense.is_financing:
        raise ExpenseValidationError(f"Expense {expense_id} is not a financing")
    return expense

@router.get("/schedule", response_model=List[ExpenseInstanceRead])
async def read_financing_schedule(
    expense: Expense = Depends(get_financing),
    db: AsyncSession = Depends(get_async_session),
):
    """Every installment of the financing with its paid status."""
    persisted = await get_instances_for_expense(expense.id, db, InstanceType.financing)
    return project_financing_schedule(expense, persisted)

@router.get("/discount-preview", response_model=DiscountPreview)
async def read_discount_preview(expense: Expense = Depends(get_financing)):
    return discount_preview(expense)

@router.get("/payments", response_model=List[PaymentTransactionRead])
async def read_payments(
    expense: Expense = Depends(get_financing),
    db: AsyncSession = Depends(get_async_session),
):
    return await get_transactions_for_expense(expense.id, db)

@router.post("/payments", response_model=UpdatedTotals, status_code=status.HTTP_201_CREATED)
async def create_payment(
    payment_in: PaymentCreate,
    expense: Expense = Depends(get_financing),
    db: AsyncSession = Depends(get_async_session),
):
    """Apply an early or partial payment to the financing balance."""
    return await apply_payment(
        expense,
        payment_in.payment_amount,
        db,
        custom_discount=payment_in.custom_discount,
        idempotency_key=payment_in.idempotency_key,
    )

@router.post("/reset", response_model=ExpenseRead)
async def reset_payments(
    expense: Expense = Depends(get_financing),
    db: AsyncSession = Depends(get_async_session),
):
    """Remove every payment of the financing and mark its installments unpaid."""
    return await reset_all_payments(expense, db)

@router.get("/reconciliation", response_model=ReconciliationReport)
async def read_reconciliation(
    expense: Expense = Depends(get_financing),
    db: AsyncSession = Depends(get_async_session),
):
    return await reconcile_financing(expense, db)
