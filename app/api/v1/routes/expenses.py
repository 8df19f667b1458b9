# app/api/v1/routes/expenses.py
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List
import uuid

from app.schemas.expense import ExpenseCreate, ExpenseRead, ExpenseUpdate
from app.crud.expense import (
    create_expense_for_user,
    get_expenses_for_user,
    get_expense_by_id,
    update_expense,
    delete_expense,
)
from app.core.database import get_async_session
from app.core.exceptions import ExpenseNotFoundError
from app.api.deps import get_current_user_id

router = APIRouter(prefix="/expenses", tags=["expenses"])

@router.get("", response_model=List[ExpenseRead])
async def read_expenses(
    db: AsyncSession = Depends(get_async_session),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    return await get_expenses_for_user(user_id, db)

@router.post("", response_model=ExpenseRead, status_code=status.HTTP_201_CREATED)
async def create_expense(
    ex_in: ExpenseCreate,
    db: AsyncSession = Depends(get_async_session),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    return await create_expense_for_user(user_id, ex_in, db)

@router.get("/{expense_id}", response_model=ExpenseRead)
async def read_expense(
    expense_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    expense = await get_expense_by_id(expense_id, user_id, db)
    if not expense:
        raise ExpenseNotFoundError(expense_id)
    return expense

@router.patch("/{expense_id}", response_model=ExpenseRead)
async def update_expense_endpoint(
    expense_id: uuid.UUID,
    ex_in: ExpenseUpdate,
    db: AsyncSession = Depends(get_async_session),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    expense = await get_expense_by_id(expense_id, user_id, db)
    if not expense:
        raise ExpenseNotFoundError(expense_id)
    return await update_expense(expense, ex_in, db)

@router.delete("/{expense_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_expense_endpoint(
    expense_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    expense = await get_expense_by_id(expense_id, user_id, db)
    if not expense:
        raise ExpenseNotFoundError(expense_id)
    await delete_expense(expense, db)
    return None
