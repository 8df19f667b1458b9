# app/crud/expense.py
import logging
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from app.models.expense import Expense, ExpenseInstance, InstanceType
from app.core.db_utils import with_db_retry
from app.core.exceptions import ExpenseValidationError, StoreOperationError
from app.crud import expense_instance as instance_crud
from app.crud import payment_transaction as payment_crud
from app.schemas.expense import ExpenseCreate, ExpenseUpdate, check_single_category
from app.utils.projection import installment_schedule
from typing import List, Optional
import uuid

logger = logging.getLogger(__name__)

# Changing any of these rebuilds the unpaid part of an installment schedule
INSTALLMENT_SCHEDULE_FIELDS = {"due_date", "amount", "installments", "is_recurring", "is_financing"}

# Fields an update may explicitly clear; a null for any other field is ignored
NULLABLE_FIELDS = {
    "description", "notes", "recurring_start_date", "recurring_end_date", "installments",
    "current_installment", "financing_total_amount", "financing_months_total",
}

@with_db_retry()
async def get_expenses_for_user(user_id: uuid.UUID, db: AsyncSession) -> List[Expense]:
    result = await db.execute(
        select(Expense).where(Expense.user_id == user_id).order_by(Expense.due_date.desc())
    )
    return result.scalars().all()

@with_db_retry()
async def get_expense_by_id(expense_id: uuid.UUID, user_id: uuid.UUID, db: AsyncSession) -> Optional[Expense]:
    result = await db.execute(
        select(Expense).where(Expense.id == expense_id, Expense.user_id == user_id)
    )
    return result.scalar_one_or_none()

def build_installment_instances(expense: Expense) -> List[ExpenseInstance]:
    """Unpaid rows for every installment of a (non-financing) installment expense."""
    return [
        ExpenseInstance(
            expense_id=expense.id,
            user_id=expense.user_id,
            instance_type=InstanceType.normal,
            installment_number=number,
            amount=expense.amount,
            instance_date=instance_date,
            is_paid=False,
        )
        for number, instance_date in installment_schedule(expense.due_date, expense.installments)
    ]

async def sync_installment_instances(expense: Expense, db: AsyncSession) -> int:
    """
    Rebuild the unpaid installment rows after a schedule edit.

    Paid rows are kept even when they no longer match the schedule; the
    projector simply never emits their key again.
    """
    await instance_crud.delete_unpaid_instances(expense.id, InstanceType.normal, db)
    if not expense.has_installments:
        return 0
    kept = {
        (row.installment_number, row.instance_date)
        for row in await instance_crud.list_instances_for_expense(expense.id, db, InstanceType.normal)
    }
    missing = [
        row for row in build_installment_instances(expense)
        if (row.installment_number, row.instance_date) not in kept
    ]
    instance_crud.add_instances(missing, db)
    return len(missing)

async def create_expense_for_user(user_id: uuid.UUID, ex_in: ExpenseCreate, db: AsyncSession) -> Expense:
    data = ex_in.model_dump()
    if data["is_recurring"] and not data["recurring_start_date"]:
        data["recurring_start_date"] = data["due_date"]
    if data["installments"] and data["installments"] > 1 and not data["current_installment"]:
        data["current_installment"] = 1

    new_ex = Expense(**data, user_id=user_id)
    db.add(new_ex)
    await db.flush()
    if new_ex.has_installments:
        instance_crud.add_instances(build_installment_instances(new_ex), db)
        logger.info(f"Materialized {new_ex.installments} installments for expense {new_ex.id}")
    await db.commit()
    await db.refresh(new_ex)
    return new_ex

async def update_expense(expense: Expense, ex_in: ExpenseUpdate, db: AsyncSession) -> Expense:
    changes = {
        field: value for field, value in ex_in.model_dump(exclude_unset=True).items()
        if value is not None or field in NULLABLE_FIELDS
    }

    merged = {field: changes.get(field, getattr(expense, field)) for field in (
        "is_recurring", "is_financing", "installments", "financing_total_amount", "financing_months_total",
        "due_date", "recurring_start_date", "recurring_end_date",
    )}
    end = merged["recurring_end_date"]
    if end and end < (merged["recurring_start_date"] or merged["due_date"]):
        raise ExpenseValidationError("recurring_end_date cannot be before the recurring start")
    error = check_single_category(merged["is_recurring"], merged["is_financing"], merged["installments"])
    if error:
        raise ExpenseValidationError(error)
    if merged["is_financing"] and (merged["financing_total_amount"] is None or merged["financing_months_total"] is None):
        raise ExpenseValidationError("A financing needs financing_total_amount and financing_months_total")

    expense_id = expense.id
    had_installments = expense.has_installments
    step = "update expense"
    try:
        for field, value in changes.items():
            setattr(expense, field, value)
        if expense.is_recurring and not expense.recurring_start_date:
            expense.recurring_start_date = expense.due_date

        if (had_installments or expense.has_installments) and INSTALLMENT_SCHEDULE_FIELDS & changes.keys():
            step = "sync installment instances"
            created = await sync_installment_instances(expense, db)
            logger.info(f"Rebuilt installment schedule of expense {expense_id} ({created} rows created)")

        step = "update expense"
        db.add(expense)
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Updating expense {expense_id} failed during '{step}': {e}")
        raise StoreOperationError("update_expense", step, e) from e

    await db.refresh(expense)
    return expense

async def delete_expense(expense: Expense, db: AsyncSession) -> None:
    # Explicit cascade so SQLite without foreign key enforcement behaves like Postgres
    await instance_crud.delete_instances_for_expense(expense.id, db)
    await payment_crud.delete_transactions_for_expense(expense.id, db)
    await db.delete(expense)
    await db.commit()
