# app/crud/expense_instance.py
# Helpers below never commit: they run as steps of a larger unit of work and the
# caller decides when to commit or roll back.
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy import delete, update, func
from app.models.expense import ExpenseInstance, InstanceType
from app.core.db_utils import with_db_retry
from typing import Iterable, List, Optional, Tuple
from datetime import date
import uuid

@with_db_retry()
async def get_instances_in_range(user_id: uuid.UUID, start: date, end: date, db: AsyncSession) -> List[ExpenseInstance]:
    result = await db.execute(
        select(ExpenseInstance).where(
            ExpenseInstance.user_id == user_id,
            ExpenseInstance.instance_date >= start,
            ExpenseInstance.instance_date <= end,
        )
    )
    return result.scalars().all()

async def list_instances_for_expense(
    expense_id: uuid.UUID,
    db: AsyncSession,
    instance_type: Optional[InstanceType] = None,
) -> List[ExpenseInstance]:
    """Same query as get_instances_for_expense, without retry: safe inside a caller's write."""
    q = select(ExpenseInstance).where(ExpenseInstance.expense_id == expense_id)
    if instance_type is not None:
        q = q.where(ExpenseInstance.instance_type == instance_type)
    result = await db.execute(q.order_by(ExpenseInstance.instance_date))
    return result.scalars().all()

@with_db_retry()
async def get_instances_for_expense(
    expense_id: uuid.UUID,
    db: AsyncSession,
    instance_type: Optional[InstanceType] = None,
) -> List[ExpenseInstance]:
    return await list_instances_for_expense(expense_id, db, instance_type)

async def get_instance_by_natural_key(
    expense_id: uuid.UUID,
    instance_date: date,
    instance_type: InstanceType,
    installment_number: Optional[int],
    db: AsyncSession,
) -> Optional[ExpenseInstance]:
    result = await db.execute(
        select(ExpenseInstance).where(
            ExpenseInstance.expense_id == expense_id,
            ExpenseInstance.instance_date == instance_date,
            ExpenseInstance.instance_type == instance_type,
            func.coalesce(ExpenseInstance.installment_number, 0) == (installment_number or 0),
        )
    )
    return result.scalar_one_or_none()

async def get_paid_financing_totals(expense_id: uuid.UUID, db: AsyncSession) -> Tuple[int, float]:
    """(count, summed amount) of persisted financing instances marked paid."""
    result = await db.execute(
        select(func.count(ExpenseInstance.id), func.coalesce(func.sum(ExpenseInstance.amount), 0.0)).where(
            ExpenseInstance.expense_id == expense_id,
            ExpenseInstance.instance_type == InstanceType.financing,
            ExpenseInstance.is_paid.is_(True),
        )
    )
    count, amount = result.one()
    return int(count or 0), float(amount or 0.0)

def add_instances(instances: Iterable[ExpenseInstance], db: AsyncSession) -> List[ExpenseInstance]:
    new_instances = list(instances)
    if new_instances:
        db.add_all(new_instances)
    return new_instances

async def reset_instances_for_expense(expense_id: uuid.UUID, db: AsyncSession) -> int:
    result = await db.execute(
        update(ExpenseInstance)
        .where(ExpenseInstance.expense_id == expense_id)
        .values(is_paid=False, paid_at=None)
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount

async def delete_unpaid_instances(expense_id: uuid.UUID, instance_type: InstanceType, db: AsyncSession) -> int:
    result = await db.execute(
        delete(ExpenseInstance)
        .where(
            ExpenseInstance.expense_id == expense_id,
            ExpenseInstance.instance_type == instance_type,
            ExpenseInstance.is_paid.is_(False),
        )
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount

async def delete_instances_for_expense(expense_id: uuid.UUID, db: AsyncSession) -> int:
    result = await db.execute(
        delete(ExpenseInstance)
        .where(ExpenseInstance.expense_id == expense_id)
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount
