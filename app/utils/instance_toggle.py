"""
Paid/unpaid toggling of a single instance.

One-off expenses keep their paid flag on the expense row. Every other
occurrence is flipped on its expense_instances row, which is created the first
time the occurrence is toggled.
"""
import logging
import uuid
from datetime import date
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import utcnow
from app.core.exceptions import ExpenseNotFoundError, ExpenseValidationError, StoreOperationError
from app.crud import expense as expense_crud
from app.crud import expense_instance as instance_crud
from app.models.expense import ExpenseInstance, InstanceType
from app.schemas.instance import InstanceToggleRequest, InstanceToggleResult
from app.utils.financing import recount_paid_months
from app.utils.projection import default_instance_amount, is_scheduled_occurrence

logger = logging.getLogger(__name__)


async def _flip_instance_row(
    expense_id: uuid.UUID,
    user_id: uuid.UUID,
    instance_type: InstanceType,
    instance_date: date,
    installment_number: Optional[int],
    amount: float,
    db: AsyncSession,
) -> ExpenseInstance:
    row = await instance_crud.get_instance_by_natural_key(
        expense_id, instance_date, instance_type, installment_number, db
    )
    if row is None:
        # First toggle of a computed occurrence: materialize it already flipped to paid
        row = ExpenseInstance(
            expense_id=expense_id,
            user_id=user_id,
            instance_type=instance_type,
            installment_number=installment_number,
            amount=amount,
            instance_date=instance_date,
            is_paid=True,
            paid_at=utcnow(),
        )
        instance_crud.add_instances([row], db)
    else:
        row.is_paid = not row.is_paid
        row.paid_at = utcnow() if row.is_paid else None
    await db.flush()
    return row


async def _toggle_expense_row(expense, db: AsyncSession) -> InstanceToggleResult:
    expense_id = expense.id
    try:
        expense.is_paid = not expense.is_paid
        expense.paid_at = utcnow() if expense.is_paid else None
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Toggling expense {expense_id} failed: {e}")
        raise StoreOperationError("toggle_paid", "update expense", e) from e

    logger.info(f"Expense {expense.id} marked {'paid' if expense.is_paid else 'unpaid'}")
    return InstanceToggleResult(
        expense_id=expense.id,
        instance_date=expense.due_date,
        instance_type=InstanceType.normal,
        is_paid=expense.is_paid,
        paid_at=expense.paid_at,
    )


async def toggle_instance_paid(request: InstanceToggleRequest, user_id: uuid.UUID,
                               db: AsyncSession) -> InstanceToggleResult:
    """
    Flip the paid status of one instance.

    Calling it twice restores the original state. Financing toggles recount
    the expense's months paid in the same transaction. Store failures roll the
    whole toggle back and raise StoreOperationError.
    """
    expense = await expense_crud.get_expense_by_id(request.expense_id, user_id, db)
    if expense is None:
        raise ExpenseNotFoundError(request.expense_id)

    if request.instance_type == InstanceType.normal and request.installment_number is None:
        if not expense.is_one_off or request.instance_date != expense.due_date:
            raise ExpenseValidationError(f"{request.instance_date} is not an occurrence of expense {expense.id}")
        return await _toggle_expense_row(expense, db)

    if not is_scheduled_occurrence(expense, request.instance_type, request.instance_date, request.installment_number):
        raise ExpenseValidationError(
            f"{request.instance_type.value} occurrence {request.instance_date} "
            f"(installment {request.installment_number}) is not scheduled for expense {expense.id}"
        )

    # Plain values only from here: a rollback expires the ORM objects
    expense_id = expense.id
    amount = request.amount if request.amount is not None else default_instance_amount(expense)
    is_financing = request.instance_type == InstanceType.financing

    months_paid = None
    for attempt in (1, 2):
        step = "toggle instance"
        try:
            row = await _flip_instance_row(
                expense_id, user_id, request.instance_type, request.instance_date,
                request.installment_number, amount, db,
            )
            if is_financing:
                step = "recount months paid"
                months_paid = await recount_paid_months(expense_id, db, commit=False)
            await db.commit()
            break
        except IntegrityError as e:
            # Another request materialized the same occurrence between lookup and insert
            await db.rollback()
            if attempt == 2:
                logger.error(f"Toggling instance of expense {expense_id} kept conflicting: {e}")
                raise StoreOperationError("toggle_paid", step, e) from e
            logger.warning(f"Natural key conflict toggling expense {expense_id}, retrying against the stored row")
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"Toggling instance of expense {expense_id} failed during '{step}': {e}")
            raise StoreOperationError("toggle_paid", step, e) from e

    logger.info(
        f"Instance {request.instance_type.value} {request.instance_date} of expense {expense_id} "
        f"marked {'paid' if row.is_paid else 'unpaid'}"
    )
    return InstanceToggleResult(
        expense_id=expense_id,
        instance_date=row.instance_date,
        instance_type=request.instance_type,
        installment_number=row.installment_number,
        is_paid=row.is_paid,
        paid_at=row.paid_at,
        instance_id=row.id,
        financing_months_paid=months_paid,
    )
