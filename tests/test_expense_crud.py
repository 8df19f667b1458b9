from datetime import date

import pytest
from pydantic import ValidationError
from sqlalchemy.exc import OperationalError

from app.core.exceptions import ExpenseValidationError, StoreOperationError
from app.crud.expense import (
    delete_expense,
    get_expense_by_id,
    get_expenses_for_user,
    update_expense,
)
from app.crud import expense_instance as instance_crud
from app.crud.expense_instance import get_instances_for_expense
from app.crud.payment_transaction import get_transactions_for_expense
from app.models.expense import InstanceType
from app.schemas.expense import ExpenseCreate, ExpenseUpdate
from app.schemas.instance import InstanceToggleRequest
from app.utils.financing import apply_payment
from app.utils.instance_toggle import toggle_instance_paid


class TestExpenseCreateSchema:
    def test_only_one_schedule_category(self):
        with pytest.raises(ValidationError):
            ExpenseCreate(title="Both", due_date=date(2024, 1, 1), is_recurring=True, installments=3)
        with pytest.raises(ValidationError):
            ExpenseCreate(
                title="Both",
                due_date=date(2024, 1, 1),
                is_recurring=True,
                is_financing=True,
                financing_total_amount=100.0,
                financing_months_total=2,
            )

    def test_financing_needs_totals(self):
        with pytest.raises(ValidationError):
            ExpenseCreate(title="Car", due_date=date(2024, 1, 1), is_financing=True, financing_months_total=12)

    def test_end_date_after_start(self):
        with pytest.raises(ValidationError):
            ExpenseCreate(
                title="Gym",
                due_date=date(2024, 5, 1),
                is_recurring=True,
                recurring_end_date=date(2024, 4, 1),
            )

    def test_discount_rate_bounds(self):
        with pytest.raises(ValidationError):
            ExpenseCreate(title="X", due_date=date(2024, 1, 1), early_payment_discount_rate=120.0)


async def test_recurring_start_defaults_to_due_date(create_expense):
    expense = await create_expense(is_recurring=True, due_date=date(2024, 2, 12))
    assert expense.recurring_start_date == date(2024, 2, 12)
    assert expense.created_at is not None


async def test_installments_are_materialized_on_create(db, create_expense):
    expense = await create_expense(amount=75.0, installments=4, due_date=date(2024, 1, 31))

    rows = await get_instances_for_expense(expense.id, db)
    assert expense.current_installment == 1
    assert [row.installment_number for row in rows] == [1, 2, 3, 4]
    assert [row.instance_date for row in rows] == [
        date(2024, 1, 31), date(2024, 2, 29), date(2024, 3, 31), date(2024, 4, 30),
    ]
    assert all(row.instance_type == InstanceType.normal and not row.is_paid for row in rows)
    assert all(row.amount == 75.0 for row in rows)


async def test_list_is_scoped_to_the_user(db, user_id, create_expense):
    await create_expense(title="Mine")
    other = await create_expense(title="Also mine", due_date=date(2024, 6, 1))

    expenses = await get_expenses_for_user(user_id, db)
    assert [e.title for e in expenses] == ["Also mine", "Mine"]
    assert await get_expense_by_id(other.id, user_id, db) is other


async def test_schedule_edit_rebuilds_unpaid_installments(db, user_id, create_expense):
    expense = await create_expense(amount=100.0, installments=3, due_date=date(2024, 1, 15))
    await toggle_instance_paid(
        InstanceToggleRequest(
            expense_id=expense.id,
            instance_date=date(2024, 1, 15),
            instance_type=InstanceType.normal,
            installment_number=1,
        ),
        user_id,
        db,
    )

    await update_expense(expense, ExpenseUpdate(installments=5, amount=80.0), db)

    rows = await get_instances_for_expense(expense.id, db)
    assert [row.installment_number for row in rows] == [1, 2, 3, 4, 5]
    assert rows[0].is_paid is True
    assert rows[0].amount == 100.0
    assert all(row.amount == 80.0 and not row.is_paid for row in rows[1:])


async def test_converting_away_from_installments_drops_unpaid_rows(db, create_expense):
    expense = await create_expense(installments=3, due_date=date(2024, 1, 15))

    await update_expense(expense, ExpenseUpdate(installments=None, is_recurring=True), db)

    assert await get_instances_for_expense(expense.id, db) == []
    assert expense.recurring_start_date == date(2024, 1, 15)


async def test_plain_edit_leaves_instances_alone(db, create_expense):
    expense = await create_expense(installments=2, due_date=date(2024, 1, 15))
    before = {row.id for row in await get_instances_for_expense(expense.id, db)}

    updated = await update_expense(expense, ExpenseUpdate(title="Renamed", notes="moved"), db)

    assert updated.title == "Renamed"
    assert {row.id for row in await get_instances_for_expense(expense.id, db)} == before


async def test_update_rejects_a_second_category(create_expense, db):
    expense = await create_expense(is_recurring=True)
    with pytest.raises(ExpenseValidationError):
        await update_expense(expense, ExpenseUpdate(installments=4), db)


async def test_update_rejects_end_before_start(create_expense, db):
    expense = await create_expense(is_recurring=True, due_date=date(2024, 3, 1))
    with pytest.raises(ExpenseValidationError):
        await update_expense(expense, ExpenseUpdate(recurring_end_date=date(2024, 1, 1)), db)


async def test_update_ignores_null_for_required_fields(create_expense, db):
    expense = await create_expense(title="Keep", amount=10.0)
    updated = await update_expense(expense, ExpenseUpdate(title=None, amount=None), db)
    assert (updated.title, updated.amount) == ("Keep", 10.0)


async def test_delete_removes_instances_and_ledger(db, user_id, create_expense):
    expense = await create_expense(
        due_date=date(2024, 1, 10),
        is_financing=True,
        financing_total_amount=600.0,
        financing_months_total=6,
    )
    await toggle_instance_paid(
        InstanceToggleRequest(
            expense_id=expense.id,
            instance_date=date(2024, 1, 10),
            instance_type=InstanceType.financing,
            installment_number=1,
        ),
        user_id,
        db,
    )
    await apply_payment(expense, 200.0, db)
    expense_id = expense.id

    await delete_expense(expense, db)

    assert await get_expense_by_id(expense_id, user_id, db) is None
    assert await get_instances_for_expense(expense_id, db) == []
    assert await get_transactions_for_expense(expense_id, db) == []


async def test_connection_loss_during_schedule_edit_keeps_the_old_schedule(db, create_expense, monkeypatch):
    expense = await create_expense(title="Laptop", amount=100.0, installments=3, due_date=date(2024, 1, 15))
    expense_id = expense.id
    real_list = instance_crud.list_instances_for_expense
    calls = []

    async def drop_connection_once(*args, **kwargs):
        calls.append(1)
        if len(calls) == 1:
            raise OperationalError("SELECT expense_instances", {}, ConnectionResetError("connection reset"))
        return await real_list(*args, **kwargs)

    monkeypatch.setattr(instance_crud, "list_instances_for_expense", drop_connection_once)

    with pytest.raises(StoreOperationError) as exc_info:
        await update_expense(expense, ExpenseUpdate(amount=250.0, title="Renamed"), db)

    assert exc_info.value.operation == "update_expense"
    assert exc_info.value.step == "sync installment instances"
    await db.refresh(expense)
    assert (expense.title, expense.amount) == ("Laptop", 100.0)
    rows = await get_instances_for_expense(expense_id, db)
    assert [row.installment_number for row in rows] == [1, 2, 3]
    assert all(row.amount == 100.0 for row in rows)
