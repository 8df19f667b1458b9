"""
Financing amortization: payments against a financing's running totals,
early-payment discounts, and the derived "months paid" counter.

The record's ``financing_paid_amount`` and ``financing_discount_amount`` are
authoritative for settlement. They only change through ``apply_payment``,
which writes a ledger row carrying the same amounts, so the ledger sums and
the record always reconcile. ``financing_months_paid`` is derived from paid
financing instances by ``recount_paid_months``.
"""
import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import utcnow
from app.core.exceptions import ExpenseNotFoundError, ExpenseValidationError, StoreOperationError
from app.crud import expense_instance as instance_crud
from app.crud import payment_transaction as payment_crud
from app.models.expense import Expense
from app.models.payment_transaction import PaymentType
from app.schemas.financing import DiscountPreview, FinancingDiscount, ReconciliationReport, UpdatedTotals
from app.utils.projection import AMOUNT_EPSILON

logger = logging.getLogger(__name__)


# ────────────────────────────────────────────────────────────────────────────────
# PURE CALCULATIONS
# ────────────────────────────────────────────────────────────────────────────────
def _clamp_rate(rate: Optional[float]) -> float:
    return min(max(rate or 0.0, 0.0), 100.0)


def calculate_financing_discount(total: float, months_total: int, months_paid: int, rate: float) -> FinancingDiscount:
    """Preview the payoff of the months still unpaid, at ``rate`` percent off."""
    if not months_total or months_total <= 0:
        return FinancingDiscount(remaining_amount=0.0, discount=0.0, final_amount=0.0)
    months_remaining = max(months_total - (months_paid or 0), 0)
    remaining = max((total or 0.0) / months_total * months_remaining, 0.0)
    discount = remaining * _clamp_rate(rate) / 100
    return FinancingDiscount(remaining_amount=remaining, discount=discount, final_amount=remaining - discount)


def remaining_balance(expense) -> float:
    total = expense.financing_total_amount or 0.0
    paid = expense.financing_paid_amount or 0.0
    discount = expense.financing_discount_amount or 0.0
    return max(total - paid - discount, 0.0)


def discount_preview(expense) -> DiscountPreview:
    months_total = expense.financing_months_total or 0
    months_paid = expense.financing_months_paid or 0
    rate = _clamp_rate(expense.early_payment_discount_rate)
    preview = calculate_financing_discount(expense.financing_total_amount or 0.0, months_total, months_paid, rate)
    outstanding = remaining_balance(expense)
    settle_discount = outstanding * rate / 100
    return DiscountPreview(
        **preview.model_dump(),
        months_remaining=max(months_total - months_paid, 0),
        outstanding_balance=outstanding,
        settle_now_discount=settle_discount,
        settle_now_amount=outstanding - settle_discount,
    )


@dataclass
class PaymentPlan:
    payment_amount: float
    custom_discount: float
    automatic_discount: float
    remaining_before: float
    new_paid_amount: float
    new_discount_amount: float
    is_fully_paid: bool

    @property
    def applied_discount(self) -> float:
        return self.custom_discount + self.automatic_discount

    @property
    def payment_type(self) -> PaymentType:
        return PaymentType.early_payment if self.is_fully_paid else PaymentType.partial_payment

    @property
    def notes(self) -> str:
        label = "Early payoff" if self.is_fully_paid else "Partial payment"
        if self.applied_discount > 0:
            return f"{label} with discount of {self.applied_discount:.2f}"
        return label


def plan_payment(expense, payment_amount: float, custom_discount: float = 0.0) -> PaymentPlan:
    """
    Work out the new totals a payment would produce, without touching the store.

    The automatic early-payment discount applies only when the payment settles
    the remaining balance in full, counting the discounts it earns.

    Raises:
        ExpenseValidationError: not a financing, non-positive payment, negative
            discount, nothing left to pay, or payment above the remaining balance.
    """
    if not expense.is_financing:
        raise ExpenseValidationError(f"Expense {expense.id} is not a financing")
    if payment_amount is None or payment_amount <= 0:
        raise ExpenseValidationError("Payment amount must be greater than zero")
    custom_discount = custom_discount or 0.0
    if custom_discount < 0:
        raise ExpenseValidationError("Discount cannot be negative")

    remaining_before = remaining_balance(expense)
    if remaining_before <= AMOUNT_EPSILON:
        raise ExpenseValidationError(f"Financing {expense.id} is already settled")
    if payment_amount + custom_discount > remaining_before + AMOUNT_EPSILON:
        raise ExpenseValidationError(
            f"Payment of {payment_amount:.2f} plus discount {custom_discount:.2f} exceeds "
            f"the remaining balance of {remaining_before:.2f}"
        )

    rate = _clamp_rate(expense.early_payment_discount_rate)
    automatic_discount = 0.0
    if rate > 0:
        candidate = remaining_before * rate / 100
        if payment_amount + custom_discount + candidate >= remaining_before - AMOUNT_EPSILON:
            automatic_discount = candidate

    total = expense.financing_total_amount or 0.0
    new_discount = (expense.financing_discount_amount or 0.0) + custom_discount + automatic_discount
    new_paid = (expense.financing_paid_amount or 0.0) + payment_amount
    return PaymentPlan(
        payment_amount=payment_amount,
        custom_discount=custom_discount,
        automatic_discount=automatic_discount,
        remaining_before=remaining_before,
        new_paid_amount=new_paid,
        new_discount_amount=new_discount,
        is_fully_paid=new_paid >= total - new_discount - AMOUNT_EPSILON,
    )


def _totals(expense: Expense, transaction_id: Optional[uuid.UUID] = None,
            automatic_discount: float = 0.0, replayed: bool = False) -> UpdatedTotals:
    return UpdatedTotals(
        expense_id=expense.id,
        financing_paid_amount=expense.financing_paid_amount or 0.0,
        financing_discount_amount=expense.financing_discount_amount or 0.0,
        financing_months_paid=expense.financing_months_paid or 0,
        remaining_amount=remaining_balance(expense),
        automatic_discount=automatic_discount,
        is_paid=bool(expense.is_paid),
        paid_at=expense.paid_at,
        transaction_id=transaction_id,
        replayed=replayed,
    )


# ────────────────────────────────────────────────────────────────────────────────
# STORE OPERATIONS
# ────────────────────────────────────────────────────────────────────────────────
async def _recount(expense_id: uuid.UUID, db: AsyncSession) -> int:
    expense = await db.get(Expense, expense_id)
    if expense is None:
        raise ExpenseNotFoundError(expense_id)
    count, _ = await instance_crud.get_paid_financing_totals(expense_id, db)
    expense.financing_months_paid = count
    await db.flush()
    return count


async def recount_paid_months(expense_id: uuid.UUID, db: AsyncSession, commit: bool = True) -> int:
    """
    Re-derive ``financing_months_paid`` from the persisted paid financing instances.

    With ``commit=False`` the update is only flushed, for callers that run it
    inside their own unit of work.
    """
    if not commit:
        return await _recount(expense_id, db)
    try:
        count = await _recount(expense_id, db)
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Recounting paid months of expense {expense_id} failed: {e}")
        raise StoreOperationError("recount_paid_months", "update months paid", e) from e
    return count


async def apply_payment(
    expense: Expense,
    payment_amount: float,
    db: AsyncSession,
    custom_discount: float = 0.0,
    idempotency_key: Optional[str] = None,
) -> UpdatedTotals:
    """
    Apply a payment to a financing and record it in the ledger.

    The ledger row is flushed before the record's totals change, and the
    ledger insert, the totals update and the months-paid recount commit as one
    transaction. Calling twice applies the payment twice unless both calls
    carry the same ``idempotency_key``; a repeated key returns the current
    totals with ``replayed=True``.
    """
    if idempotency_key:
        existing = await payment_crud.get_transaction_by_idempotency_key(expense.id, idempotency_key, db)
        if existing is not None:
            logger.info(f"Payment {idempotency_key} on expense {expense.id} already applied, not replaying")
            return _totals(expense, transaction_id=existing.id, replayed=True)

    plan = plan_payment(expense, payment_amount, custom_discount)

    expense_id = expense.id
    step = "insert payment transaction"
    try:
        tx = payment_crud.add_payment_transaction(
            expense_id=expense_id,
            user_id=expense.user_id,
            payment_amount=plan.payment_amount,
            discount_amount=plan.applied_discount,
            payment_type=plan.payment_type,
            notes=plan.notes,
            idempotency_key=idempotency_key,
            db=db,
        )
        await db.flush()

        step = "update financing totals"
        was_paid = bool(expense.is_paid)
        expense.financing_paid_amount = plan.new_paid_amount
        expense.financing_discount_amount = plan.new_discount_amount
        expense.is_paid = plan.is_fully_paid
        if plan.is_fully_paid and not was_paid:
            expense.paid_at = utcnow()
        await db.flush()

        step = "recount months paid"
        await _recount(expense_id, db)
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Payment on expense {expense_id} failed during '{step}': {e}")
        raise StoreOperationError("apply_payment", step, e) from e

    logger.info(
        f"Applied payment of {plan.payment_amount:.2f} (discount {plan.applied_discount:.2f}) "
        f"to expense {expense_id}; fully paid: {plan.is_fully_paid}"
    )
    return _totals(expense, transaction_id=tx.id, automatic_discount=plan.automatic_discount)


async def reset_all_payments(expense: Expense, db: AsyncSession) -> Expense:
    """
    Undo every payment of a financing.

    Deletes the ledger, zeroes the record's aggregates and marks all persisted
    instances unpaid, in that order, inside one transaction.
    """
    expense_id = expense.id
    step = "delete payment transactions"
    try:
        deleted = await payment_crud.delete_transactions_for_expense(expense_id, db)

        step = "reset expense totals"
        expense.financing_paid_amount = 0.0
        expense.financing_discount_amount = 0.0
        expense.financing_months_paid = 0
        expense.is_paid = False
        expense.paid_at = None
        await db.flush()

        step = "reset instances"
        await instance_crud.reset_instances_for_expense(expense_id, db)
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Resetting payments of expense {expense_id} failed during '{step}': {e}")
        raise StoreOperationError("reset_all_payments", step, e) from e

    await db.refresh(expense)
    logger.info(f"Reset payments of expense {expense_id} ({deleted} ledger rows removed)")
    return expense


async def reconcile_financing(expense: Expense, db: AsyncSession) -> ReconciliationReport:
    """Compare the record's totals with the ledger and with the paid instances."""
    count, ledger_paid, ledger_discount = await payment_crud.get_ledger_totals(expense.id, db)
    paid_instances, paid_instance_amount = await instance_crud.get_paid_financing_totals(expense.id, db)
    record_paid = expense.financing_paid_amount or 0.0
    record_discount = expense.financing_discount_amount or 0.0
    record_months = expense.financing_months_paid or 0
    consistent = (
        abs(record_paid - ledger_paid) <= AMOUNT_EPSILON
        and abs(record_discount - ledger_discount) <= AMOUNT_EPSILON
        and record_months == paid_instances
    )
    if not consistent:
        logger.warning(
            f"Financing {expense.id} out of balance: record {record_paid:.2f}/{record_discount:.2f}, "
            f"ledger {ledger_paid:.2f}/{ledger_discount:.2f}, months {record_months} vs {paid_instances}"
        )
    return ReconciliationReport(
        expense_id=expense.id,
        record_paid_amount=record_paid,
        record_discount_amount=record_discount,
        ledger_paid_amount=ledger_paid,
        ledger_discount_amount=ledger_discount,
        ledger_transaction_count=count,
        paid_instance_count=paid_instances,
        paid_instance_amount=paid_instance_amount,
        record_months_paid=record_months,
        consistent=consistent,
    )
