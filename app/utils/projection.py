"""
Instance projection: turns expense records into the dated, payable occurrences
shown for a calendar month.

Everything here is pure. Records and persisted instances are read through
attribute access only, so ORM rows and plain objects both work. Persisting a
computed instance is the job of app/utils/instance_toggle.py.
"""
import calendar
import logging
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from app.models.expense import InstanceType
from app.schemas.instance import ExpenseInstanceRead

logger = logging.getLogger(__name__)

# Tolerance for float amounts (e.g. 1000 / 3 per installment)
AMOUNT_EPSILON = 1e-6

NaturalKey = Tuple[Any, date, InstanceType, int]


# ────────────────────────────────────────────────────────────────────────────────
# DATE HELPERS
# ────────────────────────────────────────────────────────────────────────────────
def as_date(value: Any) -> date:
    """Coerce a date, datetime or ISO string; raise ValueError/TypeError otherwise."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value.strip()[:10])
    raise TypeError(f"cannot interpret {value!r} as a date")


def days_in_month(day: date) -> int:
    return calendar.monthrange(day.year, day.month)[1]


def month_start(day: date) -> date:
    return day.replace(day=1)


def month_end(day: date) -> date:
    return day.replace(day=days_in_month(day))


def on_day_of_month(month: date, day_of_month: int) -> date:
    """The given day inside ``month``'s month, clamped to the month length."""
    return month.replace(day=min(day_of_month, days_in_month(month)))


def add_months(day: date, months: int) -> date:
    index = day.year * 12 + (day.month - 1) + months
    year, month = divmod(index, 12)
    return on_day_of_month(date(year, month + 1, 1), day.day)


def months_between(start: date, end: date) -> int:
    """Whole calendar months from ``start``'s month to ``end``'s month."""
    return (end.year - start.year) * 12 + (end.month - start.month)


def installment_schedule(due_date: date, count: int) -> List[Tuple[int, date]]:
    """(installment number, date) pairs for a schedule anchored on ``due_date``."""
    return [(number, add_months(due_date, number - 1)) for number in range(1, count + 1)]


# ────────────────────────────────────────────────────────────────────────────────
# RECORD HELPERS
# ────────────────────────────────────────────────────────────────────────────────
def natural_key(expense_id, instance_date: date, instance_type, installment_number: Optional[int]) -> NaturalKey:
    return (expense_id, instance_date, InstanceType(instance_type), installment_number or 0)


def expense_category(record) -> str:
    """One of financing, recurring, installment or one_off."""
    if record.is_financing:
        return "financing"
    if record.is_recurring:
        return "recurring"
    if record.installments and record.installments > 1:
        return "installment"
    return "one_off"


def instance_type_for(record) -> InstanceType:
    category = expense_category(record)
    if category == "financing":
        return InstanceType.financing
    if category == "recurring":
        return InstanceType.recurring
    return InstanceType.normal


def financing_monthly_amount(record) -> float:
    total = record.financing_total_amount or 0.0
    months = record.financing_months_total or 0
    if months <= 0:
        return 0.0
    return total / months


def financing_is_settled(record) -> bool:
    total = record.financing_total_amount or 0.0
    paid = record.financing_paid_amount or 0.0
    discount = record.financing_discount_amount or 0.0
    return paid + discount >= total - AMOUNT_EPSILON


def implicitly_paid_installments(record) -> int:
    """How many leading installments ``financing_paid_amount`` already covers."""
    monthly = financing_monthly_amount(record)
    if monthly <= 0:
        return 0
    paid = max(record.financing_paid_amount or 0.0, 0.0)
    return int(paid / monthly + AMOUNT_EPSILON)


def default_instance_amount(record) -> float:
    if record.is_financing:
        return financing_monthly_amount(record)
    return record.amount or 0.0


def is_scheduled_occurrence(record, instance_type, instance_date: date, installment_number: Optional[int]) -> bool:
    """True when the given occurrence belongs to the record's schedule."""
    instance_type = InstanceType(instance_type)
    if instance_type != instance_type_for(record):
        return False
    due = as_date(record.due_date)
    category = expense_category(record)

    if category == "recurring":
        if installment_number is not None:
            return False
        start = as_date(record.recurring_start_date or due)
        target = month_start(instance_date)
        if target < month_start(start):
            return False
        if record.recurring_end_date and target > month_start(as_date(record.recurring_end_date)):
            return False
        return instance_date == on_day_of_month(instance_date, due.day)

    if category in ("financing", "installment"):
        count = record.financing_months_total if category == "financing" else record.installments
        if installment_number is None or not 1 <= installment_number <= (count or 0):
            return False
        return instance_date == add_months(due, installment_number - 1)

    return installment_number is None and instance_date == due


def index_persisted(persisted_instances: Iterable[Any]) -> Dict[NaturalKey, Any]:
    return {
        natural_key(row.expense_id, as_date(row.instance_date), row.instance_type, row.installment_number): row
        for row in persisted_instances
    }


def synthetic_instance_id(expense_id, instance_type: InstanceType, instance_date: date,
                          installment_number: Optional[int]) -> str:
    suffix = installment_number if installment_number else instance_date.strftime("%Y-%m")
    return f"{instance_type.value}-{expense_id}-{suffix}"


# ────────────────────────────────────────────────────────────────────────────────
# PROJECTION
# ────────────────────────────────────────────────────────────────────────────────
def _build_instance(record, instance_type: InstanceType, instance_date: date, amount: float,
                    persisted: Dict[NaturalKey, Any], installment_number: Optional[int] = None,
                    installments_total: Optional[int] = None) -> ExpenseInstanceRead:
    title = record.title
    if installment_number is not None:
        title = f"{record.title} - {installment_number}/{installments_total}"

    row = persisted.get(natural_key(record.id, instance_date, instance_type, installment_number))
    if row is not None:
        return ExpenseInstanceRead(
            id=str(row.id),
            expense_id=record.id,
            title=title,
            instance_type=instance_type,
            installment_number=installment_number,
            installments_total=installments_total,
            amount=row.amount if row.amount is not None else amount,
            instance_date=instance_date,
            is_paid=bool(row.is_paid),
            paid_at=row.paid_at,
            is_persisted=True,
        )
    return ExpenseInstanceRead(
        id=synthetic_instance_id(record.id, instance_type, instance_date, installment_number),
        expense_id=record.id,
        title=title,
        instance_type=instance_type,
        installment_number=installment_number,
        installments_total=installments_total,
        amount=amount,
        instance_date=instance_date,
        is_paid=False,
    )


def _mark_implicitly_paid(instance: ExpenseInstanceRead, record) -> ExpenseInstanceRead:
    # Only upgrades unpaid to paid, an explicitly paid row is left alone
    if not instance.is_paid and instance.installment_number <= implicitly_paid_installments(record):
        instance.is_paid = True
        instance.is_implicitly_paid = True
    return instance


def _project_record(record, target: date, persisted: Dict[NaturalKey, Any]) -> List[ExpenseInstanceRead]:
    due = as_date(record.due_date)
    category = expense_category(record)

    if category == "one_off":
        if month_start(due) != target:
            return []
        return [ExpenseInstanceRead(
            id=str(record.id),
            expense_id=record.id,
            title=record.title,
            instance_type=InstanceType.normal,
            amount=record.amount or 0.0,
            instance_date=due,
            is_paid=bool(record.is_paid),
            paid_at=record.paid_at,
        )]

    if category == "installment":
        offset = months_between(due, target)
        if not 0 <= offset < record.installments:
            return []
        return [_build_instance(
            record, InstanceType.normal, add_months(due, offset), record.amount or 0.0, persisted,
            installment_number=offset + 1, installments_total=record.installments,
        )]

    if category == "recurring":
        start = as_date(record.recurring_start_date or due)
        if target < month_start(start):
            return []
        if record.recurring_end_date and target > month_start(as_date(record.recurring_end_date)):
            return []
        return [_build_instance(
            record, InstanceType.recurring, on_day_of_month(target, due.day), record.amount or 0.0, persisted,
        )]

    # financing
    months_total = record.financing_months_total or 0
    if months_total <= 0 or (record.financing_total_amount or 0.0) <= 0:
        return []
    offset = months_between(due, target)
    if not 0 <= offset < months_total or financing_is_settled(record):
        return []
    instance = _build_instance(
        record, InstanceType.financing, add_months(due, offset), financing_monthly_amount(record), persisted,
        installment_number=offset + 1, installments_total=months_total,
    )
    return [_mark_implicitly_paid(instance, record)]


def project_month(target_month: Any, expense_records: Iterable[Any],
                  persisted_instances: Iterable[Any] = ()) -> List[ExpenseInstanceRead]:
    """
    Compute the instances due in ``target_month``'s month.

    ``persisted_instances`` should be the rows dated inside that month; a row
    matching an instance's natural key overrides its paid status and amount.
    A record whose dates cannot be read is skipped with a warning.
    """
    target = month_start(as_date(target_month))
    persisted = index_persisted(persisted_instances)

    instances: List[ExpenseInstanceRead] = []
    seen = set()
    for record in expense_records:
        try:
            projected = _project_record(record, target, persisted)
        except (TypeError, ValueError) as e:
            logger.warning(
                f"Skipping expense {getattr(record, 'id', '?')} while projecting {target:%Y-%m}: {e}"
            )
            continue

        for instance in projected:
            key = instance.natural_key
            if key in seen:
                logger.warning(f"Duplicate projected instance {key} dropped")
                continue
            seen.add(key)
            instances.append(instance)
    return instances


def project_financing_schedule(record, persisted_instances: Iterable[Any] = ()) -> List[ExpenseInstanceRead]:
    """Every installment of a financing, paid or not, in installment order."""
    if not record.is_financing:
        return []
    months_total = record.financing_months_total or 0
    due = as_date(record.due_date)
    persisted = index_persisted(persisted_instances)
    monthly = financing_monthly_amount(record)
    settled = financing_is_settled(record)

    schedule = []
    for number, instance_date in installment_schedule(due, months_total):
        instance = _build_instance(
            record, InstanceType.financing, instance_date, monthly, persisted,
            installment_number=number, installments_total=months_total,
        )
        if settled and not instance.is_paid:
            instance.is_paid = True
            instance.is_implicitly_paid = True
        schedule.append(_mark_implicitly_paid(instance, record))
    return schedule


def sort_instances(instances: List[ExpenseInstanceRead]) -> List[ExpenseInstanceRead]:
    return sorted(instances, key=lambda i: (i.instance_date, i.title, i.installment_number or 0))
