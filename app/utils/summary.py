from datetime import date
from typing import Iterable

from app.schemas.instance import ExpenseInstanceRead, MonthSummary
from app.utils.projection import month_start


def summarize_month(month: date, instances: Iterable[ExpenseInstanceRead], today: date) -> MonthSummary:
    """Paid / pending / overdue totals of one projected month, overdue measured against ``today``."""
    summary = MonthSummary(month=month_start(month))
    for instance in instances:
        summary.instance_count += 1
        summary.total_amount += instance.amount
        type_key = instance.instance_type.value
        summary.amount_by_type[type_key] = summary.amount_by_type.get(type_key, 0.0) + instance.amount

        if instance.is_paid:
            summary.paid_count += 1
            summary.paid_amount += instance.amount
            continue

        summary.pending_count += 1
        summary.pending_amount += instance.amount
        if instance.instance_date < today:
            summary.overdue_count += 1
            summary.overdue_amount += instance.amount

    summary.total_amount = round(summary.total_amount, 2)
    summary.paid_amount = round(summary.paid_amount, 2)
    summary.pending_amount = round(summary.pending_amount, 2)
    summary.overdue_amount = round(summary.overdue_amount, 2)
    summary.amount_by_type = {k: round(v, 2) for k, v in summary.amount_by_type.items()}
    return summary
