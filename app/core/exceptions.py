# app/core/exceptions.py
"""
Domain errors raised by the CRUD layer and the projection/amortization engine.

Routes never catch these: the handlers registered in app/main.py turn them
into JSON responses.
"""
from typing import Optional


class ExpenseError(Exception):
    """Base class for every error the expense engine raises on purpose."""

    status_code = 400

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ExpenseValidationError(ExpenseError):
    """Input rejected before any store mutation happened."""

    status_code = 422


class ExpenseNotFoundError(ExpenseError):
    status_code = 404

    def __init__(self, expense_id):
        super().__init__(f"Expense {expense_id} not found")
        self.expense_id = expense_id


class StoreOperationError(ExpenseError):
    """
    A store call failed while running a multi-step operation.

    The session has been rolled back, so none of the operation's steps are
    visible. ``step`` names the sub-step that failed so callers can tell a
    failed ledger insert from a failed aggregate update.
    """

    status_code = 503

    def __init__(self, operation: str, step: str, cause: Optional[BaseException] = None):
        super().__init__(f"{operation} failed during '{step}'")
        self.operation = operation
        self.step = step
        self.cause = cause
