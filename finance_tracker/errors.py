"""Validation failures raised by the budget core.

Every error is a ``ValueError`` so callers that only care about "bad input"
can keep catching that. The HTTP layer reads ``status_code`` to pick a
response code.
"""

from __future__ import annotations


class BudgetError(ValueError):
    status_code = 400


class InvalidPeriod(BudgetError):
    """Raised when a year/month pair does not name a calendar month."""


class InvalidLimit(BudgetError):
    """Raised when a budget limit is missing or negative."""


class InvalidTransaction(BudgetError):
    """Raised when transaction input is malformed."""


class CategoryNotFound(BudgetError):
    status_code = 404


class CategoryNotOwned(BudgetError):
    status_code = 403


class BudgetNotFound(BudgetError):
    status_code = 404


class TransactionNotFound(BudgetError):
    status_code = 404


class NotOwner(BudgetError):
    status_code = 403


class ExpenseRejected(BudgetError):
    """Raised when a prevent-exceed budget blocks an expense write."""

    status_code = 409

    def __init__(self, message: str, scope_id: str | None = None) -> None:
        super().__init__(message)
        self.scope_id = scope_id
