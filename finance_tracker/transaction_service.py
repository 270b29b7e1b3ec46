from __future__ import annotations

import logging
from dataclasses import replace
from decimal import Decimal
from typing import Optional

from sqlalchemy.engine import Connection, Engine

from finance_tracker import repository
from finance_tracker.budget_engine import EXPENSE, INCOME, ZERO, Transaction, ValidationResult
from finance_tracker.budget_service import BudgetService, check_category_owner
from finance_tracker.errors import (
    ExpenseRejected,
    InvalidTransaction,
    NotOwner,
    TransactionNotFound,
)

logger = logging.getLogger(__name__)


class TransactionType:
    values = {INCOME, EXPENSE}

    @classmethod
    def validate(cls, value: Optional[str]) -> str:
        normalized = (value or "").strip().upper()
        if normalized not in cls.values:
            raise InvalidTransaction("Invalid transaction type.")
        return normalized


def normalize_transaction(txn: Transaction) -> Transaction:
    if txn.amount is None:
        raise InvalidTransaction("Amount is required.")
    amount = txn.amount if isinstance(txn.amount, Decimal) else Decimal(str(txn.amount))
    if amount < ZERO:
        raise InvalidTransaction("Amount must not be negative.")
    note = txn.note.strip() if txn.note else None
    return replace(
        txn,
        amount=amount,
        type=TransactionType.validate(txn.type),
        note=note or None,
    )


class TransactionService:
    """Transaction writes gated by the budget prevent-exceed policy."""

    def __init__(self, engine: Engine, budgets: BudgetService) -> None:
        self.engine = engine
        self.budgets = budgets

    def list_transactions(self, user_id: int) -> list[Transaction]:
        with self.engine.begin() as conn:
            return repository.fetch_transactions(conn, user_id)

    def get_transaction(self, user_id: int, transaction_id: int) -> Transaction:
        with self.engine.begin() as conn:
            txn = repository.get_transaction(conn, transaction_id)
        if txn is None:
            raise TransactionNotFound("Transaction not found.")
        if txn.user_id != user_id:
            raise NotOwner("Transaction does not belong to user.")
        return txn

    def create_transaction(
        self, user_id: int, txn: Transaction
    ) -> tuple[Transaction, ValidationResult]:
        txn = normalize_transaction(txn)
        with self.engine.begin() as conn:
            check_category_owner(conn, user_id, txn.category_id)
            validation = self._check_budget(conn, user_id, txn)
            saved = repository.insert_transaction(conn, user_id, txn)
        logger.info("Created %s transaction %s for user %s", saved.type, saved.id, user_id)
        return saved, validation

    def update_transaction(
        self, user_id: int, transaction_id: int, txn: Transaction
    ) -> tuple[Transaction, ValidationResult]:
        txn = normalize_transaction(txn)
        self.get_transaction(user_id, transaction_id)
        with self.engine.begin() as conn:
            check_category_owner(conn, user_id, txn.category_id)
            validation = self._check_budget(
                conn, user_id, txn, exclude_transaction_id=transaction_id
            )
            saved = repository.update_transaction(conn, transaction_id, txn)
        logger.info("Updated transaction %s for user %s", transaction_id, user_id)
        return saved, validation

    def delete_transaction(self, user_id: int, transaction_id: int) -> None:
        self.get_transaction(user_id, transaction_id)
        with self.engine.begin() as conn:
            repository.delete_transaction(conn, transaction_id)
        logger.info("Deleted transaction %s for user %s", transaction_id, user_id)

    def _check_budget(
        self,
        conn: Connection,
        user_id: int,
        txn: Transaction,
        exclude_transaction_id: Optional[int] = None,
    ) -> ValidationResult:
        validation = self.budgets.validate_expense_in(
            conn, user_id, txn, exclude_transaction_id=exclude_transaction_id
        )
        if not validation.allowed:
            raise ExpenseRejected(validation.message, scope_id=validation.scope_id)
        return validation
