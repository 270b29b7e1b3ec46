from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from finance_tracker import repository
from finance_tracker.budget_engine import (
    ZERO,
    Budget,
    BudgetStatusReport,
    CategoryScope,
    Transaction,
    ValidationResult,
    build_status_report,
    evaluate_expense,
    scope_for,
)
from finance_tracker.errors import (
    BudgetNotFound,
    CategoryNotFound,
    CategoryNotOwned,
    InvalidLimit,
    NotOwner,
)
from finance_tracker.period import Period, period_for_date, resolve_period
from finance_tracker.summary import MonthlySummary, compose_monthly_summary

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BudgetRequest:
    monthly_limit: Optional[Decimal]
    category_id: Optional[int] = None
    year: Optional[int] = None
    month: Optional[int] = None
    allow_rollover: Optional[bool] = None
    prevent_exceed: Optional[bool] = None


def check_category_owner(conn: Connection, user_id: int, category_id: Optional[int]) -> None:
    if category_id is None:
        return
    row = repository.get_category(conn, category_id)
    if row is None:
        raise CategoryNotFound("Category not found.")
    if row["user_id"] != user_id:
        raise CategoryNotOwned("Category does not belong to user.")


class BudgetService:
    """Budget upserts, status reports, expense checks and monthly summaries.

    ``today`` and ``now`` are injectable clocks; nothing else is kept
    between calls.
    """

    def __init__(
        self,
        engine: Engine,
        today: Callable[[], date] = date.today,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.engine = engine
        self.today = today
        self.now = now

    def resolve_period(self, year: Optional[int] = None, month: Optional[int] = None) -> Period:
        return resolve_period(year, month, self.today())

    def upsert_budget(self, user_id: int, request: BudgetRequest) -> Budget:
        period = self.resolve_period(request.year, request.month)
        if request.monthly_limit is None or request.monthly_limit < ZERO:
            raise InvalidLimit("Monthly limit must be a non-negative number.")
        scope = scope_for(request.category_id)

        try:
            with self.engine.begin() as conn:
                budget = self._write_budget(conn, user_id, period, request)
        except IntegrityError:
            # Lost a find-then-insert race on the same scope; the row exists
            # now, so this write becomes an update (last writer wins).
            logger.warning(
                "Concurrent budget write for user %s %s-%02d scope %s, retrying as update",
                user_id,
                period.year,
                period.month,
                scope.scope_id,
            )
            with self.engine.begin() as conn:
                budget = self._write_budget(conn, user_id, period, request)

        logger.info(
            "Saved budget %s for user %s %s-%02d scope %s limit %s",
            budget.id,
            user_id,
            budget.year,
            budget.month,
            budget.scope.scope_id,
            budget.monthly_limit,
        )
        return budget

    def _write_budget(
        self,
        conn: Connection,
        user_id: int,
        period: Period,
        request: BudgetRequest,
    ) -> Budget:
        check_category_owner(conn, user_id, request.category_id)
        scope = scope_for(request.category_id)
        existing = repository.find_budget_by_scope(
            conn, user_id, period.year, period.month, scope
        )
        if existing is not None:
            return repository.update_budget(
                conn,
                existing.id,
                monthly_limit=request.monthly_limit,
                allow_rollover=_flag(request.allow_rollover, existing.allow_rollover),
                prevent_exceed=_flag(request.prevent_exceed, existing.prevent_exceed),
                now=self.now(),
            )
        return repository.insert_budget(
            conn,
            user_id=user_id,
            year=period.year,
            month=period.month,
            scope=scope,
            monthly_limit=request.monthly_limit,
            allow_rollover=_flag(request.allow_rollover, False),
            prevent_exceed=_flag(request.prevent_exceed, False),
            now=self.now(),
        )

    def get_budget(self, user_id: int, budget_id: int) -> Budget:
        with self.engine.begin() as conn:
            budget = repository.get_budget(conn, budget_id)
        if budget is None:
            raise BudgetNotFound("Budget not found.")
        if budget.user_id != user_id:
            raise NotOwner("Budget does not belong to user.")
        return budget

    def update_budget(self, user_id: int, budget_id: int, request: BudgetRequest) -> Budget:
        """Re-apply limit and flags to an existing budget, keeping its scope and month."""
        existing = self.get_budget(user_id, budget_id)
        return self.upsert_budget(
            user_id,
            BudgetRequest(
                monthly_limit=request.monthly_limit,
                category_id=existing.category_id,
                year=existing.year,
                month=existing.month,
                allow_rollover=request.allow_rollover,
                prevent_exceed=request.prevent_exceed,
            ),
        )

    def delete_budget(self, user_id: int, budget_id: int) -> None:
        with self.engine.begin() as conn:
            budget = repository.get_budget(conn, budget_id)
            if budget is None:
                raise BudgetNotFound("Budget not found.")
            if budget.user_id != user_id:
                raise NotOwner("Budget does not belong to user.")
            repository.delete_budget(conn, budget_id)
        logger.info("Deleted budget %s for user %s", budget_id, user_id)

    def list_budgets(self, user_id: int) -> list[Budget]:
        with self.engine.begin() as conn:
            return repository.find_budgets_for_user(conn, user_id)

    def list_budgets_for_month(
        self, user_id: int, year: Optional[int] = None, month: Optional[int] = None
    ) -> list[Budget]:
        period = self.resolve_period(year, month)
        with self.engine.begin() as conn:
            return repository.find_budgets_for_month(conn, user_id, period.year, period.month)

    def resolve_budget_status(
        self, user_id: int, year: Optional[int] = None, month: Optional[int] = None
    ) -> BudgetStatusReport:
        period = self.resolve_period(year, month)
        with self.engine.begin() as conn:
            overall_budget, category_budgets, month_transactions = self._load_month(
                conn, user_id, period
            )
        report = build_status_report(
            period, month_transactions, overall_budget, category_budgets
        )
        logger.debug(
            "Budget status for user %s %s-%02d: overall %s, %d category budgets, %d alerts",
            user_id,
            period.year,
            period.month,
            report.overall.status,
            len(report.categories),
            len(report.alerts),
        )
        return report

    def monthly_summary(
        self, user_id: int, year: Optional[int] = None, month: Optional[int] = None
    ) -> MonthlySummary:
        period = self.resolve_period(year, month)
        with self.engine.begin() as conn:
            overall_budget, category_budgets, month_transactions = self._load_month(
                conn, user_id, period
            )
        return compose_monthly_summary(
            period, month_transactions, overall_budget, category_budgets
        )

    def validate_expense(
        self,
        user_id: int,
        expense: Transaction,
        exclude_transaction_id: Optional[int] = None,
    ) -> ValidationResult:
        with self.engine.begin() as conn:
            return self.validate_expense_in(
                conn, user_id, expense, exclude_transaction_id=exclude_transaction_id
            )

    def validate_expense_in(
        self,
        conn: Connection,
        user_id: int,
        expense: Transaction,
        exclude_transaction_id: Optional[int] = None,
    ) -> ValidationResult:
        """Validate on the caller's connection so a following write shares its transaction."""
        period = period_for_date(expense.date or self.today())
        overall_budget = repository.find_overall_budget(
            conn, user_id, period.year, period.month
        )
        category_budget = None
        if expense.category_id is not None:
            category_budget = repository.find_budget_by_scope(
                conn,
                user_id,
                period.year,
                period.month,
                CategoryScope(category_id=expense.category_id),
            )
        month_transactions = repository.fetch_transactions(
            conn, user_id, period.start_date, period.end_date
        )

        result = evaluate_expense(
            expense,
            period,
            month_transactions,
            overall_budget,
            category_budget,
            exclude_transaction_id=exclude_transaction_id,
        )
        if not result.allowed:
            logger.warning(
                "Expense of %s for user %s blocked by %s budget",
                expense.amount,
                user_id,
                result.scope_id,
            )
        elif result.message:
            logger.info("Expense warning for user %s: %s", user_id, result.message)
        return result

    def _load_month(self, conn: Connection, user_id: int, period: Period):
        overall_budget = repository.find_overall_budget(
            conn, user_id, period.year, period.month
        )
        category_budgets = repository.find_category_budgets(
            conn, user_id, period.year, period.month
        )
        month_transactions = repository.fetch_transactions(
            conn, user_id, period.start_date, period.end_date
        )
        return overall_budget, category_budgets, month_transactions


def _flag(value: Optional[bool], default: bool) -> bool:
    return default if value is None else bool(value)
