from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from finance_tracker.budget_engine import (
    EXPENSE,
    HUNDRED,
    ZERO,
    Budget,
    BudgetStatusReport,
    Transaction,
    build_status_report,
    summarize_spending,
)
from finance_tracker.period import Period


@dataclass(frozen=True)
class CategoryExpense:
    category_id: int
    category_name: Optional[str]
    amount: Decimal
    percentage: Decimal


@dataclass(frozen=True)
class MonthlySummary:
    year: int
    month: int
    total_income: Decimal
    total_expenses: Decimal
    savings: Decimal
    savings_percentage: Decimal
    budget_status: BudgetStatusReport
    category_expenses: Tuple[CategoryExpense, ...]


def compose_monthly_summary(
    period: Period,
    transactions: Sequence[Transaction],
    overall_budget: Optional[Budget],
    category_budgets: Iterable[Budget],
) -> MonthlySummary:
    """Build the monthly summary from a single fetch of the month's transactions."""
    totals = summarize_spending(transactions, period)
    total_income = totals.income
    total_expenses = totals.expenses
    savings = total_income - total_expenses
    savings_percentage = savings / total_income * HUNDRED if total_income > ZERO else ZERO

    return MonthlySummary(
        year=period.year,
        month=period.month,
        total_income=total_income,
        total_expenses=total_expenses,
        savings=savings,
        savings_percentage=savings_percentage,
        budget_status=build_status_report(
            period, transactions, overall_budget, category_budgets
        ),
        category_expenses=tuple(
            category_breakdown(transactions, period, total_expenses)
        ),
    )


def category_breakdown(
    transactions: Iterable[Transaction],
    period: Period,
    total_expenses: Decimal,
) -> List[CategoryExpense]:
    amounts: Dict[int, Decimal] = {}
    names: Dict[int, Optional[str]] = {}
    for txn in transactions:
        if not period.contains(txn.date) or txn.category_id is None:
            continue
        if (txn.type or "").strip().upper() != EXPENSE:
            continue
        amounts[txn.category_id] = amounts.get(txn.category_id, ZERO) + (
            txn.amount if txn.amount is not None else ZERO
        )
        names.setdefault(txn.category_id, txn.category_name)

    results: List[CategoryExpense] = []
    for category_id, amount in sorted(
        amounts.items(), key=lambda item: (-item[1], item[0])
    ):
        percentage = amount / total_expenses * HUNDRED if total_expenses > ZERO else ZERO
        results.append(
            CategoryExpense(
                category_id=category_id,
                category_name=names.get(category_id),
                amount=amount,
                percentage=percentage,
            )
        )
    return results
