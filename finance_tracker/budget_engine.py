from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_DOWN, Decimal
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from finance_tracker.period import Period

ZERO = Decimal("0")
HUNDRED = Decimal("100")
ONE_DECIMAL = Decimal("0.1")

INCOME = "INCOME"
EXPENSE = "EXPENSE"

SAFE = "SAFE"
WARNING = "WARNING"
EXCEEDED = "EXCEEDED"

SEVERITY_INFO = "INFO"
SEVERITY_WARNING = "WARNING"
SEVERITY_CRITICAL = "CRITICAL"

WARNING_THRESHOLD = Decimal("50")
EXCEEDED_THRESHOLD = Decimal("90")

# (lower bound inclusive, upper bound exclusive, severity, threshold tag)
ALERT_BANDS = (
    (Decimal("90"), Decimal("100"), SEVERITY_CRITICAL, 90),
    (Decimal("75"), Decimal("90"), SEVERITY_WARNING, 75),
    (Decimal("50"), Decimal("75"), SEVERITY_INFO, 50),
)
OVERAGE_THRESHOLD = 100

OVERALL_SCOPE_ID = "OVERALL"


@dataclass(frozen=True)
class OverallScope:
    @property
    def scope_id(self) -> str:
        return OVERALL_SCOPE_ID

    @property
    def key(self) -> str:
        return "overall"

    @property
    def category_id(self) -> None:
        return None


@dataclass(frozen=True)
class CategoryScope:
    category_id: int

    @property
    def scope_id(self) -> str:
        return str(self.category_id)

    @property
    def key(self) -> str:
        return f"category:{self.category_id}"


Scope = Union[OverallScope, CategoryScope]
OVERALL = OverallScope()


def scope_for(category_id: Optional[int]) -> Scope:
    if category_id is None:
        return OVERALL
    return CategoryScope(category_id=category_id)


@dataclass(frozen=True)
class Transaction:
    amount: Optional[Decimal]
    type: str
    date: Optional[date]
    category_id: Optional[int] = None
    category_name: Optional[str] = None
    id: Optional[int] = None
    note: Optional[str] = None
    user_id: Optional[int] = None


@dataclass(frozen=True)
class Budget:
    id: int
    user_id: int
    year: int
    month: int
    scope: Scope
    monthly_limit: Decimal
    allow_rollover: bool = False
    prevent_exceed: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    category_name: Optional[str] = None

    @property
    def category_id(self) -> Optional[int]:
        return self.scope.category_id


@dataclass(frozen=True)
class SpendingTotals:
    expenses: Decimal
    income: Decimal

    @property
    def net_spend(self) -> Decimal:
        return max(ZERO, self.expenses - self.income)


@dataclass(frozen=True)
class BudgetAlert:
    scope_id: str
    message: str
    severity: str
    threshold: int


@dataclass(frozen=True)
class ScopeStatus:
    scope: Scope
    budget: Decimal
    spent: Decimal
    remaining: Decimal
    usage_percentage: Decimal
    status: str
    category_name: Optional[str] = None


@dataclass(frozen=True)
class BudgetStatusReport:
    year: int
    month: int
    overall: ScopeStatus
    categories: Tuple[ScopeStatus, ...]
    alerts: Tuple[BudgetAlert, ...]


@dataclass(frozen=True)
class ValidationResult:
    allowed: bool
    message: Optional[str] = None
    status: Optional[str] = None
    scope_id: Optional[str] = None


def summarize_spending(
    transactions: Iterable[Transaction],
    period: Period,
    scope: Scope = OVERALL,
    *,
    exclude_transaction_id: Optional[int] = None,
) -> SpendingTotals:
    expenses = ZERO
    income = ZERO
    for txn in transactions:
        if not period.contains(txn.date):
            continue
        if exclude_transaction_id is not None and txn.id == exclude_transaction_id:
            continue
        if isinstance(scope, CategoryScope) and txn.category_id != scope.category_id:
            continue
        txn_type = _normalize_type(txn.type)
        if txn_type == EXPENSE:
            expenses += _coerce_amount(txn.amount)
        elif txn_type == INCOME:
            income += _coerce_amount(txn.amount)
    return SpendingTotals(expenses=expenses, income=income)


def net_spend(
    transactions: Iterable[Transaction],
    period: Period,
    scope: Scope = OVERALL,
) -> Decimal:
    return summarize_spending(transactions, period, scope).net_spend


def usage_percentage(spent: Decimal, limit: Decimal) -> Decimal:
    if limit <= ZERO:
        return ZERO
    return spent / limit * HUNDRED


def classify_status(percentage: Decimal) -> str:
    if percentage >= EXCEEDED_THRESHOLD:
        return EXCEEDED
    if percentage >= WARNING_THRESHOLD:
        return WARNING
    return SAFE


def generate_alerts(
    scope_id: str,
    percentage: Decimal,
    limit: Decimal,
    spent: Decimal,
) -> List[BudgetAlert]:
    """Return the alerts for one scope.

    At most one banded alert (50/75/90) is produced, and a separate overage
    alert is added once usage reaches 100%. The percentage in the message is
    truncated, never rounded up, so it always reads inside the alert's band.
    """
    shown = percentage.quantize(ONE_DECIMAL, rounding=ROUND_DOWN)
    alerts: List[BudgetAlert] = []
    for lower, upper, severity, threshold in ALERT_BANDS:
        if lower <= percentage < upper:
            message = (
                f"{scope_id} budget is {shown:.1f}% used "
                f"({spent:.2f} / {limit:.2f})."
            )
            if threshold == 90:
                message += " Approaching limit!"
            alerts.append(
                BudgetAlert(
                    scope_id=scope_id,
                    message=message,
                    severity=severity,
                    threshold=threshold,
                )
            )
            break

    if percentage >= HUNDRED:
        overage = spent - limit
        alerts.append(
            BudgetAlert(
                scope_id=scope_id,
                message=(
                    f"{scope_id} budget EXCEEDED at {shown:.1f}%! Spent {spent:.2f} "
                    f"exceeds limit of {limit:.2f} by {overage:.2f}"
                ),
                severity=SEVERITY_CRITICAL,
                threshold=OVERAGE_THRESHOLD,
            )
        )
    return alerts


def evaluate_scope(budget: Budget, spent: Decimal) -> Tuple[ScopeStatus, List[BudgetAlert]]:
    limit = _coerce_amount(budget.monthly_limit)
    percentage = usage_percentage(spent, limit)
    status = ScopeStatus(
        scope=budget.scope,
        budget=limit,
        spent=spent,
        remaining=limit - spent,
        usage_percentage=percentage,
        status=classify_status(percentage),
        category_name=budget.category_name,
    )
    return status, generate_alerts(budget.scope.scope_id, percentage, limit, spent)


def build_status_report(
    period: Period,
    transactions: Sequence[Transaction],
    overall_budget: Optional[Budget],
    category_budgets: Iterable[Budget],
) -> BudgetStatusReport:
    alerts: List[BudgetAlert] = []
    overall_spent = net_spend(transactions, period)
    if overall_budget is not None:
        overall, overall_alerts = evaluate_scope(overall_budget, overall_spent)
        alerts.extend(overall_alerts)
    else:
        # No overall budget is reported as SAFE, never as a warning.
        overall = ScopeStatus(
            scope=OVERALL,
            budget=ZERO,
            spent=overall_spent,
            remaining=ZERO,
            usage_percentage=ZERO,
            status=SAFE,
        )

    categories: List[ScopeStatus] = []
    for budget in category_budgets:
        spent = net_spend(transactions, period, budget.scope)
        category_status, category_alerts = evaluate_scope(budget, spent)
        categories.append(category_status)
        alerts.extend(category_alerts)

    return BudgetStatusReport(
        year=period.year,
        month=period.month,
        overall=overall,
        categories=tuple(categories),
        alerts=tuple(alerts),
    )


def evaluate_expense(
    expense: Transaction,
    period: Period,
    transactions: Sequence[Transaction],
    overall_budget: Optional[Budget],
    category_budget: Optional[Budget],
    *,
    exclude_transaction_id: Optional[int] = None,
) -> ValidationResult:
    """Check a prospective expense against the overall then the category budget.

    A prevent-exceed budget that would be exceeded rejects the expense at
    once. Other over-limit budgets only contribute a warning.
    """
    if _normalize_type(expense.type) != EXPENSE:
        return ValidationResult(allowed=True)

    amount = _coerce_amount(expense.amount)
    warnings: List[str] = []
    warned_scope: Optional[str] = None
    checks = [(overall_budget, "overall monthly budget")]
    if expense.category_id is not None and category_budget is not None:
        label = category_budget.category_name or category_budget.scope.scope_id
        checks.append((category_budget, f"category budget: {label}"))

    for budget, label in checks:
        if budget is None:
            continue
        current = summarize_spending(
            transactions,
            period,
            budget.scope,
            exclude_transaction_id=exclude_transaction_id,
        ).net_spend
        if current + amount <= _coerce_amount(budget.monthly_limit):
            continue
        if budget.prevent_exceed:
            return ValidationResult(
                allowed=False,
                message=f"Expense would exceed {label}",
                status=EXCEEDED,
                scope_id=budget.scope.scope_id,
            )
        warnings.append(f"Warning: Expense exceeds {label}")
        warned_scope = warned_scope or budget.scope.scope_id

    if warnings:
        return ValidationResult(
            allowed=True,
            message="; ".join(warnings),
            status=EXCEEDED,
            scope_id=warned_scope,
        )
    return ValidationResult(allowed=True)


def _normalize_type(value: Optional[str]) -> str:
    return (value or "").strip().upper()


def _coerce_amount(amount: Optional[Decimal]) -> Decimal:
    if amount is None:
        return ZERO
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))
