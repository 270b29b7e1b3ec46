import logging
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

import bcrypt
from fastapi import FastAPI, HTTPException, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel
from sqlalchemy import func, insert, select
from sqlalchemy.exc import IntegrityError

from finance_tracker import config, repository
from finance_tracker.budget_engine import (
    BudgetStatusReport,
    ScopeStatus,
    Transaction,
    ValidationResult,
)
from finance_tracker.budget_service import BudgetRequest, BudgetService
from finance_tracker.db import build_engine, categories, init_db, transactions, users
from finance_tracker.errors import BudgetError, ExpenseRejected
from finance_tracker.export import transactions_to_csv
from finance_tracker.summary import MonthlySummary
from finance_tracker.transaction_service import TransactionService

logger = logging.getLogger(__name__)

app = FastAPI()

app.add_middleware(
    CORSMiddleware,
    allow_origins=[config.FRONTEND_ORIGIN],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

engine = build_engine(config.DATABASE_URL)
budget_service = BudgetService(engine)
transaction_service = TransactionService(engine, budget_service)

OptionalDate = Optional[date]

PERCENT_PLACES = Decimal("0.01")


@app.on_event("startup")
def on_startup() -> None:
    config.configure_logging()
    init_db(engine)


@app.exception_handler(BudgetError)
def handle_budget_error(request: Request, exc: BudgetError) -> JSONResponse:
    content = {"detail": str(exc)}
    if isinstance(exc, ExpenseRejected) and exc.scope_id is not None:
        content["scope_id"] = exc.scope_id
    return JSONResponse(status_code=exc.status_code, content=content)


class CredentialsPayload(BaseModel):
    email: str
    password: str


class UserResponse(BaseModel):
    id: int
    email: str
    created_at: datetime | None = None


class CategoryPayload(BaseModel):
    name: str

    @classmethod
    def validate_payload(cls, payload: "CategoryPayload") -> "CategoryPayload":
        payload.name = payload.name.strip()
        if not payload.name:
            raise ValueError("Category name required.")
        return payload


class CategoryResponse(BaseModel):
    id: int
    user_id: int
    name: str
    created_at: datetime | None = None


class TransactionPayload(BaseModel):
    amount: Decimal | None = None
    type: str
    date: OptionalDate = None
    category_id: int | None = None
    note: str | None = None


class TransactionResponse(BaseModel):
    id: int
    user_id: int
    amount: Decimal | None = None
    type: str
    date: OptionalDate = None
    category_id: int | None = None
    category_name: str | None = None
    note: str | None = None
    budget_warning: str | None = None


class BudgetPayload(BaseModel):
    monthly_limit: Decimal | None = None
    category_id: int | None = None
    year: int | None = None
    month: int | None = None
    allow_rollover: bool | None = None
    prevent_exceed: bool | None = None


class BudgetResponse(BaseModel):
    id: int
    user_id: int
    year: int
    month: int
    category_id: int | None = None
    category_name: str | None = None
    monthly_limit: Decimal
    allow_rollover: bool
    prevent_exceed: bool
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ScopeStatusResponse(BaseModel):
    scope_id: str
    category_id: int | None = None
    category_name: str | None = None
    budget: Decimal
    spent: Decimal
    remaining: Decimal
    usage_percentage: Decimal
    status: str


class BudgetAlertResponse(BaseModel):
    scope_id: str
    message: str
    severity: str
    threshold: int


class BudgetStatusResponse(BaseModel):
    year: int
    month: int
    overall: ScopeStatusResponse
    category_budgets: list[ScopeStatusResponse]
    alerts: list[BudgetAlertResponse]


class CategoryExpenseResponse(BaseModel):
    category_id: int
    category_name: str | None = None
    amount: Decimal
    percentage: Decimal


class MonthlySummaryResponse(BaseModel):
    year: int
    month: int
    total_income: Decimal
    total_expenses: Decimal
    savings: Decimal
    savings_percentage: Decimal
    budget_status: BudgetStatusResponse
    category_expenses: list[CategoryExpenseResponse]


class ExpenseValidationResponse(BaseModel):
    allowed: bool
    message: str | None = None
    status: str | None = None
    scope_id: str | None = None


class CategoryBreakdownResponse(BaseModel):
    category: str
    total_spent: Decimal
    percentage_of_total: Decimal


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), hashed_password.encode("utf-8"))


def get_user_id(x_user_id: str | None = Header(None)) -> int:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing user identity.")
    try:
        user_id = int(x_user_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid user identity.") from exc
    with engine.begin() as conn:
        result = conn.execute(select(users.c.id).where(users.c.id == user_id))
        if not result.first():
            raise HTTPException(status_code=404, detail="User not found.")
    return user_id


def to_percent(value: Decimal) -> Decimal:
    return value.quantize(PERCENT_PLACES, rounding=ROUND_HALF_UP)


def to_transaction(payload: TransactionPayload) -> Transaction:
    return Transaction(
        amount=payload.amount,
        type=payload.type,
        date=payload.date,
        category_id=payload.category_id,
        note=payload.note,
    )


def to_budget_request(payload: BudgetPayload) -> BudgetRequest:
    return BudgetRequest(
        monthly_limit=payload.monthly_limit,
        category_id=payload.category_id,
        year=payload.year,
        month=payload.month,
        allow_rollover=payload.allow_rollover,
        prevent_exceed=payload.prevent_exceed,
    )


def transaction_response(
    txn: Transaction, validation: ValidationResult | None = None
) -> TransactionResponse:
    return TransactionResponse(
        id=txn.id,
        user_id=txn.user_id,
        amount=txn.amount,
        type=txn.type,
        date=txn.date,
        category_id=txn.category_id,
        category_name=txn.category_name,
        note=txn.note,
        budget_warning=validation.message if validation else None,
    )


def budget_response(budget) -> BudgetResponse:
    return BudgetResponse(
        id=budget.id,
        user_id=budget.user_id,
        year=budget.year,
        month=budget.month,
        category_id=budget.category_id,
        category_name=budget.category_name,
        monthly_limit=budget.monthly_limit,
        allow_rollover=budget.allow_rollover,
        prevent_exceed=budget.prevent_exceed,
        created_at=budget.created_at,
        updated_at=budget.updated_at,
    )


def scope_status_response(status: ScopeStatus) -> ScopeStatusResponse:
    return ScopeStatusResponse(
        scope_id=status.scope.scope_id,
        category_id=status.scope.category_id,
        category_name=status.category_name,
        budget=status.budget,
        spent=status.spent,
        remaining=status.remaining,
        usage_percentage=to_percent(status.usage_percentage),
        status=status.status,
    )


def status_response(report: BudgetStatusReport) -> BudgetStatusResponse:
    return BudgetStatusResponse(
        year=report.year,
        month=report.month,
        overall=scope_status_response(report.overall),
        category_budgets=[scope_status_response(item) for item in report.categories],
        alerts=[
            BudgetAlertResponse(
                scope_id=alert.scope_id,
                message=alert.message,
                severity=alert.severity,
                threshold=alert.threshold,
            )
            for alert in report.alerts
        ],
    )


def summary_response(summary: MonthlySummary) -> MonthlySummaryResponse:
    return MonthlySummaryResponse(
        year=summary.year,
        month=summary.month,
        total_income=summary.total_income,
        total_expenses=summary.total_expenses,
        savings=summary.savings,
        savings_percentage=to_percent(summary.savings_percentage),
        budget_status=status_response(summary.budget_status),
        category_expenses=[
            CategoryExpenseResponse(
                category_id=item.category_id,
                category_name=item.category_name,
                amount=item.amount,
                percentage=to_percent(item.percentage),
            )
            for item in summary.category_expenses
        ],
    )


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.post("/auth/signup", response_model=UserResponse)
def signup(payload: CredentialsPayload) -> UserResponse:
    email = payload.email.strip().lower()
    if not email or not payload.password:
        raise HTTPException(status_code=400, detail="Email and password required.")
    hashed_password = hash_password(payload.password)

    try:
        with engine.begin() as conn:
            result = conn.execute(
                insert(users).values(email=email, hashed_password=hashed_password)
            )
            row = conn.execute(
                select(users).where(users.c.id == result.inserted_primary_key[0])
            ).mappings().first()
    except IntegrityError as exc:
        raise HTTPException(status_code=409, detail="Email already exists.") from exc

    if not row:
        raise HTTPException(status_code=500, detail="Failed to create user.")
    logger.info("Created user %s", row["id"])
    return UserResponse(id=row["id"], email=row["email"], created_at=row["created_at"])


@app.post("/auth/login", response_model=UserResponse)
def login(payload: CredentialsPayload) -> UserResponse:
    email = payload.email.strip().lower()
    with engine.begin() as conn:
        result = conn.execute(select(users).where(users.c.email == email))
        row = result.mappings().first()

    if not row or not verify_password(payload.password, row["hashed_password"]):
        raise HTTPException(status_code=401, detail="Invalid credentials.")

    return UserResponse(id=row["id"], email=row["email"], created_at=row["created_at"])


@app.get("/categories", response_model=list[CategoryResponse])
def list_categories(
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[CategoryResponse]:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        rows = repository.list_categories(conn, user_id)
    return [
        CategoryResponse(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            created_at=row["created_at"],
        )
        for row in rows
    ]


@app.post("/categories", response_model=CategoryResponse)
def create_category(
    payload: CategoryPayload, x_user_id: str | None = Header(None, alias="x-user-id")
) -> CategoryResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = CategoryPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    try:
        with engine.begin() as conn:
            row = repository.insert_category(conn, user_id, payload.name)
    except IntegrityError as exc:
        raise HTTPException(status_code=409, detail="Category already exists.") from exc

    if not row:
        raise HTTPException(status_code=500, detail="Failed to create category.")
    return CategoryResponse(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        created_at=row["created_at"],
    )


@app.delete("/categories/{category_id}")
def delete_category(
    category_id: int, x_user_id: str | None = Header(None, alias="x-user-id")
) -> dict:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        row = repository.get_category(conn, category_id)
        if not row or row["user_id"] != user_id:
            raise HTTPException(status_code=404, detail="Category not found.")
        if repository.category_in_use(conn, category_id):
            raise HTTPException(status_code=409, detail="Category is in use.")
        repository.delete_category(conn, category_id)
    return {"status": "deleted"}


@app.get("/transactions", response_model=list[TransactionResponse])
def list_transactions(
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[TransactionResponse]:
    user_id = get_user_id(x_user_id)
    return [transaction_response(txn) for txn in transaction_service.list_transactions(user_id)]


@app.post("/transactions", response_model=TransactionResponse)
def create_transaction(
    payload: TransactionPayload, x_user_id: str | None = Header(None, alias="x-user-id")
) -> TransactionResponse:
    user_id = get_user_id(x_user_id)
    saved, validation = transaction_service.create_transaction(
        user_id, to_transaction(payload)
    )
    return transaction_response(saved, validation)


@app.put("/transactions/{transaction_id}", response_model=TransactionResponse)
def update_transaction(
    transaction_id: int,
    payload: TransactionPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> TransactionResponse:
    user_id = get_user_id(x_user_id)
    saved, validation = transaction_service.update_transaction(
        user_id, transaction_id, to_transaction(payload)
    )
    return transaction_response(saved, validation)


@app.delete("/transactions/{transaction_id}")
def delete_transaction(
    transaction_id: int, x_user_id: str | None = Header(None, alias="x-user-id")
) -> dict:
    user_id = get_user_id(x_user_id)
    transaction_service.delete_transaction(user_id, transaction_id)
    return {"status": "deleted"}


@app.post("/budgets", response_model=BudgetResponse, status_code=201)
def upsert_budget(
    payload: BudgetPayload, x_user_id: str | None = Header(None, alias="x-user-id")
) -> BudgetResponse:
    user_id = get_user_id(x_user_id)
    return budget_response(budget_service.upsert_budget(user_id, to_budget_request(payload)))


@app.put("/budgets/{budget_id}", response_model=BudgetResponse)
def update_budget(
    budget_id: int,
    payload: BudgetPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> BudgetResponse:
    user_id = get_user_id(x_user_id)
    return budget_response(
        budget_service.update_budget(user_id, budget_id, to_budget_request(payload))
    )


@app.get("/budgets", response_model=list[BudgetResponse])
def list_budgets(
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[BudgetResponse]:
    user_id = get_user_id(x_user_id)
    return [budget_response(budget) for budget in budget_service.list_budgets(user_id)]


@app.get("/budgets/month", response_model=list[BudgetResponse])
def list_budgets_for_month(
    year: int | None = Query(None),
    month: int | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[BudgetResponse]:
    user_id = get_user_id(x_user_id)
    return [
        budget_response(budget)
        for budget in budget_service.list_budgets_for_month(user_id, year, month)
    ]


@app.get("/budgets/status", response_model=BudgetStatusResponse)
def budget_status(
    year: int | None = Query(None),
    month: int | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> BudgetStatusResponse:
    user_id = get_user_id(x_user_id)
    return status_response(budget_service.resolve_budget_status(user_id, year, month))


@app.get("/budgets/monthly-summary", response_model=MonthlySummaryResponse)
def monthly_summary(
    year: int | None = Query(None),
    month: int | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> MonthlySummaryResponse:
    user_id = get_user_id(x_user_id)
    return summary_response(budget_service.monthly_summary(user_id, year, month))


@app.post("/budgets/validate-expense", response_model=ExpenseValidationResponse)
def validate_expense(
    payload: TransactionPayload, x_user_id: str | None = Header(None, alias="x-user-id")
) -> ExpenseValidationResponse:
    user_id = get_user_id(x_user_id)
    result = budget_service.validate_expense(user_id, to_transaction(payload))
    return ExpenseValidationResponse(
        allowed=result.allowed,
        message=result.message,
        status=result.status,
        scope_id=result.scope_id,
    )


@app.delete("/budgets/{budget_id}", status_code=204, response_class=Response)
def delete_budget(
    budget_id: int, x_user_id: str | None = Header(None, alias="x-user-id")
) -> Response:
    user_id = get_user_id(x_user_id)
    budget_service.delete_budget(user_id, budget_id)
    return Response(status_code=204)


@app.get("/analytics/category-breakdown", response_model=list[CategoryBreakdownResponse])
def category_breakdown(
    year: int | None = Query(None),
    month: int | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[CategoryBreakdownResponse]:
    user_id = get_user_id(x_user_id)
    period = budget_service.resolve_period(year, month)

    category_expr = func.coalesce(categories.c.name, "Uncategorized").label("category")
    total_spent_expr = func.coalesce(func.sum(transactions.c.amount), 0).label("total_spent")
    stmt = (
        select(category_expr, total_spent_expr)
        .select_from(
            transactions.outerjoin(categories, transactions.c.category_id == categories.c.id)
        )
        .where(
            transactions.c.user_id == user_id,
            transactions.c.type == "EXPENSE",
            transactions.c.date >= period.start_date,
            transactions.c.date <= period.end_date,
        )
        .group_by(category_expr)
    )
    with engine.begin() as conn:
        rows = conn.execute(stmt).mappings().all()

    totals = {
        row["category"]: row["total_spent"]
        if isinstance(row["total_spent"], Decimal)
        else Decimal(str(row["total_spent"]))
        for row in rows
    }
    total_spent = sum(totals.values(), Decimal("0"))
    if total_spent <= 0:
        return []

    return [
        CategoryBreakdownResponse(
            category=category,
            total_spent=total_value,
            percentage_of_total=to_percent(total_value / total_spent * Decimal("100")),
        )
        for category, total_value in sorted(
            totals.items(), key=lambda item: item[1], reverse=True
        )
    ]


@app.get("/export/transactions.csv")
def export_transactions(
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> Response:
    user_id = get_user_id(x_user_id)
    body = transactions_to_csv(transaction_service.list_transactions(user_id))
    return Response(
        content=body,
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=transactions.csv"},
    )
